"""
Result records returned by the estimators.

Both are plain dicts with attribute access, so results can be indexed by key
(fit['log_alpha']) or attribute (fit.log_alpha) and merged by the caller.
"""

import numpy as np
import pandas as pd
from copy import deepcopy


class _FitBase(dict):
    """Base class providing dict-like access, row subsetting and display."""

    # keys holding one scalar per entity, in display order
    _row_keys = ()
    # keys holding an (entities x k) matrix
    _matrix_keys = ()

    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError:
            raise AttributeError(f"'{type(self).__name__}' has no attribute '{name}'")

    def __setattr__(self, name, value):
        self[name] = value

    def __delattr__(self, name):
        try:
            del self[name]
        except KeyError:
            raise AttributeError(f"'{type(self).__name__}' has no attribute '{name}'")

    @property
    def nrow(self):
        for key in self._row_keys:
            if key in self:
                return len(self[key])
        return 0

    def __repr__(self):
        cls = type(self).__name__
        return f"{cls} with {self.nrow} rows\nComponents: {', '.join(self.keys())}"

    def copy(self):
        """Deep copy of the object."""
        return deepcopy(self)

    def subset(self, rows):
        """New record restricted to the given rows (index, slice or mask)."""
        out = type(self)()
        idx = np.arange(self.nrow)[rows]
        idx = np.atleast_1d(idx)
        for key, value in self.items():
            if key in self._row_keys or key in self._matrix_keys:
                out[key] = np.asarray(value)[idx].copy()
            elif key == 'names' and value is not None:
                out[key] = [value[i] for i in idx]
            else:
                out[key] = deepcopy(value)
        return out

    def to_frame(self):
        """Per-entity scalar diagnostics as a DataFrame."""
        data = {key: self[key] for key in self._row_keys if key in self}
        return pd.DataFrame(data, index=self.get('names'))

    def head(self, n=5):
        """Show first n rows."""
        return self.to_frame().head(n)


class DispersionFit(_FitBase):
    """Per-entity output of fit_dispersion()."""

    _row_keys = ('log_alpha', 'alpha', 'iterations', 'iterations_accepted',
                 'last_change', 'initial_ll', 'initial_gradient', 'final_ll',
                 'final_gradient', 'converged', 'diverged')
    _matrix_keys = ('step_trajectory',)


class BetaFit(_FitBase):
    """Per-entity output of fit_coefficients()."""

    _row_keys = ('iterations', 'converged')
    _matrix_keys = ('coefficients', 'coefficient_variance', 'last_change',
                    'fitted_values', 'too_large')

    @property
    def nrow(self):
        if 'coefficients' in self:
            return self['coefficients'].shape[0]
        return super().nrow

    def to_frame(self):
        """Coefficients, standard errors and diagnostics as a DataFrame.

        Coefficient columns are named by the design column names when they
        are known (``coef_names``), else ``beta0, beta1, ...``.
        """
        beta = self['coefficients']
        coef_names = self.get('coef_names')
        if coef_names is None:
            coef_names = [f"beta{k}" for k in range(beta.shape[1])]
        data = {}
        for k, name in enumerate(coef_names):
            data[name] = beta[:, k]
        for k, name in enumerate(coef_names):
            data[f"SE_{name}"] = np.sqrt(self['coefficient_variance'][:, k])
        for key in self._row_keys:
            if key in self:
                data[key] = self[key]
        return pd.DataFrame(data, index=self.get('names'))

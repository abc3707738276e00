"""
Input coercion and validation shared by the estimators.
"""

import numpy as np
import pandas as pd

from .errors import InvalidInputError, FitInterrupted


def as_count_matrix(counts):
    """Coerce counts to a float (entities x samples) matrix.

    Returns
    -------
    tuple of (ndarray, names) where names is the DataFrame index as a list,
    or None when counts was not a DataFrame.
    """
    names = None
    if isinstance(counts, pd.DataFrame):
        names = list(counts.index)
        counts = counts.values
    y = np.asarray(counts, dtype=np.float64)
    if y.ndim == 1:
        y = y.reshape(1, -1)
    if y.ndim != 2 or y.size == 0:
        raise InvalidInputError("'counts' must be a non-empty matrix")
    if np.any(np.isnan(y)):
        raise InvalidInputError("NA counts not allowed")
    if np.any(y < 0):
        raise InvalidInputError("Negative counts not allowed")
    if np.any(np.isinf(y)):
        raise InvalidInputError("Infinite counts not allowed")
    return y, names


def as_design(design, nsamples):
    """Coerce the design to a (samples x covariates) matrix of full column rank."""
    if isinstance(design, pd.DataFrame):
        design = design.values
    x = np.asarray(design, dtype=np.float64)
    if x.ndim == 1:
        x = x.reshape(-1, 1)
    if x.ndim != 2 or x.shape[1] == 0:
        raise InvalidInputError("'design' must have at least one column")
    if x.shape[0] != nsamples:
        raise InvalidInputError("nrow(design) disagrees with ncol(counts)")
    if not np.all(np.isfinite(x)):
        raise InvalidInputError("design matrix must be finite")
    if np.linalg.matrix_rank(x) < x.shape[1]:
        raise InvalidInputError("Design matrix not of full rank")
    return x


def expand_as_matrix(x, dim, name="x"):
    """Expand a scalar, sample vector, or full matrix to shape dim.

    A vector whose length equals the number of samples (dim[1]) is repeated
    down rows; a vector of length dim[0] is repeated across columns.
    """
    if isinstance(x, pd.DataFrame):
        x = x.values
    dim = (int(dim[0]), int(dim[1]))
    x = np.asarray(x, dtype=np.float64)
    if x.ndim == 0 or x.size == 1:
        return np.full(dim, x.ravel()[0])
    if x.ndim == 1:
        if len(x) == dim[1]:
            return np.tile(x.reshape(1, -1), (dim[0], 1))
        if len(x) == dim[0]:
            return np.tile(x.reshape(-1, 1), (1, dim[1]))
        raise InvalidInputError(f"'{name}' of unexpected length")
    if x.shape == dim:
        return x.copy()
    raise InvalidInputError(f"'{name}' is matrix of wrong size")


def expand_as_vector(x, n, name="x"):
    """Expand a scalar or length-n vector to a length-n vector."""
    if isinstance(x, (pd.Series, pd.DataFrame)):
        x = x.values
    x = np.asarray(x, dtype=np.float64).ravel()
    if x.size == 1:
        return np.full(n, x[0])
    if x.size != n:
        raise InvalidInputError(f"length of '{name}' must be {n}")
    return x.copy()


def as_coefficient_matrix(x, ngenes, ncoefs, name="initial_coefficients"):
    """Coerce starting coefficients to an (entities x covariates) matrix."""
    if isinstance(x, pd.DataFrame):
        x = x.values
    beta = np.asarray(x, dtype=np.float64)
    if beta.ndim == 1:
        if len(beta) != ncoefs:
            raise InvalidInputError(f"length of '{name}' must equal ncol(design)")
        beta = np.tile(beta, (ngenes, 1))
    if beta.shape != (ngenes, ncoefs):
        raise InvalidInputError(
            f"'{name}' must have shape ({ngenes}, {ncoefs})")
    if not np.all(np.isfinite(beta)):
        raise InvalidInputError(f"'{name}' must be finite")
    return beta.copy()


def check_iteration_args(tol, max_iter):
    """Validate a convergence tolerance and iteration limit."""
    if not np.isfinite(tol) or tol < 0:
        raise InvalidInputError("'tol' must be a non-negative number")
    if int(max_iter) != max_iter or max_iter < 1:
        raise InvalidInputError("'max_iter' must be a positive integer")
    return float(tol), int(max_iter)


def check_interrupt(interrupt, entity):
    """Raise FitInterrupted if the cancellation token has been set."""
    if interrupt is not None and interrupt.is_set():
        raise FitInterrupted(entity)

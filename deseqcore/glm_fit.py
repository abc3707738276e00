"""
Ridge-penalized IRLS fitting of negative binomial GLM coefficients.

Coefficients are on the natural log scale; the fitted mean of entity i in
sample j is norm_factors[i, j] * exp(design[j] @ beta[i]).
"""

import warnings

import numpy as np
import pandas as pd

from .classes import BetaFit
from .errors import InvalidInputError, SingularSystemError
from .linalg import weighted_crossprod, ridge_inverse
from .utils import (as_count_matrix, as_design, as_coefficient_matrix,
                    expand_as_matrix, expand_as_vector, check_iteration_args,
                    check_interrupt)


def fitted_means(design, coefficients, norm_factors=1.0):
    """Fitted NB means from coefficients.

    Parameters
    ----------
    design : ndarray (nsamples, ncoefs)
        Design matrix.
    coefficients : ndarray (ngenes, ncoefs)
        Coefficients on the natural log scale.
    norm_factors : float, ndarray (nsamples,), or ndarray (ngenes, nsamples)
        Normalization factors.

    Returns
    -------
    ndarray (ngenes, nsamples)
    """
    if isinstance(design, pd.DataFrame):
        design = design.values
    x = np.asarray(design, dtype=np.float64)
    if x.ndim == 1:
        x = x.reshape(-1, 1)
    beta = np.atleast_2d(np.asarray(coefficients, dtype=np.float64))
    if beta.shape[1] != x.shape[1]:
        raise InvalidInputError("ncol(coefficients) disagrees with ncol(design)")
    nf = expand_as_matrix(norm_factors, (beta.shape[0], x.shape[0]),
                          name="norm_factors")
    return nf * np.exp(np.clip(beta @ x.T, -500, 500))


def fit_beta_row(y, x, nf, alpha, beta, ridge_lambda, tol=1e-8, max_iter=100,
                 large_threshold=30.0):
    """IRLS for the coefficients of one entity.

    Parameters
    ----------
    y : ndarray (nsamples,)
        Counts.
    x : ndarray (nsamples, ncoefs)
        Design matrix.
    nf : ndarray (nsamples,)
        Normalization factors.
    alpha : float
        NB dispersion (natural scale), held fixed.
    beta : ndarray (ncoefs,)
        Starting coefficients.
    ridge_lambda : ndarray (ncoefs,)
        Ridge penalty added to the diagonal of X'WX.
    tol : float
        A coefficient has converged once it moves by less than tol.
    max_iter : int
        Maximum IRLS iterations.
    large_threshold : float
        A coefficient whose magnitude exceeds this is flagged as diverged.

    Returns
    -------
    dict with 'coefficients', 'coefficient_variance', 'iterations',
    'last_change', 'too_large', 'converged'.
    """
    beta = np.array(beta, dtype=np.float64)
    change = np.zeros_like(beta)
    too_large = np.zeros(beta.shape, dtype=bool)
    n_iter = 0
    converged = False

    for _it in range(max_iter):
        n_iter += 1
        mu = nf * np.exp(x @ beta)
        w = mu / (1.0 + alpha * mu)
        z = np.log(mu / nf) + (y - mu) / mu

        xtwx = weighted_crossprod(x, w)
        xtwx_inv = ridge_inverse(xtwx, ridge_lambda)
        beta_new = xtwx_inv @ (x.T @ (w * z))

        change = np.abs(beta_new - beta)
        too_large = np.abs(beta_new) > large_threshold
        beta = beta_new
        if np.all(too_large):
            converged = True
            break
        if np.all(too_large | (change < tol)):
            converged = True
            break

    # sandwich variance with the weights of the last iteration
    variance = np.diag(xtwx_inv @ xtwx @ xtwx_inv).copy()

    return {
        'coefficients': beta,
        'coefficient_variance': variance,
        'iterations': n_iter,
        'last_change': np.where(too_large, 0.0, change),
        'too_large': too_large,
        'converged': converged,
    }


def fit_coefficients(counts, design, norm_factors, dispersion,
                     initial_coefficients, ridge_lambda=1e-6, tol=1e-8,
                     max_iter=100, large_threshold=30.0, interrupt=None):
    """Fit genewise NB GLM coefficients by ridge-penalized IRLS.

    Each row is fit independently with fit_beta_row().

    Parameters
    ----------
    counts : ndarray or DataFrame (ngenes, nsamples)
        Count matrix.
    design : ndarray or DataFrame (nsamples, ncoefs)
        Design matrix of full column rank. DataFrame column names label the
        coefficients.
    norm_factors : float, ndarray (nsamples,), or ndarray (ngenes, nsamples)
        Positive normalization factors multiplying the fitted means.
    dispersion : float or ndarray (ngenes,)
        NB dispersions on the natural scale.
    initial_coefficients : ndarray (ngenes, ncoefs) or (ncoefs,)
        Starting coefficients.
    ridge_lambda : float or ndarray (ncoefs,)
        Non-negative ridge penalties.
    tol : float
        Coefficient-wise convergence tolerance.
    max_iter : int
        Maximum IRLS iterations per row.
    large_threshold : float
        Coefficients beyond this magnitude are flagged and stop iterating.
    interrupt : object with ``is_set()``, optional
        Cancellation token polled before each row.

    Returns
    -------
    BetaFit
    """
    y, names = as_count_matrix(counts)
    ngenes, nlibs = y.shape
    coef_names = None
    if isinstance(design, pd.DataFrame):
        coef_names = [str(c) for c in design.columns]
    x = as_design(design, nlibs)
    ncoefs = x.shape[1]

    nf = expand_as_matrix(norm_factors, y.shape, name="norm_factors")
    if not np.all(np.isfinite(nf)) or np.any(nf <= 0):
        raise InvalidInputError("norm factors must be positive")
    alpha = expand_as_vector(dispersion, ngenes, name="dispersion")
    if np.any(np.isnan(alpha)):
        raise InvalidInputError("NA dispersions not allowed")
    if np.any(alpha < 0):
        raise InvalidInputError("Negative dispersions not allowed")
    beta0 = as_coefficient_matrix(initial_coefficients, ngenes, ncoefs)
    lam = expand_as_vector(ridge_lambda, ncoefs, name="ridge_lambda")
    if np.any(np.isnan(lam)) or np.any(lam < 0):
        raise InvalidInputError("ridge penalties must be non-negative")
    if not large_threshold > 0:
        raise InvalidInputError("'large_threshold' must be positive")
    tol, max_iter = check_iteration_args(tol, max_iter)

    coefficients = np.zeros((ngenes, ncoefs))
    variance = np.zeros((ngenes, ncoefs))
    last_change = np.zeros((ngenes, ncoefs))
    too_large = np.zeros((ngenes, ncoefs), dtype=bool)
    n_iter = np.zeros(ngenes, dtype=int)
    converged = np.zeros(ngenes, dtype=bool)

    for g in range(ngenes):
        check_interrupt(interrupt, g)
        try:
            res = fit_beta_row(y[g], x, nf[g], alpha[g], beta0[g], lam,
                               tol=tol, max_iter=max_iter,
                               large_threshold=large_threshold)
        except SingularSystemError as err:
            raise err.with_entity(g) from err

        coefficients[g] = res['coefficients']
        variance[g] = res['coefficient_variance']
        last_change[g] = res['last_change']
        too_large[g] = res['too_large']
        n_iter[g] = res['iterations']
        converged[g] = res['converged']

    n_failed = int(np.sum(~converged))
    if n_failed > 0:
        warnings.warn(f"{n_failed} rows did not converge in beta within "
                      f"{max_iter} iterations; see 'converged'")

    return BetaFit(
        coefficients=coefficients,
        coefficient_variance=variance,
        iterations=n_iter,
        last_change=last_change,
        too_large=too_large,
        converged=converged,
        fitted_values=fitted_means(x, coefficients, nf),
        names=names,
        coef_names=coef_names,
    )

"""
Dense linear algebra helpers shared by the dispersion and coefficient fits.

Weighted Gram matrices X'WX are formed by a small numba kernel; determinants
and inverses go through Cholesky factorizations (scipy.linalg) so that
singular or ill-conditioned systems are reported instead of producing
NaN/Inf downstream.
"""

import numpy as np
from numba import njit
from scipy.linalg import cho_factor, cho_solve

from .errors import SingularSystemError

# Smallest reciprocal condition number accepted for a ridge-penalized system.
RCOND_MIN = np.finfo(np.float64).eps


@njit(cache=True)
def _weighted_crossprod_kernel(x, w, out):
    """out[k, m] = sum_j w[j] * x[j, k] * x[j, m] (symmetric fill)."""
    n, p = x.shape
    for k in range(p):
        for m in range(k, p):
            s = 0.0
            for j in range(n):
                s += w[j] * x[j, k] * x[j, m]
            out[k, m] = s
            out[m, k] = s


def weighted_crossprod(x, w):
    """Weighted Gram matrix X' diag(w) X.

    Parameters
    ----------
    x : ndarray (nsamples, ncoefs)
        Design matrix.
    w : ndarray (nsamples,)
        Diagonal weights.

    Returns
    -------
    ndarray (ncoefs, ncoefs)
    """
    x = np.ascontiguousarray(x, dtype=np.float64)
    w = np.ascontiguousarray(w, dtype=np.float64)
    out = np.empty((x.shape[1], x.shape[1]), dtype=np.float64)
    _weighted_crossprod_kernel(x, w, out)
    return out


def cholesky(b):
    """Lower Cholesky factor of a symmetric positive-definite matrix.

    Raises SingularSystemError if b is not positive definite or not finite.
    """
    if not np.all(np.isfinite(b)):
        raise SingularSystemError("Gram matrix has non-finite entries")
    try:
        return cho_factor(b, lower=True, check_finite=False)
    except np.linalg.LinAlgError as err:
        raise SingularSystemError(f"Gram matrix is not positive definite: {err}") from err


def logdet_from_cholesky(factor):
    """log det(B) from the factor returned by cholesky()."""
    c, _ = factor
    return 2.0 * np.sum(np.log(np.diag(c)))


def ridge_inverse(gram, ridge):
    """Inverse of gram + diag(ridge), checked for conditioning.

    Parameters
    ----------
    gram : ndarray (p, p)
        Weighted Gram matrix X'WX.
    ridge : ndarray (p,)
        Non-negative ridge penalties.

    Returns
    -------
    ndarray (p, p)
    """
    a = gram + np.diag(ridge)
    factor = cholesky(a)
    # 2-norm condition number; p is small
    rcond = 1.0 / np.linalg.cond(a)
    if not rcond > RCOND_MIN:
        raise SingularSystemError(
            f"Penalized Gram matrix is ill-conditioned (rcond={rcond:.3g})",
            rcond=rcond)
    return cho_solve(factor, np.eye(a.shape[0]), check_finite=False)

"""
Genewise dispersion estimation for negative binomial GLMs.

The Cox-Reid adjusted log-likelihood (optionally with a normal prior on the
log dispersion) is maximized over a = log(alpha) row by row, by gradient
ascent with an adaptive step size kappa and an Armijo line search.
"""

import warnings

import numpy as np

from .classes import DispersionFit
from .errors import InvalidInputError, SingularSystemError
from .likelihood import log_likelihood, log_likelihood_gradient
from .utils import (as_count_matrix, as_design, expand_as_matrix,
                    expand_as_vector, check_iteration_args, check_interrupt)

# Bounds on log-dispersion; lgamma(1/alpha) is unstable for 1/alpha near 1e17.
LOG_ALPHA_LOWER = -30.0
LOG_ALPHA_UPPER = 10.0

# Armijo sufficient-increase constant.
ARMIJO_EPSILON = 1.0e-4

# After an accepted step kappa grows by STEP_GROWTH (capped at the initial
# step) and is halved every DAMPING_PERIOD accepted steps.
STEP_GROWTH = 1.1
DAMPING_PERIOD = 5


def fit_dispersion_row(y, x, mu, log_alpha, prior_mean=0.0, prior_var=1.0,
                       min_log_alpha=np.log(1e-8 / 10), initial_step=1.0,
                       tol=1e-6, max_iter=100, use_prior=False):
    """Maximize the adjusted log-likelihood of log-dispersion for one entity.

    Parameters
    ----------
    y : ndarray (nsamples,)
        Counts for one entity.
    x : ndarray (nsamples, ncoefs)
        Design matrix.
    mu : ndarray (nsamples,)
        Fitted means for the entity.
    log_alpha : float
        Starting log-dispersion. Values outside [-30, 10] are moved onto
        the nearest bound.
    prior_mean, prior_var : float
        Normal prior on log-dispersion (used only if use_prior).
    min_log_alpha : float
        Stop once an accepted step falls below this value.
    initial_step : float
        Initial (and maximal) step size kappa.
    tol : float
        Stop once an accepted step improves the objective by less than tol.
    max_iter : int
        Maximum number of accept/reject decisions.
    use_prior : bool
        Whether to include the prior term.

    Returns
    -------
    dict with 'log_alpha', 'iterations', 'iterations_accepted',
    'last_change', 'initial_ll', 'initial_gradient', 'final_ll',
    'final_gradient', 'step_trajectory', 'converged', 'diverged'.
    """
    def objective(a):
        return log_likelihood(a, y, mu, x, prior_mean, prior_var, use_prior)

    def gradient(a):
        return log_likelihood_gradient(a, y, mu, x, prior_mean, prior_var,
                                       use_prior)

    a = min(max(float(log_alpha), LOG_ALPHA_LOWER), LOG_ALPHA_UPPER)
    kappa = initial_step
    ll = objective(a)
    dll = gradient(a)
    initial_ll = ll
    initial_dll = dll

    trajectory = np.full(max_iter, np.nan)
    n_iter = 0
    n_accept = 0
    change = -1.0
    converged = False
    diverged = False

    for t in range(max_iter):
        trajectory[t] = kappa
        n_iter += 1
        a_propose = a + kappa * dll
        if a_propose < LOG_ALPHA_LOWER:
            kappa = (LOG_ALPHA_LOWER - a) / dll
            a_propose = LOG_ALPHA_LOWER
        if a_propose > LOG_ALPHA_UPPER:
            kappa = (LOG_ALPHA_UPPER - a) / dll
            a_propose = LOG_ALPHA_UPPER

        # Armijo rule on theta(kappa) = -ll(a + kappa * dll)
        theta_kappa = -objective(a_propose)
        theta_hat_kappa = -ll - kappa * ARMIJO_EPSILON * dll ** 2
        if theta_kappa <= theta_hat_kappa:
            n_accept += 1
            a = a_propose
            ll_new = objective(a)
            change = ll_new - ll
            if change < tol:
                ll = ll_new
                converged = True
                break
            if a < min_log_alpha:
                diverged = True
                break
            ll = ll_new
            dll = gradient(a)
            kappa = min(kappa * STEP_GROWTH, initial_step)
            if n_accept % DAMPING_PERIOD == 0:
                kappa = kappa / 2.0
        else:
            kappa = kappa / 2.0

    return {
        'log_alpha': a,
        'iterations': n_iter,
        'iterations_accepted': n_accept,
        'last_change': change,
        'initial_ll': initial_ll,
        'initial_gradient': initial_dll,
        'final_ll': ll,
        'final_gradient': dll,
        'step_trajectory': trajectory,
        'converged': converged,
        'diverged': diverged,
    }


def fit_dispersion(counts, design, fitted_means, initial_log_alpha,
                   prior_mean=0.0, prior_var=1.0,
                   min_log_alpha=np.log(1e-8 / 10), initial_step=1.0,
                   tol=1e-6, max_iter=100, use_prior=False, interrupt=None):
    """Fit genewise NB dispersions by Cox-Reid adjusted maximum likelihood.

    Each row is fit independently with fit_dispersion_row().

    Parameters
    ----------
    counts : ndarray or DataFrame (ngenes, nsamples)
        Count matrix.
    design : ndarray (nsamples, ncoefs)
        Design matrix of full column rank.
    fitted_means : ndarray (ngenes, nsamples)
        Strictly positive fitted means, e.g. from fitted_means().
    initial_log_alpha : float or ndarray (ngenes,)
        Starting log-dispersions.
    prior_mean : float or ndarray (ngenes,)
        Prior means of log-dispersion.
    prior_var : float
        Prior variance of log-dispersion, shared by all genes.
    min_log_alpha : float
        Rows whose log-dispersion drops below this value stop early and are
        flagged as diverged. Defaults to log(1e-8 / 10).
    initial_step : float
        Initial step size of the line search.
    tol : float
        Log-likelihood improvement below which a row has converged.
    max_iter : int
        Maximum line-search decisions per row.
    use_prior : bool
        Whether to add the prior on log-dispersion.
    interrupt : object with ``is_set()``, optional
        Cancellation token polled before each row.

    Returns
    -------
    DispersionFit
    """
    y, names = as_count_matrix(counts)
    ngenes, nlibs = y.shape
    x = as_design(design, nlibs)
    mu = expand_as_matrix(fitted_means, y.shape, name="fitted_means")
    if not np.all(np.isfinite(mu)) or np.any(mu <= 0):
        raise InvalidInputError("fitted means must be positive and finite")
    log_alpha0 = expand_as_vector(initial_log_alpha, ngenes,
                                  name="initial_log_alpha")
    if not np.all(np.isfinite(log_alpha0)):
        raise InvalidInputError("'initial_log_alpha' must be finite")
    prior_mean = expand_as_vector(prior_mean, ngenes, name="prior_mean")
    if use_prior and not (np.isfinite(prior_var) and prior_var > 0):
        raise InvalidInputError("'prior_var' must be positive")
    if not initial_step > 0:
        raise InvalidInputError("'initial_step' must be positive")
    tol, max_iter = check_iteration_args(tol, max_iter)

    log_alpha = np.zeros(ngenes)
    n_iter = np.zeros(ngenes, dtype=int)
    n_accept = np.zeros(ngenes, dtype=int)
    last_change = np.zeros(ngenes)
    initial_ll = np.zeros(ngenes)
    initial_dll = np.zeros(ngenes)
    final_ll = np.zeros(ngenes)
    final_dll = np.zeros(ngenes)
    trajectory = np.full((ngenes, max_iter), np.nan)
    converged = np.zeros(ngenes, dtype=bool)
    diverged = np.zeros(ngenes, dtype=bool)

    for g in range(ngenes):
        check_interrupt(interrupt, g)
        try:
            res = fit_dispersion_row(y[g], x, mu[g], log_alpha0[g],
                                     prior_mean=prior_mean[g],
                                     prior_var=prior_var,
                                     min_log_alpha=min_log_alpha,
                                     initial_step=initial_step, tol=tol,
                                     max_iter=max_iter, use_prior=use_prior)
        except SingularSystemError as err:
            raise err.with_entity(g) from err

        log_alpha[g] = res['log_alpha']
        n_iter[g] = res['iterations']
        n_accept[g] = res['iterations_accepted']
        last_change[g] = res['last_change']
        initial_ll[g] = res['initial_ll']
        initial_dll[g] = res['initial_gradient']
        final_ll[g] = res['final_ll']
        final_dll[g] = res['final_gradient']
        trajectory[g] = res['step_trajectory']
        converged[g] = res['converged']
        diverged[g] = res['diverged']

    n_failed = int(np.sum(~converged & ~diverged))
    if n_failed > 0:
        warnings.warn(f"{n_failed} rows did not converge in dispersion "
                      f"within {max_iter} iterations; see 'converged'")

    return DispersionFit(
        log_alpha=log_alpha,
        alpha=np.exp(log_alpha),
        iterations=n_iter,
        iterations_accepted=n_accept,
        last_change=last_change,
        initial_ll=initial_ll,
        initial_gradient=initial_dll,
        final_ll=final_ll,
        final_gradient=final_dll,
        step_trajectory=trajectory,
        converged=converged,
        diverged=diverged,
        names=names,
    )

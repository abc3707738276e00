"""
Cox-Reid adjusted negative binomial log-likelihood for the dispersion.

Both functions work on one entity (one row of the count matrix) and are
expressed in terms of a = log(alpha), the log of the NB dispersion. An
optional normal prior on a turns the objective into a log posterior.
"""

import numpy as np
from scipy.special import gammaln, digamma
from scipy.linalg import cho_solve

from .linalg import weighted_crossprod, cholesky, logdet_from_cholesky


def log_likelihood(log_alpha, y, mu, x, prior_mean=0.0, prior_var=1.0,
                   use_prior=False):
    """Penalized log-likelihood of log-dispersion for one entity.

    Parameters
    ----------
    log_alpha : float
        Log of the dispersion parameter.
    y : ndarray (nsamples,)
        Observed counts.
    mu : ndarray (nsamples,)
        Fitted means, strictly positive.
    x : ndarray (nsamples, ncoefs)
        Design matrix, used for the Cox-Reid adjustment.
    prior_mean : float
        Mean of the normal prior on log_alpha.
    prior_var : float
        Variance of the normal prior on log_alpha.
    use_prior : bool
        Whether to add the prior term.

    Returns
    -------
    float
        NB log-likelihood + Cox-Reid term + prior term.
    """
    alpha = np.exp(log_alpha)
    alpha_neg1 = 1.0 / alpha

    w = 1.0 / (1.0 / mu + alpha)
    b = weighted_crossprod(x, w)
    cr_term = -0.5 * logdet_from_cholesky(cholesky(b))

    ll_part = np.sum(gammaln(y + alpha_neg1) - gammaln(alpha_neg1)
                     - y * np.log(mu + alpha_neg1)
                     - alpha_neg1 * np.log1p(mu * alpha))

    if use_prior:
        prior_part = -0.5 * (log_alpha - prior_mean) ** 2 / prior_var
    else:
        prior_part = 0.0

    return float(ll_part + prior_part + cr_term)


def log_likelihood_gradient(log_alpha, y, mu, x, prior_mean=0.0,
                            prior_var=1.0, use_prior=False):
    """Derivative of log_likelihood() with respect to log_alpha.

    The NB and Cox-Reid parts are differentiated with respect to alpha and
    multiplied by alpha; the prior part is already on the log scale.
    d log det(B) / d alpha = trace(B^-1 dB/d alpha).
    """
    alpha = np.exp(log_alpha)
    alpha_neg1 = 1.0 / alpha
    alpha_neg2 = alpha_neg1 * alpha_neg1

    inv_mu_alpha = 1.0 / mu + alpha
    w = 1.0 / inv_mu_alpha
    dw = -1.0 / (inv_mu_alpha * inv_mu_alpha)
    b = weighted_crossprod(x, w)
    db = weighted_crossprod(x, dw)
    factor = cholesky(b)
    cr_term = -0.5 * np.trace(cho_solve(factor, db, check_finite=False))

    mu_alpha = mu * alpha
    ll_part = alpha_neg2 * np.sum(digamma(alpha_neg1) + np.log1p(mu_alpha)
                                  - mu_alpha / (1.0 + mu_alpha)
                                  - digamma(y + alpha_neg1)
                                  + y / (mu + alpha_neg1))

    if use_prior:
        prior_part = -(log_alpha - prior_mean) / prior_var
    else:
        prior_part = 0.0

    return float((ll_part + cr_term) * alpha + prior_part)


def log_likelihood_grid(log_alphas, y, mu, x, prior_mean=0.0, prior_var=1.0,
                        use_prior=False):
    """Evaluate log_likelihood() over a grid of log-dispersions.

    Returns
    -------
    ndarray with one objective value per grid point.
    """
    log_alphas = np.atleast_1d(np.asarray(log_alphas, dtype=np.float64))
    return np.array([log_likelihood(a, y, mu, x, prior_mean, prior_var,
                                    use_prior)
                     for a in log_alphas])

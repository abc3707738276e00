"""
Diagnostic plots for dispersion and coefficient fits.
"""

import numpy as np

from .likelihood import log_likelihood_grid


def plot_disp_fit(fit, mean_counts=None, xlab=None,
                  ylab='log10 dispersion', main=None, col='black',
                  col_failed='red', col_diverged='blue', cex=0.2, **kwargs):
    """Plot fitted dispersions, highlighting rows that did not converge.

    Parameters
    ----------
    fit : DispersionFit
        Result of fit_dispersion().
    mean_counts : ndarray (ngenes,), optional
        Mean (normalized) count per row for the x-axis. If None, rows are
        plotted against their index.
    xlab : str, optional
        X-axis label. Defaults to 'log10 mean count', or 'row' when
        mean_counts is None.
    ylab, main : str
        Plot labels.

    Returns
    -------
    tuple of (fig, ax)
    """
    import matplotlib.pyplot as plt

    alpha = np.asarray(fit['alpha'])
    converged = np.asarray(fit['converged'], dtype=bool)
    diverged = np.asarray(fit['diverged'], dtype=bool)
    failed = ~converged & ~diverged

    if mean_counts is None:
        x = np.arange(len(alpha), dtype=np.float64)
        if xlab is None:
            xlab = 'row'
    else:
        x = np.log10(np.maximum(np.asarray(mean_counts, dtype=np.float64),
                                1e-300))
        if xlab is None:
            xlab = 'log10 mean count'
    y = np.log10(alpha)

    fig, ax = plt.subplots(figsize=(8, 6))
    ok = converged
    ax.scatter(x[ok], y[ok], s=cex * 10, alpha=0.5, c=col, label='Converged')
    if np.any(diverged):
        ax.scatter(x[diverged], y[diverged], s=cex * 30, c=col_diverged,
                   label='Diverged')
    if np.any(failed):
        ax.scatter(x[failed], y[failed], s=cex * 30, c=col_failed,
                   label='Not converged')

    ax.set_xlabel(xlab)
    ax.set_ylabel(ylab)
    if main:
        ax.set_title(main)
    ax.legend(loc='upper right')

    plt.tight_layout()
    return fig, ax


def plot_step_trajectory(fit, rows=None, xlab='Iteration',
                         ylab='Step size (kappa)', main=None, log=True,
                         **kwargs):
    """Plot the line-search step size against iteration for selected rows.

    Parameters
    ----------
    fit : DispersionFit
        Result of fit_dispersion().
    rows : sequence of int, optional
        Rows to draw. Default: the first 10.
    log : bool
        Use a log scale for the step size.

    Returns
    -------
    tuple of (fig, ax)
    """
    import matplotlib.pyplot as plt

    kappa = np.asarray(fit['step_trajectory'])
    if rows is None:
        rows = range(min(10, kappa.shape[0]))
    names = fit.get('names')

    fig, ax = plt.subplots(figsize=(8, 6))
    for g in rows:
        k = kappa[g]
        used = ~np.isnan(k)
        label = str(names[g]) if names is not None else f"row {g}"
        ax.plot(np.arange(1, len(k) + 1)[used], k[used], marker='.',
                linewidth=0.8, label=label)

    if log:
        ax.set_yscale('log')
    ax.set_xlabel(xlab)
    ax.set_ylabel(ylab)
    if main:
        ax.set_title(main)
    ax.legend(fontsize='small')

    plt.tight_layout()
    return fig, ax


def plot_ll_profile(y, x, mu, log_alpha=None, log_alphas=None,
                    prior_mean=0.0, prior_var=1.0, use_prior=False,
                    xlab='log dispersion', ylab='Adjusted log-likelihood',
                    main=None, col='black', **kwargs):
    """Plot the adjusted log-likelihood profile of one row.

    Parameters
    ----------
    y, mu : ndarray (nsamples,)
        Counts and fitted means for the row.
    x : ndarray (nsamples, ncoefs)
        Design matrix.
    log_alpha : float, optional
        Fitted log-dispersion, drawn as a vertical line.
    log_alphas : ndarray, optional
        Grid of log-dispersions. Default: 200 points on [-10, 5].
    prior_mean, prior_var, use_prior
        As in log_likelihood().

    Returns
    -------
    tuple of (fig, ax)
    """
    import matplotlib.pyplot as plt

    if log_alphas is None:
        log_alphas = np.linspace(-10.0, 5.0, 200)
    log_alphas = np.asarray(log_alphas, dtype=np.float64)
    ll = log_likelihood_grid(log_alphas, np.asarray(y, dtype=np.float64),
                             np.asarray(mu, dtype=np.float64),
                             np.asarray(x, dtype=np.float64),
                             prior_mean, prior_var, use_prior)

    fig, ax = plt.subplots(figsize=(8, 6))
    ax.plot(log_alphas, ll, color=col, linewidth=1.0)
    if log_alpha is not None:
        ax.axvline(log_alpha, color='red', linestyle='--', linewidth=0.8,
                   label='Fitted')
        ax.legend(loc='lower left')

    ax.set_xlabel(xlab)
    ax.set_ylabel(ylab)
    if main:
        ax.set_title(main)

    plt.tight_layout()
    return fig, ax

"""Tests for genewise dispersion estimation: line search, bounds, prior, diagnostics."""

import threading
import warnings

import numpy as np
import pandas as pd
import pytest

import deseqcore as dc
from deseqcore.dispersion import LOG_ALPHA_LOWER, LOG_ALPHA_UPPER


def _quiet_fit(*args, **kwargs):
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        return dc.fit_dispersion(*args, **kwargs)


@pytest.fixture
def deep_data(rng):
    """3 genes x 200 samples, intercept only, with known means and dispersions."""
    nlibs = 200
    x = np.ones((nlibs, 1))
    mu = np.full((3, nlibs), 50.0)
    alpha = np.array([0.05, 0.2, 1.0])
    size = 1.0 / alpha[:, None]
    y = rng.negative_binomial(size, size / (size + mu)).astype(float)
    return y, x, mu, alpha


# ── Ascent ───────────────────────────────────────────────────────────

class TestAscent:
    """Armijo line search increases the objective."""

    def test_final_ll_not_below_initial(self, nb_data):
        d = nb_data
        fit = _quiet_fit(d['counts'], d['design'], d['mu'],
                         initial_log_alpha=0.0)
        assert np.all(fit['final_ll'] >= fit['initial_ll'])
        assert np.all(fit['iterations_accepted'] <= fit['iterations'])

    def test_final_ll_matches_objective(self, nb_data):
        d = nb_data
        fit = _quiet_fit(d['counts'][:5], d['design'], d['mu'][:5],
                         initial_log_alpha=np.log(0.1))
        for g in range(5):
            ll = dc.log_likelihood(fit['log_alpha'][g], d['counts'][g],
                                   d['mu'][g], d['design'])
            if fit['converged'][g]:
                assert abs(ll - fit['final_ll'][g]) < 1e-10

    def test_converged_rows_have_small_change(self, nb_data):
        d = nb_data
        fit = _quiet_fit(d['counts'], d['design'], d['mu'],
                         initial_log_alpha=np.log(0.1), tol=1e-6)
        conv = fit['converged']
        assert np.any(conv)
        assert np.all(fit['last_change'][conv] < 1e-6)
        assert np.all(fit['last_change'][conv] >= 0)

    def test_recovers_dispersion_scale(self, deep_data):
        y, x, mu, alpha = deep_data
        fit = _quiet_fit(y, x, mu, initial_log_alpha=np.log(0.1),
                         max_iter=200)
        assert np.all(fit['converged'])
        assert np.all(np.abs(fit['log_alpha'] - np.log(alpha)) < 0.5)

    def test_exact_fit_converges_immediately(self):
        # One sample per row, y == mu: the gradient is already near zero
        x = np.ones((1, 1))
        y = np.array([[5.0], [10.0], [20.0]])
        fit = dc.fit_dispersion(y, x, y.copy(), initial_log_alpha=np.log(0.01),
                                tol=1e-6)
        assert np.all(fit['converged'])
        assert np.all(fit['iterations'] == 1)
        assert np.all(np.abs(fit['last_change']) < 1e-6)


# ── Bounds and divergence ────────────────────────────────────────────

class TestBounds:
    """Log-dispersion stays within [-30, 10]."""

    def test_huge_step_stays_in_bounds(self, nb_data):
        d = nb_data
        fit = _quiet_fit(d['counts'], d['design'], d['mu'],
                         initial_log_alpha=0.0, initial_step=1e6)
        assert np.all(fit['log_alpha'] >= LOG_ALPHA_LOWER)
        assert np.all(fit['log_alpha'] <= LOG_ALPHA_UPPER)

    def test_start_outside_bounds_is_clipped(self, nb_data):
        d = nb_data
        start = np.where(np.arange(20) % 2 == 0, -50.0, 25.0)
        fit = _quiet_fit(d['counts'], d['design'], d['mu'],
                         initial_log_alpha=start)
        assert np.all(fit['log_alpha'] >= LOG_ALPHA_LOWER)
        assert np.all(fit['log_alpha'] <= LOG_ALPHA_UPPER)

    def test_poisson_data_hits_lower_bound_not_beyond(self):
        x = np.ones((6, 1))
        y = np.full((1, 6), 10.0)
        fit = _quiet_fit(y, x, y.copy(), initial_log_alpha=0.0,
                         min_log_alpha=-40.0, initial_step=50.0,
                         max_iter=500)
        assert fit['log_alpha'][0] >= LOG_ALPHA_LOWER
        assert fit['log_alpha'][0] < 0.0

    def test_divergence_toward_zero_is_flagged(self):
        # Equal counts: the likelihood increases as alpha -> 0
        x = np.ones((6, 1))
        y = np.full((1, 6), 10.0)
        fit = dc.fit_dispersion(y, x, y.copy(), initial_log_alpha=0.0,
                                min_log_alpha=-2.0)
        assert fit['diverged'][0]
        assert not fit['converged'][0]
        assert fit['log_alpha'][0] < -2.0
        assert fit['iterations'][0] < 100

    def test_overshoot_from_distant_start_is_diverged(self, deep_data):
        # Row 0 (alpha 0.05) started at alpha 1: the first step is clamped
        # to the lower bound, accepted, and the row stops as diverged
        y, x, mu, _ = deep_data
        fit = _quiet_fit(y, x, mu, initial_log_alpha=0.0, max_iter=200)
        assert fit['diverged'][0]
        assert not fit['converged'][0]
        assert fit['log_alpha'][0] == LOG_ALPHA_LOWER
        assert fit['iterations'][0] == 1
        assert np.all(fit['converged'][1:])


# ── Prior ────────────────────────────────────────────────────────────

class TestPrior:
    """Normal prior on log-dispersion."""

    def test_prior_pulls_toward_mean(self, deep_data):
        y, x, mu, _ = deep_data
        ml = _quiet_fit(y, x, mu, initial_log_alpha=np.log(0.1),
                        max_iter=200)
        assert np.all(ml['converged'])
        prior_mean = ml['log_alpha'] + 2.0
        map_fit = _quiet_fit(y, x, mu, initial_log_alpha=ml['log_alpha'],
                             prior_mean=prior_mean, prior_var=0.01,
                             use_prior=True, max_iter=200)
        dist_ml = np.abs(ml['log_alpha'] - prior_mean)
        dist_map = np.abs(map_fit['log_alpha'] - prior_mean)
        assert np.all(dist_map < dist_ml - 0.3)
        assert np.all(map_fit['log_alpha'] > ml['log_alpha'])

    def test_prior_ignored_when_disabled(self, nb_data):
        d = nb_data
        a = _quiet_fit(d['counts'][:3], d['design'], d['mu'][:3],
                       initial_log_alpha=-1.0)
        b = _quiet_fit(d['counts'][:3], d['design'], d['mu'][:3],
                       initial_log_alpha=-1.0, prior_mean=5.0,
                       prior_var=0.01, use_prior=False)
        assert np.array_equal(a['log_alpha'], b['log_alpha'])


# ── Diagnostics ──────────────────────────────────────────────────────

class TestDiagnostics:
    """Counters, step trajectories and warnings."""

    def test_step_trajectory(self, nb_data):
        d = nb_data
        fit = _quiet_fit(d['counts'], d['design'], d['mu'],
                         initial_log_alpha=0.0, initial_step=0.5,
                         max_iter=50)
        traj = fit['step_trajectory']
        assert traj.shape == (20, 50)
        assert np.all(traj[:, 0] == 0.5)
        for g in range(20):
            n = fit['iterations'][g]
            assert np.all(~np.isnan(traj[g, :n]))
            assert np.all(np.isnan(traj[g, n:]))
            assert np.all(traj[g, :n] > 0)

    def test_initial_values_recorded(self, nb_data):
        d = nb_data
        fit = _quiet_fit(d['counts'][:3], d['design'], d['mu'][:3],
                         initial_log_alpha=-0.5)
        for g in range(3):
            ll = dc.log_likelihood(-0.5, d['counts'][g], d['mu'][g],
                                   d['design'])
            dll = dc.log_likelihood_gradient(-0.5, d['counts'][g],
                                             d['mu'][g], d['design'])
            assert fit['initial_ll'][g] == pytest.approx(ll)
            assert fit['initial_gradient'][g] == pytest.approx(dll)

    def test_non_convergence_warns_not_raises(self, nb_data):
        d = nb_data
        with pytest.warns(UserWarning, match="did not converge"):
            fit = dc.fit_dispersion(d['counts'], d['design'], d['mu'],
                                    initial_log_alpha=3.0, max_iter=1)
        assert np.all(fit['iterations'] == 1)
        assert np.any(~fit['converged'])

    def test_alpha_is_exp_log_alpha(self, nb_data):
        d = nb_data
        fit = _quiet_fit(d['counts'], d['design'], d['mu'],
                         initial_log_alpha=0.0)
        assert np.allclose(fit.alpha, np.exp(fit.log_alpha))


# ── Independence and batching ────────────────────────────────────────

class TestIndependence:
    """Rows are fit independently."""

    def test_batch_equals_single_rows(self, nb_data):
        d = nb_data
        batch = _quiet_fit(d['counts'], d['design'], d['mu'],
                           initial_log_alpha=np.log(d['alpha']))
        for g in range(0, 20, 4):
            single = _quiet_fit(d['counts'][g:g + 1], d['design'],
                                d['mu'][g:g + 1],
                                initial_log_alpha=np.log(d['alpha'][g]))
            assert single['log_alpha'][0] == batch['log_alpha'][g]
            assert single['iterations'][0] == batch['iterations'][g]
            assert single['final_ll'][0] == batch['final_ll'][g]

    def test_row_function_matches_batch(self, nb_data):
        d = nb_data
        batch = _quiet_fit(d['counts'][:2], d['design'], d['mu'][:2],
                           initial_log_alpha=-1.0)
        res = dc.fit_dispersion_row(d['counts'][1], d['design'], d['mu'][1],
                                    -1.0)
        assert res['log_alpha'] == batch['log_alpha'][1]
        assert res['iterations_accepted'] == batch['iterations_accepted'][1]

    def test_dataframe_names_kept(self, nb_data):
        d = nb_data
        names = [f"Gene{i + 1}" for i in range(20)]
        counts = pd.DataFrame(d['counts'], index=names)
        fit = _quiet_fit(counts, d['design'], d['mu'], initial_log_alpha=0.0)
        assert fit['names'] == names
        assert list(fit.to_frame().index) == names


# ── Interruption and validation ──────────────────────────────────────

class TestInterruptAndValidation:
    """Cooperative cancellation and input checks."""

    def test_interrupt_before_first_row(self, nb_data):
        d = nb_data
        event = threading.Event()
        event.set()
        with pytest.raises(dc.FitInterrupted) as info:
            dc.fit_dispersion(d['counts'], d['design'], d['mu'], 0.0,
                              interrupt=event)
        assert info.value.entity == 0

    def test_interrupt_between_rows(self, nb_data):
        d = nb_data

        class AfterTwo:
            def __init__(self):
                self.polls = 0

            def is_set(self):
                self.polls += 1
                return self.polls > 2

        with pytest.raises(dc.FitInterrupted) as info:
            _quiet_fit(d['counts'], d['design'], d['mu'], 0.0,
                       interrupt=AfterTwo())
        assert info.value.entity == 2

    def test_nonpositive_means_rejected(self, nb_data):
        d = nb_data
        mu = d['mu'].copy()
        mu[3, 2] = 0.0
        with pytest.raises(dc.InvalidInputError):
            dc.fit_dispersion(d['counts'], d['design'], mu, 0.0)

    def test_negative_counts_rejected(self, nb_data):
        d = nb_data
        y = d['counts'].copy()
        y[0, 0] = -1
        with pytest.raises(ValueError, match="Negative counts"):
            dc.fit_dispersion(y, d['design'], d['mu'], 0.0)

    def test_rank_deficient_design_rejected(self, nb_data):
        d = nb_data
        design = np.column_stack([d['design'], d['design'][:, 1]])
        with pytest.raises(dc.InvalidInputError, match="full rank"):
            dc.fit_dispersion(d['counts'], design, d['mu'], 0.0)

    def test_bad_prior_variance_rejected(self, nb_data):
        d = nb_data
        with pytest.raises(dc.InvalidInputError):
            dc.fit_dispersion(d['counts'], d['design'], d['mu'], 0.0,
                              prior_var=0.0, use_prior=True)

    def test_wrong_length_start_rejected(self, nb_data):
        d = nb_data
        with pytest.raises(dc.InvalidInputError):
            dc.fit_dispersion(d['counts'], d['design'], d['mu'],
                              np.zeros(7))

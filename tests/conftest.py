"""Shared fixtures for deseqcore tests."""

import numpy as np
import pytest


@pytest.fixture
def rng():
    """Seeded random number generator for reproducibility."""
    return np.random.RandomState(42)


@pytest.fixture
def design6():
    """Design matrix for 6 samples with intercept + group."""
    return np.column_stack([np.ones(6), np.array([0, 0, 0, 1, 1, 1])])


@pytest.fixture
def nb_data(rng, design6):
    """20 genes x 6 samples of NB counts with known coefficients.

    Returns a dict with counts, design, size factors, true coefficients,
    true dispersions and the true means.
    """
    ngenes = 20
    beta = np.column_stack([rng.uniform(2.0, 5.0, ngenes),
                            rng.normal(0.0, 1.0, ngenes)])
    size_factors = np.array([0.8, 1.0, 1.2, 0.9, 1.1, 1.05])
    mu = size_factors[None, :] * np.exp(beta @ design6.T)
    alpha = rng.uniform(0.05, 0.5, ngenes)
    size = 1.0 / alpha[:, None]
    counts = rng.negative_binomial(size, size / (size + mu)).astype(np.float64)
    return {
        'counts': counts,
        'design': design6,
        'size_factors': size_factors,
        'beta': beta,
        'alpha': alpha,
        'mu': mu,
    }

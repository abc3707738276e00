"""
deseqcore: genewise negative binomial GLM fitting.

Cox-Reid adjusted dispersion estimation and ridge-penalized IRLS for the
coefficients of negative binomial GLMs, fit independently per gene.
"""

__version__ = "0.1.0"

# --- Classes ---
from .classes import DispersionFit, BetaFit
from .errors import InvalidInputError, SingularSystemError, FitInterrupted

# --- Likelihood ---
from .likelihood import (
    log_likelihood,
    log_likelihood_gradient,
    log_likelihood_grid,
)

# --- Dispersion estimation ---
from .dispersion import fit_dispersion, fit_dispersion_row

# --- GLM fitting ---
from .glm_fit import fit_coefficients, fit_beta_row, fitted_means

# --- Visualization ---
from .visualization import (plot_disp_fit, plot_step_trajectory,
                            plot_ll_profile)

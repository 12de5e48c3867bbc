"""
pyPLGLMM: Pseudo-likelihood GLMMs for count data with a known covariance

A Python implementation of Poisson and negative binomial generalised linear
mixed models fitted by pseudo-likelihood, where one random effect has a
known (e.g. kinship) covariance matrix.
"""

from .core import GeneticPLGLMM
from .control import PLGLMMControl
from .reml.optimizer import fit_pl_glmm, PLGLMMResult, FitStatus
from .solver import VarianceSolver
from .plotting import plot_convergence, plot_variance_components
from .datasets import simulate_count_data, simulate_kinship
from .exceptions import (
    DimensionMismatchError,
    SingularMatrixError,
    SingularPseudoVarianceWarning,
    SingularKinshipWarning,
    NegativeVarianceWarning,
    DivergenceWarning,
)

__version__ = "0.1.0"

__all__ = [
    "GeneticPLGLMM",
    "PLGLMMControl",
    "fit_pl_glmm",
    "PLGLMMResult",
    "FitStatus",
    "VarianceSolver",
    "plot_convergence",
    "plot_variance_components",
    "simulate_count_data",
    "simulate_kinship",
    "DimensionMismatchError",
    "SingularMatrixError",
    "SingularPseudoVarianceWarning",
    "SingularKinshipWarning",
    "NegativeVarianceWarning",
    "DivergenceWarning",
]

"""
Error and warning categories raised while fitting.

Structural problems (wrong shapes, fatal singularities) are exceptions and
abort the fit. Expected numerical conditions such as divergence are reported
through :class:`pyplglmm.reml.optimizer.FitStatus` instead, and recoverable
conditions are surfaced as warnings.
"""

import numpy as np


class DimensionMismatchError(ValueError):
    """Raised when matrix or vector dimensions are inconsistent."""


class SingularMatrixError(np.linalg.LinAlgError):
    """Raised when a matrix that must be inverted is computationally singular."""


class SingularPseudoVarianceWarning(RuntimeWarning):
    """The Woodbury middle matrix is singular; a pseudo-inverse is used."""


class SingularKinshipWarning(RuntimeWarning):
    """The known covariance matrix is singular; a block-wise inverse is used."""


class NegativeVarianceWarning(RuntimeWarning):
    """A variance component went negative; the constrained solver takes over."""


class DivergenceWarning(RuntimeWarning):
    """The iterations diverged and the fit stopped early."""

"""
Variance component estimation and mixed model equations.

Key components:
- scoring: REML / pseudo-likelihood score, information and Fisher scoring
- haseman_elston: moment-based (and non-negative) variance component estimators
- schur: coefficient matrix of the mixed model equations and its Schur complement
- optimizer: the pseudo-likelihood fitting loop (import from
  ``pyplglmm.reml.optimizer``)
"""

from .scoring import (
    fisher_score,
    sigma_info_reml,
    sigma_information,
    sigma_score,
    sigma_score_reml,
)
from .haseman_elston import est_haseman_elston, est_haseman_elston_constrained
from .schur import coeff_matrix, schur_complement, solve_equations

__all__ = [
    'fisher_score',
    'sigma_info_reml',
    'sigma_information',
    'sigma_score',
    'sigma_score_reml',
    'est_haseman_elston',
    'est_haseman_elston_constrained',
    'coeff_matrix',
    'schur_complement',
    'solve_equations',
]

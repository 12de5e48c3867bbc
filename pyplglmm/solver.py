"""
Variance component solvers and the rule for switching between them.

Three interchangeable strategies estimate the variance components each
iteration: Fisher scoring, Haseman-Elston regression and constrained
(non-negative least squares) Haseman-Elston regression. The domain of the
variance components is [0, inf), so any negative estimate moves the fit to
the constrained solver for the rest of the run.
"""

from __future__ import annotations
import warnings
from dataclasses import dataclass, replace
from enum import Enum
from typing import Tuple, Union

import numpy as np

from .exceptions import NegativeVarianceWarning
from .reml.haseman_elston import est_haseman_elston, est_haseman_elston_constrained
from .reml.scoring import fisher_score
from .utils import IndexMap


class VarianceSolver(Enum):
    """Enumeration for variance component solvers."""
    FISHER = "Fisher"
    HE = "HE"
    HE_NNLS = "HE-NNLS"


@dataclass(frozen=True)
class SolverState:
    """
    Active variance component solver.

    Attributes
    ----------
    kind : VarianceSolver
        Strategy used for the next update
    intercept : float
        Intercept of the constrained Haseman-Elston regression, carried from
        one iteration to the next (not part of sigma)
    """
    kind: VarianceSolver
    intercept: float = 0.0

    @classmethod
    def from_name(cls, solver: Union[str, VarianceSolver]) -> "SolverState":
        return cls(kind=VarianceSolver(solver))


def next_solver(state: SolverState, sigma_update: np.ndarray) -> SolverState:
    """
    Solver to use after observing an update.

    Any negative component switches to the constrained solver; once
    constrained, the state never reverts.
    """
    if state.kind is VarianceSolver.HE_NNLS:
        return state
    if np.any(np.asarray(sigma_update) < 0.0):
        return replace(state, kind=VarianceSolver.HE_NNLS)
    return state


def update_sigma(
    state: SolverState,
    sigma: np.ndarray,
    information: np.ndarray,
    score: np.ndarray,
    Z: np.ndarray,
    P: np.ndarray,
    u_indices: IndexMap,
    y_star: np.ndarray,
    K: np.ndarray,
    iteration: int
) -> Tuple[np.ndarray, SolverState]:
    """
    Compute the variance component update with the active solver.

    The update is checked once for negative entries; if there are any, the
    same iteration is re-run with the constrained solver, which stays active
    for the remaining iterations.

    Parameters
    ----------
    state : SolverState
        Active solver
    sigma : np.ndarray
        Current variance components
    information, score : np.ndarray
        Expected information and score of the variance components
    Z, P, u_indices, y_star, K
        Inputs of the Haseman-Elston estimators
    iteration : int
        Number of completed iterations

    Returns
    -------
    sigma_update : np.ndarray
        New variance components
    state : SolverState
        Solver for the next iteration
    """
    if state.kind is VarianceSolver.FISHER:
        sigma_update = fisher_score(information, score, sigma)
    elif state.kind is VarianceSolver.HE:
        sigma_update = est_haseman_elston(Z, P, u_indices, y_star, K)
    else:
        return _constrained_update(state, sigma, Z, P, u_indices, y_star, K, iteration)

    new_state = next_solver(state, sigma_update)
    if new_state.kind is not state.kind:
        warnings.warn(
            f"Negative variance components {np.round(sigma_update, 6).tolist()} - re-running with NNLS",
            NegativeVarianceWarning,
        )
        return _constrained_update(new_state, sigma, Z, P, u_indices, y_star, K, iteration)
    return sigma_update, new_state


def _constrained_update(state, sigma, Z, P, u_indices, y_star, K, iteration):
    # on the first iteration the current sigma is only the initial guess
    sigma0 = np.zeros(len(sigma) + 1)
    if iteration > 0:
        sigma0[0] = state.intercept
        sigma0[1:] = sigma

    estimate = est_haseman_elston_constrained(Z, P, u_indices, y_star, K, sigma0, iteration)
    return estimate[1:], replace(state, intercept=float(estimate[0]))

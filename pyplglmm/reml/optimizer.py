"""
Pseudo-likelihood GLMM fitting with a known covariance matrix.

Each iteration linearises the model around the current fitted means and
alternates between:
- estimating the variance components (Fisher scoring, Haseman-Elston or
  constrained Haseman-Elston regression) from the pseudo-variance
  V* = W + Z G Z', inverted with the Woodbury identity, and
- solving Henderson's mixed model equations for the fixed and random
  effects given the new variance components.

The iterations stop when every fixed effect, random effect and variance
component changes by less than the tolerance, when the iteration budget is
spent, or when the update diverges (NaN effects or infinite fitted means).
Divergence ends the fit early with ``converged=False``; it is not an
exception.
"""

from __future__ import annotations
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..exceptions import DimensionMismatchError, DivergenceWarning, SingularMatrixError
from ..families import get_family
from ..inference import compute_se, compute_t_score, var_covar
from ..matrices import (
    compute_p_reml,
    compute_w,
    compute_y_star,
    initialise_g,
    inv_g,
    invert_kinship,
)
from ..pseudovar import invert_pseudo_var, pseudovar_partial_g, pseudovar_partial_p
from ..solver import SolverState, VarianceSolver, update_sigma
from ..utils import IndexMap, as_index_map, check_inf, check_na
from .schur import coeff_matrix, solve_equations
from .scoring import sigma_info_reml, sigma_information, sigma_score, sigma_score_reml


class FitStatus(Enum):
    """State of the fitting loop."""
    ITERATING = "iterating"
    CONVERGED = "converged"
    DIVERGED = "diverged"
    DIVERGED_INF = "diverged_inf"
    MAXITER_REACHED = "maxiter_reached"


@dataclass
class ConvergenceRecord:
    """
    Snapshot of one iteration.

    Attributes
    ----------
    iteration : int
        1-based iteration number
    theta_diff : np.ndarray
        Absolute change of [beta; u] from the previous iteration
    sigma_diff : np.ndarray
        Absolute change of the variance components
    beta, u, sigma : np.ndarray
        Estimates at the end of the iteration
    """
    iteration: int
    theta_diff: np.ndarray
    sigma_diff: np.ndarray
    beta: np.ndarray
    u: np.ndarray
    sigma: np.ndarray


@dataclass
class FitState:
    """Mutable parameter state, owned by the fitting loop."""
    beta: np.ndarray
    u: np.ndarray
    theta: np.ndarray
    sigma: np.ndarray
    G: np.ndarray
    disp: float
    mu: np.ndarray

    def snapshot(self, iteration: int, theta_diff: np.ndarray, sigma_diff: np.ndarray) -> ConvergenceRecord:
        return ConvergenceRecord(
            iteration=iteration,
            theta_diff=theta_diff.copy(),
            sigma_diff=sigma_diff.copy(),
            beta=self.beta.copy(),
            u=self.u.copy(),
            sigma=self.sigma.copy(),
        )


@dataclass
class PLGLMMResult:
    """
    Result of a pseudo-likelihood GLMM fit.

    Attributes
    ----------
    fixed_effects : np.ndarray
        Fixed effect estimates
    random_effects : dict[str, pd.Series]
        Predicted random effects per grouping, labelled by level
    sigma : np.ndarray
        Variance components, one per grouping; the last belongs to K
    converged : bool
        Whether the tolerance was met
    iterations : int
        Number of iterations run (equals ``len(trace)``)
    dispersion : float
        Dispersion used in the final iteration
    information : np.ndarray
        Expected information of the variance components
    se : np.ndarray
        Standard errors of the fixed effects
    t_scores : np.ndarray
        Fixed effect t-scores
    coeff_matrix : np.ndarray
        Coefficient matrix of the mixed model equations
    P : np.ndarray
        REML projection matrix
    V_partial : list of np.ndarray
        Partial derivatives of the pseudo-variance (REML-projected for REML fits)
    G_inv : np.ndarray
        Inverse variance component matrix broadcast to all random effects
    V_star_inv : np.ndarray
        Inverse pseudo-variance
    W_inv : np.ndarray
        Inverse of W = D^-1 Vmu D^-1
    vcov : np.ndarray
        Approximate variance-covariance of the variance components
    trace : list of ConvergenceRecord
        Per-iteration convergence trace
    status : FitStatus
        Terminal state of the fitting loop
    solver : VarianceSolver
        Variance component solver active at the end of the fit
    """
    fixed_effects: np.ndarray
    random_effects: Dict[str, pd.Series]
    sigma: np.ndarray
    converged: bool
    iterations: int
    dispersion: float
    information: np.ndarray
    se: np.ndarray
    t_scores: np.ndarray
    coeff_matrix: np.ndarray
    P: np.ndarray
    V_partial: List[np.ndarray]
    G_inv: np.ndarray
    V_star_inv: np.ndarray
    W_inv: np.ndarray
    vcov: np.ndarray
    trace: List[ConvergenceRecord] = field(default_factory=list)
    status: FitStatus = FitStatus.ITERATING
    solver: VarianceSolver = VarianceSolver.FISHER


def _check_dimensions(Z, X, K, mu, offsets, beta, theta, u, sigma, G, y, index_map):
    n, m = X.shape
    s = Z.shape[1]
    if Z.shape[0] != n:
        raise DimensionMismatchError(f"X has {n} rows but Z has {Z.shape[0]}")
    for name, vec in (("y", y), ("mu", mu), ("offsets", offsets)):
        if vec.shape != (n,):
            raise DimensionMismatchError(f"{name} must have length n={n}, got shape {vec.shape}")
    if beta.shape != (m,):
        raise DimensionMismatchError(f"beta must have length m={m}, got shape {beta.shape}")
    if u.shape != (s,):
        raise DimensionMismatchError(f"u must have length s={s}, got shape {u.shape}")
    if theta.shape != (m + s,):
        raise DimensionMismatchError(f"theta must have length m + s = {m + s}, got shape {theta.shape}")
    if G.shape != (s, s):
        raise DimensionMismatchError(f"G must be {s}x{s}, got {G.shape}")
    if sigma.shape != (len(index_map),):
        raise DimensionMismatchError(
            f"{sigma.size} variance components given for {len(index_map)} random effect groupings"
        )
    if K.ndim != 2 or K.shape[0] != K.shape[1]:
        raise DimensionMismatchError(f"K must be square, got shape {K.shape}")

    all_idx = np.concatenate(list(index_map.values())) if index_map else np.array([], dtype=int)
    if all_idx.size and (all_idx.min() < 0 or all_idx.max() >= s):
        raise DimensionMismatchError(f"u_indices refer to columns outside Z (which has {s} columns)")


def _label_random_effects(u, index_map, rlevels):
    if rlevels is None:
        rlevels = {}
    elif not isinstance(rlevels, Mapping):
        rlevels = dict(zip(index_map, rlevels))

    random_effects = {}
    for name, idx in index_map.items():
        levels = rlevels.get(name)
        if levels is not None and len(levels) != idx.size:
            raise DimensionMismatchError(
                f"Grouping '{name}' has {idx.size} random effects but {len(levels)} level labels"
            )
        random_effects[name] = pd.Series(u[idx], index=levels, name=name)
    return random_effects


def fit_pl_glmm(
    Z: np.ndarray,
    X: np.ndarray,
    K: np.ndarray,
    mu: np.ndarray,
    offsets: np.ndarray,
    beta: np.ndarray,
    theta: np.ndarray,
    u: np.ndarray,
    sigma: np.ndarray,
    G: np.ndarray,
    y: np.ndarray,
    u_indices: IndexMap,
    theta_conv: float,
    rlevels: Optional[Union[Mapping[str, Sequence], Sequence[Sequence]]] = None,
    disp: float = 1.0,
    reml: bool = False,
    max_iter: int = 100,
    solver: Union[str, VarianceSolver] = "Fisher",
    vardist: str = "NB",
    monitoring: bool = False,
) -> PLGLMMResult:
    """
    Fit a count GLMM by pseudo-likelihood with a known covariance matrix.

    Parameters
    ----------
    Z : np.ndarray
        n x s random effect design matrix, mapping random effect levels to
        observations
    X : np.ndarray
        n x m fixed effect design matrix
    K : np.ndarray
        Known covariance between the levels of the last random effect
        grouping (e.g. a kinship matrix)
    mu : np.ndarray
        Initial fitted means
    offsets : np.ndarray
        Offsets of the linear predictor
    beta, theta, u, sigma : np.ndarray
        Initial fixed effects, [beta; u], random effects and variance
        components (one per grouping)
    G : np.ndarray
        Initial s x s variance component matrix
    y : np.ndarray
        Observed counts
    u_indices : mapping or sequence
        Columns of Z per random effect grouping; the last grouping is the one
        whose covariance is K
    theta_conv : float
        Convergence tolerance on the absolute parameter changes
    rlevels : mapping or sequence, optional
        Level labels per grouping, used to label the random effects
    disp : float, default=1.0
        Initial dispersion
    reml : bool, default=False
        Use REML for the variance components
    max_iter : int, default=100
        Iteration budget; the loop stops once the iteration count exceeds it
    solver : str or VarianceSolver, default='Fisher'
        'Fisher', 'HE' or 'HE-NNLS'
    vardist : str, default='NB'
        Variance form: 'NB' or 'P'
    monitoring : bool, default=False
        Print one line of progress per iteration

    Returns
    -------
    PLGLMMResult
        Estimates, inference, final matrices and the convergence trace

    Raises
    ------
    DimensionMismatchError
        If the inputs have inconsistent shapes
    SingularMatrixError
        If a matrix without a principled fallback is singular

    Notes
    -----
    The dispersion is reset to 1 at the start of every iteration; it is not
    estimated jointly with the other parameters.
    """
    X = np.asarray(X, dtype=float)
    Z = np.asarray(Z, dtype=float)
    K = np.asarray(K, dtype=float)
    y = np.asarray(y, dtype=float)
    offsets = np.asarray(offsets, dtype=float)
    index_map = as_index_map(u_indices)

    state = FitState(
        beta=np.array(beta, dtype=float),
        u=np.array(u, dtype=float),
        theta=np.array(theta, dtype=float),
        sigma=np.array(sigma, dtype=float),
        G=np.array(G, dtype=float),
        disp=float(disp),
        mu=np.array(mu, dtype=float),
    )
    _check_dimensions(Z, X, K, state.mu, offsets, state.beta, state.theta, state.u,
                      state.sigma, state.G, y, index_map)

    n, m = X.shape
    s = Z.shape[1]
    c = state.sigma.size
    family = get_family(vardist)
    solver_state = SolverState.from_name(solver)

    # the partial derivatives and K^-1 do not change between iterations
    V_partial = pseudovar_partial_g(Z, K, index_map)
    Kinv = invert_kinship(K, n)

    theta_diff = np.zeros(m + s)
    sigma_diff = np.zeros(c)
    trace: List[ConvergenceRecord] = []
    iterations = 0
    status = FitStatus.ITERATING

    if monitoring:
        print(f"Starting PL-GLMM fit: n={n}, m={m}, s={s}, c={c}, solver={solver_state.kind.value}, "
              f"REML={reml}")

    while status is FitStatus.ITERATING:
        Dinv = np.diag(1.0 / state.mu)
        y_star = compute_y_star(X, state.beta, Z, Dinv, state.u, y, offsets)

        # dispersion is not estimated inside the loop
        state.disp = 1.0

        W = compute_w(state.disp, Dinv, vardist)
        W_inv = np.diag(1.0 / np.diag(W))
        ZtWinv = Z.T @ W_inv
        V_star_inv = invert_pseudo_var(W_inv, state.G, Z, ZtWinv)
        P = compute_p_reml(V_star_inv, X)

        if reml:
            VP_partial = pseudovar_partial_p(V_partial, P)
            score_sigma = sigma_score_reml(VP_partial, y_star, P)
            information_sigma = sigma_info_reml(VP_partial, P)
        else:
            VP_partial = V_partial
            score_sigma = sigma_score(y_star, state.beta, X, V_partial, V_star_inv)
            information_sigma = sigma_information(V_star_inv, V_partial)

        sigma_update, solver_state = update_sigma(
            solver_state, state.sigma, information_sigma, score_sigma,
            Z, P, index_map, y_star, K, iterations
        )

        sigma_diff = np.abs(sigma_update - state.sigma)
        state.sigma = sigma_update
        state.G = initialise_g(index_map, state.sigma, K)
        G_inv = inv_g(index_map, state.sigma, Kinv)

        coeff_mat = coeff_matrix(X, W_inv, Z, G_inv)
        theta_update = solve_equations(m, s, W_inv, Z.T, X.T, coeff_mat, y_star)

        if check_na(theta_update).any():
            iterations += 1
            trace.append(state.snapshot(iterations, theta_diff, sigma_diff))
            warnings.warn(f"NaN in theta update at iteration {iterations} - stopping", DivergenceWarning)
            status = FitStatus.DIVERGED
            break

        theta_diff = np.abs(theta_update - state.theta)
        state.theta = theta_update
        state.beta = state.theta[:m]
        state.u = state.theta[m:]
        state.mu = family.inverse_link(offsets + X @ state.beta + Z @ state.u)

        if check_inf(state.mu).any():
            iterations += 1
            trace.append(state.snapshot(iterations, theta_diff, sigma_diff))
            warnings.warn(
                f"Inf values in mu at iteration {iterations} - algorithm is diverging", DivergenceWarning
            )
            status = FitStatus.DIVERGED_INF
            break

        iterations += 1
        theta_converged = bool(np.all(theta_diff < theta_conv))
        sigma_converged = bool(np.all(sigma_diff < theta_conv))

        if theta_converged and sigma_converged:
            status = FitStatus.CONVERGED
        elif iterations > max_iter:
            status = FitStatus.MAXITER_REACHED

        trace.append(state.snapshot(iterations, theta_diff, sigma_diff))

        if monitoring:
            print(f"[PL-GLMM iter {iterations:3d}] max|dtheta|={theta_diff.max():.3e} "
                  f"max|dsigma|={sigma_diff.max():.3e} sigma={np.round(state.sigma, 4).tolist()} "
                  f"solver={solver_state.kind.value}")

    converged = status is FitStatus.CONVERGED
    if monitoring:
        print(f"[PL-GLMM] Finished after {iterations} iterations: {status.value}")

    try:
        se = compute_se(m, s, coeff_mat)
    except SingularMatrixError:
        if status not in (FitStatus.DIVERGED, FitStatus.DIVERGED_INF):
            raise
        warnings.warn("Standard errors are undefined for the diverged fit - returning NaN", DivergenceWarning)
        se = np.full(m, np.nan)
    t_scores = compute_t_score(state.beta, se)
    vcov = var_covar(VP_partial, c)

    return PLGLMMResult(
        fixed_effects=state.beta,
        random_effects=_label_random_effects(state.u, index_map, rlevels),
        sigma=state.sigma,
        converged=converged,
        iterations=iterations,
        dispersion=state.disp,
        information=information_sigma,
        se=se,
        t_scores=t_scores,
        coeff_matrix=coeff_mat,
        P=P,
        V_partial=VP_partial,
        G_inv=G_inv,
        V_star_inv=V_star_inv,
        W_inv=W_inv,
        vcov=vcov,
        trace=trace,
        status=status,
        solver=solver_state.kind,
    )

"""
Inference for the fixed effects and variance components of a fitted model.
"""

from typing import List

import numpy as np
from scipy import stats

from .exceptions import DimensionMismatchError, SingularMatrixError
from .reml.schur import schur_complement
from .utils import rcond, trace_product

# Schur complements with a smaller reciprocal condition number are singular
SE_RCOND_TOL = 1e-12


def compute_se(m: int, s: int, coeff_mat: np.ndarray) -> np.ndarray:
    """
    Standard errors of the fixed effects from the mixed model coefficient
    matrix.

    Parameters
    ----------
    m : int
        Number of fixed effects
    s : int
        Number of random effects
    coeff_mat : np.ndarray
        (m + s) x (m + s) coefficient matrix of the final iteration

    Returns
    -------
    np.ndarray
        Square roots of the diagonal of S^-1, where S is the Schur complement
        of the random effect block

    Raises
    ------
    DimensionMismatchError
        If the coefficient matrix is not (m + s) x (m + s)
    SingularMatrixError
        If S is computationally singular (rcond < 1e-12)
    """
    S = schur_complement(coeff_mat, m, s)

    s_rcond = rcond(S)
    if s_rcond < SE_RCOND_TOL:
        raise SingularMatrixError(
            f"Standard Error coefficient matrix is computationally singular (rcond={s_rcond:.3e})"
        )
    return np.sqrt(np.diag(np.linalg.inv(S)))


def compute_t_score(beta: np.ndarray, se: np.ndarray) -> np.ndarray:
    """t-scores beta / se; the two vectors must have the same length."""
    beta = np.asarray(beta, dtype=float)
    se = np.asarray(se, dtype=float)
    if beta.shape != se.shape:
        raise DimensionMismatchError(
            f"standard errors and beta estimate sizes differ: {se.size} vs {beta.size}"
        )
    return beta / se


def var_covar(VP_partial: List[np.ndarray], c: int) -> np.ndarray:
    """
    Approximate variance-covariance of the variance component estimates.

    Va_ij = 2 / tr(dV_i dV_j), with dV_i the (REML-projected) partial
    derivatives of the pseudo-variance.
    """
    if len(VP_partial) != c:
        raise DimensionMismatchError(f"{len(VP_partial)} partial derivatives given for {c} variance components")

    Va = np.zeros((c, c))
    for i in range(c):
        for j in range(i, c):
            tr = trace_product(VP_partial[i], VP_partial[j])
            Va[i, j] = 2.0 / tr if tr != 0 else np.inf
            Va[j, i] = Va[i, j]
    return Va


def satterthwaite_df(
    X: np.ndarray,
    V_star_inv: np.ndarray,
    V_partial: List[np.ndarray],
    vcov: np.ndarray
) -> np.ndarray:
    """
    Satterthwaite degrees of freedom for each fixed effect.

    With C = (X' V^-1 X)^-1 the variance of the fixed effects, the gradient of
    C_kk with respect to sigma_j is [C X' V^-1 dV_j V^-1 X C]_kk and

        df_k = 2 C_kk^2 / (g_k' Va g_k)

    Parameters
    ----------
    X : np.ndarray
        Fixed effect design matrix
    V_star_inv : np.ndarray
        Inverse pseudo-variance of the final iteration
    V_partial : list of np.ndarray
        Partial derivatives of the pseudo-variance (not projected)
    vcov : np.ndarray
        Variance-covariance of the variance components

    Returns
    -------
    np.ndarray
        Degrees of freedom, one per fixed effect
    """
    VinvX = V_star_inv @ X
    C = np.linalg.inv(X.T @ VinvX)
    CXtVinv = C @ VinvX.T

    grad = np.column_stack([
        np.diag(CXtVinv @ dV @ CXtVinv.T) for dV in V_partial
    ])
    denom = np.einsum("kj,jl,kl->k", grad, vcov, grad)
    with np.errstate(divide='ignore', invalid='ignore'):
        return 2.0 * np.diag(C)**2 / denom


def compute_p_values(t_scores: np.ndarray, df: np.ndarray) -> np.ndarray:
    """Two-sided p-values of the t-scores under a Student t distribution."""
    return 2.0 * stats.t.sf(np.abs(t_scores), df)

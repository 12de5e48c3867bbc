"""
Henderson's mixed model equations and the Schur complement of their
coefficient matrix.

Given the linearised model, the fixed and random effects solve

    C [beta] = [X'W^-1X    X'W^-1Z        ] [beta] = [X'W^-1 y*]
      [u   ]   [Z'W^-1X    Z'W^-1Z + G^-1 ] [u   ]   [Z'W^-1 y*]

beta always occupies the first m entries of the solution and u the
remaining s, in that order.

The Schur complement of the random effect block

    S = C_bb - C_bu C_uu^-1 C_ub

is the precision of the fixed effects and gives their standard errors.
"""

from __future__ import annotations
from typing import Tuple

import numpy as np

from ..exceptions import DimensionMismatchError, SingularMatrixError


def coeff_matrix(X: np.ndarray, Winv: np.ndarray, Z: np.ndarray, Ginv: np.ndarray) -> np.ndarray:
    """
    Coefficient matrix of the mixed model equations.

    Parameters
    ----------
    X : np.ndarray
        n x m fixed effect design matrix
    Winv : np.ndarray
        n x n inverse residual matrix
    Z : np.ndarray
        n x s random effect design matrix
    Ginv : np.ndarray
        s x s inverse variance component matrix

    Returns
    -------
    np.ndarray
        Symmetric (m + s) x (m + s) matrix
    """
    s = Z.shape[1]
    if Ginv.shape != (s, s):
        raise DimensionMismatchError(f"G^-1 is {Ginv.shape} but Z has {s} columns")

    XtWinv = X.T @ Winv
    ZtWinv = Z.T @ Winv

    ul = XtWinv @ X
    ur = XtWinv @ Z
    ll = ZtWinv @ X
    lr = ZtWinv @ Z + Ginv

    return np.block([
        [ul, ur],
        [ll, lr]
    ])


def solve_equations(
    m: int,
    s: int,
    Winv: np.ndarray,
    Zt: np.ndarray,
    Xt: np.ndarray,
    coeff_mat: np.ndarray,
    y_star: np.ndarray
) -> np.ndarray:
    """
    Solve the mixed model equations by inverting the coefficient matrix.

    Returns
    -------
    np.ndarray
        theta = [beta; u] of length m + s

    Raises
    ------
    SingularMatrixError
        If the coefficient matrix is singular
    """
    if coeff_mat.shape != (m + s, m + s):
        raise DimensionMismatchError(
            f"Coefficient matrix is {coeff_mat.shape} but m + s = {m} + {s}"
        )

    rhs = np.concatenate([Xt @ Winv @ y_star, Zt @ Winv @ y_star])
    try:
        coeff_inv = np.linalg.inv(coeff_mat)
    except np.linalg.LinAlgError as e:
        raise SingularMatrixError(
            f"Mixed model coefficient matrix ({m + s}x{m + s}) is singular: {e}"
        ) from e
    return coeff_inv @ rhs


def split_blocks(coeff_mat: np.ndarray, m: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Split the coefficient matrix at index m into (ul, ur, ll, lr)."""
    return (
        coeff_mat[:m, :m],
        coeff_mat[:m, m:],
        coeff_mat[m:, :m],
        coeff_mat[m:, m:],
    )


def schur_complement(coeff_mat: np.ndarray, m: int, s: int) -> np.ndarray:
    """
    Schur complement of the random effect block, S = ul - ur lr^-1 ll.

    Parameters
    ----------
    coeff_mat : np.ndarray
        (m + s) x (m + s) coefficient matrix
    m : int
        Number of fixed effects
    s : int
        Number of random effects

    Returns
    -------
    np.ndarray
        m x m matrix
    """
    n_rows, n_cols = coeff_mat.shape
    if n_cols != m + s:
        raise DimensionMismatchError(
            f"Coefficient matrix has {n_cols} columns but m + s = {m} + {s} = {m + s}"
        )
    if n_rows != m + s:
        raise DimensionMismatchError(
            f"Coefficient matrix has {n_rows} rows but m + s = {m} + {s} = {m + s}"
        )

    ul, ur, ll, lr = split_blocks(coeff_mat, m)
    try:
        return ul - ur @ np.linalg.solve(lr, ll)
    except np.linalg.LinAlgError as e:
        raise SingularMatrixError(f"Random effect block of the coefficient matrix ({s}x{s}) is singular: {e}") from e

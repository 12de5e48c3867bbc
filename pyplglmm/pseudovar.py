"""
Inverse of the pseudo-variance and its partial derivatives.

The pseudo-variance V* = W + Z G Z' is n x n, but the random effect part is
low rank (s columns), so its inverse is obtained with the Woodbury identity

    (A^-1 + Z B Z')^-1 = A - A Z B (I + Z' A Z B)^-1 Z' A

where A = W^-1 is diagonal and only an s x s matrix has to be inverted.
"""

import warnings
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

import numpy as np

from .exceptions import DimensionMismatchError, SingularPseudoVarianceWarning
from .utils import IndexMap, as_index_map, rcond

# Middle matrices with a smaller reciprocal condition number are pseudo-inverted
PSEUDOVAR_RCOND_TOL = 1e-12


def invert_pseudo_var(
    A: np.ndarray,
    B: np.ndarray,
    Z: np.ndarray,
    ZtA: Optional[np.ndarray] = None
) -> np.ndarray:
    """
    Invert the pseudo-variance with the Woodbury identity.

    Parameters
    ----------
    A : np.ndarray
        n x n inverse residual matrix W^-1
    B : np.ndarray
        s x s variance component matrix G (K is already part of it)
    Z : np.ndarray
        n x s random effect design matrix
    ZtA : np.ndarray, optional
        Z' A; computed when not supplied

    Returns
    -------
    np.ndarray
        n x n inverse of W + Z B Z'

    Notes
    -----
    Z B and Z' A Z do not depend on each other and are computed on two worker
    threads; both are joined before the middle matrix is formed. When the
    middle matrix is singular a pseudo-inverse is used and a
    :class:`SingularPseudoVarianceWarning` is emitted; the result is then not
    guaranteed to be positive definite.
    """
    n, s = Z.shape
    if A.shape != (n, n) or B.shape != (s, s):
        raise DimensionMismatchError(
            f"Cannot invert pseudo-variance with A {A.shape}, B {B.shape} and Z {Z.shape}"
        )
    if ZtA is None:
        ZtA = Z.T @ A

    with ThreadPoolExecutor(max_workers=2) as executor:
        zb_future = executor.submit(np.matmul, Z, B)
        ztaz_future = executor.submit(np.matmul, ZtA, Z)
        ZB = zb_future.result()
        ZtAZ = ztaz_future.result()

    mid = np.eye(s) + ZtAZ @ B

    mid_rcond = rcond(mid)
    if mid_rcond < PSEUDOVAR_RCOND_TOL:
        warnings.warn(
            f"Pseudovariance component matrix is computationally singular (rcond={mid_rcond:.3e}) "
            "- using the pseudo-inverse",
            SingularPseudoVarianceWarning,
        )
        midinv = np.linalg.pinv(mid)
    else:
        midinv = np.linalg.inv(mid)

    return A - (A @ ZB) @ (midinv @ ZtA)


def rank_one_update(A: np.ndarray, k: int, v: np.ndarray) -> np.ndarray:
    """
    Sherman-Morrison update of an inverse.

    Given A = M^-1, returns (M + e_k v')^-1, i.e. the inverse after adding
    ``v`` to row k of M.
    """
    Au = A[:, k]
    vA = v @ A
    return A - np.outer(Au, vA) / (1.0 + vA[k])


def k_rank_one_updates(Vinv: np.ndarray, B: np.ndarray) -> np.ndarray:
    """
    Update an inverse row by row with k rank-one updates.

    Row k of the result is row k of ``rank_one_update(Vinv, k, B[k])``: the
    inverse from the previous iteration updated by the k-th row of the
    matrix of updates ``B``.

    Parameters
    ----------
    Vinv : np.ndarray
        n x n inverse pseudo-variance from the previous iteration
    B : np.ndarray
        n x n matrix of updates

    Returns
    -------
    np.ndarray
        n x n matrix of updated rows
    """
    n = B.shape[0]
    if Vinv.shape != (n, n) or B.shape != (n, n):
        raise DimensionMismatchError(f"Rank-one updates need square inputs of equal size, got {Vinv.shape} and {B.shape}")

    vupdate = Vinv.copy()
    for k in range(n):
        vA = B[k] @ Vinv
        # row k of A - (A e_k)(v'A) / (1 + v'A e_k)
        vupdate[k] = Vinv[k] - Vinv[k, k] * vA / (1.0 + vA[k])
    return vupdate


def pseudovar_partial_g(Z: np.ndarray, K: np.ndarray, u_indices: IndexMap) -> List[np.ndarray]:
    """
    Partial derivatives of the pseudo-variance with respect to each variance
    component.

    dV/dsigma_i = Z_i Z_i' for ordinary groupings and Z_c K Z_c' for the last
    grouping, where Z_i are the columns of Z belonging to grouping i. They do
    not depend on sigma and are computed once per fit.
    """
    index_map = as_index_map(u_indices)
    names = list(index_map)
    partials = []
    for i, name in enumerate(names):
        Zi = Z[:, index_map[name]]
        if i == len(names) - 1:
            if K.shape != (Zi.shape[1], Zi.shape[1]):
                raise DimensionMismatchError(
                    f"Known covariance is {K.shape[0]}x{K.shape[1]} but grouping '{name}' "
                    f"has {Zi.shape[1]} columns in Z"
                )
            partials.append(Zi @ K @ Zi.T)
        else:
            partials.append(Zi @ Zi.T)
    return partials


def pseudovar_partial_p(V_partial: List[np.ndarray], P: np.ndarray) -> List[np.ndarray]:
    """REML-projected partial derivatives P dV/dsigma_i."""
    return [P @ dV for dV in V_partial]

"""
Model matrices of the pseudo-likelihood GLMM.

The linearised model around the current fit is

    y* = X beta + Z u + D^-1 (y - mu),   Var(y*) = V* = Z G Z' + W

with D = diag(mu) and W = D^-1 Vmu D^-1. G is block diagonal over the random
effect groupings: sigma_i I for ordinary groupings and sigma_c K for the last
grouping, whose covariance K (e.g. a kinship matrix) is known.
"""

import warnings

import numpy as np

from .exceptions import DimensionMismatchError, SingularKinshipWarning
from .families import get_family
from .utils import IndexMap, as_index_map, rcond

# Kinship matrices with a smaller reciprocal condition number are treated as singular
KINSHIP_RCOND_TOL = 1e-9

# Floor applied to variance components before inverting G
MIN_SIGMA = 1e-8


def compute_y_star(
    X: np.ndarray,
    beta: np.ndarray,
    Z: np.ndarray,
    Dinv: np.ndarray,
    u: np.ndarray,
    y: np.ndarray,
    offsets: np.ndarray
) -> np.ndarray:
    """
    Working response of the linearised model.

    Parameters
    ----------
    X, Z : np.ndarray
        Fixed and random effect design matrices
    beta, u : np.ndarray
        Current fixed and random effects
    Dinv : np.ndarray
        Inverse of diag(mu)
    y : np.ndarray
        Observed counts
    offsets : np.ndarray
        Offsets of the linear predictor (on the log scale)

    Returns
    -------
    np.ndarray
        y* = X beta + Z u + D^-1 (y - exp(offsets + X beta + Z u))
    """
    eta = X @ beta + Z @ u
    with np.errstate(over='ignore'):
        mu = np.exp(offsets + eta)
    return eta + Dinv @ (y - mu)


def compute_vmu(mu: np.ndarray, disp: float, vardist: str) -> np.ndarray:
    """Diagonal mean-variance matrix Vmu = diag(V(mu))."""
    return np.diag(get_family(vardist).variance(mu, disp))


def compute_w(disp: float, Dinv: np.ndarray, vardist: str) -> np.ndarray:
    """Diagonal residual matrix W = D^-1 Vmu D^-1 of the working response."""
    mu = 1.0 / np.diag(Dinv)
    return np.diag(get_family(vardist).working_variance(mu, disp))


def compute_v_star(Z: np.ndarray, G: np.ndarray, W: np.ndarray) -> np.ndarray:
    """Pseudo-variance V* = Z G Z' + W."""
    return Z @ G @ Z.T + W


def compute_p_reml(V_star_inv: np.ndarray, X: np.ndarray) -> np.ndarray:
    """
    REML projection matrix.

    P = V^-1 - V^-1 X (X' V^-1 X)^-1 X' V^-1
    """
    VinvX = V_star_inv @ X
    XtVinvX = X.T @ VinvX
    return V_star_inv - VinvX @ np.linalg.solve(XtVinvX, VinvX.T)


def initialise_g(u_indices: IndexMap, sigma: np.ndarray, K: np.ndarray) -> np.ndarray:
    """
    Broadcast the variance components to the full random effect dimension.

    Parameters
    ----------
    u_indices : mapping or sequence
        Columns of Z belonging to each grouping; the last grouping is the
        one whose covariance is K
    sigma : np.ndarray
        One variance component per grouping
    K : np.ndarray
        Known covariance between the levels of the last grouping

    Returns
    -------
    np.ndarray
        s x s block-diagonal matrix G
    """
    return _broadcast(u_indices, sigma, K, invert=False)


def inv_g(u_indices: IndexMap, sigma: np.ndarray, Kinv: np.ndarray) -> np.ndarray:
    """
    Inverse of :func:`initialise_g`, built from the pre-inverted K.

    Components are floored at ``MIN_SIGMA`` so that a component estimated at
    exactly zero shrinks its predictions to zero instead of producing inf.
    """
    return _broadcast(u_indices, sigma, Kinv, invert=True)


def _broadcast(u_indices, sigma, K, invert):
    index_map = as_index_map(u_indices)
    sigma = np.asarray(sigma, dtype=float)
    if len(index_map) != sigma.size:
        raise DimensionMismatchError(
            f"{sigma.size} variance components given for {len(index_map)} random effect groupings"
        )

    s = sum(idx.size for idx in index_map.values())
    out = np.zeros((s, s))
    names = list(index_map)
    for i, name in enumerate(names):
        idx = index_map[name]
        scale = np.maximum(sigma[i], MIN_SIGMA) if invert else sigma[i]
        if invert:
            scale = 1.0 / scale
        if i == len(names) - 1:
            if K.shape != (idx.size, idx.size):
                raise DimensionMismatchError(
                    f"Known covariance is {K.shape[0]}x{K.shape[1]} but grouping '{name}' "
                    f"has {idx.size} levels"
                )
            out[np.ix_(idx, idx)] = scale * K
        else:
            out[idx, idx] = scale
    return out


def broadcast_inverse_matrix(matrix: np.ndarray, block_size: int) -> np.ndarray:
    """
    Inverse of a singular block-structured matrix.

    Every diagonal block of ``block_size`` rows is inverted on its own, with
    an exact inverse when it is well conditioned and a pseudo-inverse
    otherwise (e.g. an all-zero block). Off-diagonal blocks are assumed to be
    zero.

    Parameters
    ----------
    matrix : np.ndarray
        Square matrix
    block_size : int
        Expected size of the diagonal blocks

    Returns
    -------
    np.ndarray
        Block-diagonal (generalised) inverse
    """
    n = matrix.shape[0]
    if block_size < 1:
        raise DimensionMismatchError(f"block_size must be >= 1, got {block_size} for a {n}x{n} matrix")

    out = np.zeros_like(matrix, dtype=float)
    for start in range(0, n, block_size):
        stop = min(start + block_size, n)
        block = matrix[start:stop, start:stop]
        if rcond(block) < KINSHIP_RCOND_TOL:
            out[start:stop, start:stop] = np.linalg.pinv(block)
        else:
            out[start:stop, start:stop] = np.linalg.inv(block)
    return out


def invert_kinship(K: np.ndarray, n: int) -> np.ndarray:
    """
    Invert the known covariance matrix once, before the iterations start.

    A singular K (rcond below 1e-9) is usually block structured, so the
    inverse falls back to :func:`broadcast_inverse_matrix` with blocks of
    n/2 rows.

    Parameters
    ----------
    K : np.ndarray
        Known covariance matrix
    n : int
        Number of observations

    Returns
    -------
    np.ndarray
        Inverse (or block-wise generalised inverse) of K
    """
    K = np.asarray(K, dtype=float)
    if K.ndim != 2 or K.shape[0] != K.shape[1]:
        raise DimensionMismatchError(f"Known covariance matrix must be square, got shape {K.shape}")

    k_rcond = rcond(K)
    if k_rcond < KINSHIP_RCOND_TOL:
        warnings.warn(
            f"Kinship is singular (rcond={k_rcond:.3e}) - attempting broadcast inverse",
            SingularKinshipWarning,
        )
        return broadcast_inverse_matrix(K, max(n // 2, 1))
    return np.linalg.inv(K)

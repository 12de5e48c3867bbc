"""
Haseman-Elston (method of moments) estimators of the variance components.

Under the linearised model E[P y* y*' P] = P V* P, and V* is linear in the
variance components through the partial derivatives dV_i. Regressing the
cross-products of the projected working response on the matching entries of
P dV_i P (plus an intercept absorbing the residual part) therefore estimates
the components. Only the upper triangle (diagonal included) of each
symmetric matrix enters the regression.
"""

from __future__ import annotations
import warnings
from typing import Tuple

import numpy as np
from scipy.optimize import nnls

from ..exceptions import DimensionMismatchError
from ..pseudovar import pseudovar_partial_g
from ..utils import IndexMap


def _he_design(
    Z: np.ndarray,
    P: np.ndarray,
    u_indices: IndexMap,
    y_star: np.ndarray,
    K: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """Vectorised response and design ([1, P dV_1 P, ..., P dV_c P]) of the HE regression."""
    n = P.shape[0]
    if y_star.shape[0] != n or Z.shape[0] != n:
        raise DimensionMismatchError(
            f"Haseman-Elston regression needs n={n} rows, got y* of length {y_star.shape[0]} "
            f"and Z with {Z.shape[0]} rows"
        )
    iu = np.triu_indices(n)

    Py = P @ y_star
    response = np.outer(Py, Py)[iu]

    columns = [np.ones(response.size)]
    for dV in pseudovar_partial_g(Z, K, u_indices):
        columns.append((P @ dV @ P)[iu])
    return response, np.column_stack(columns)


def est_haseman_elston(
    Z: np.ndarray,
    P: np.ndarray,
    u_indices: IndexMap,
    y_star: np.ndarray,
    K: np.ndarray
) -> np.ndarray:
    """
    Unconstrained Haseman-Elston regression.

    Parameters
    ----------
    Z : np.ndarray
        Random effect design matrix
    P : np.ndarray
        REML projection matrix
    u_indices : mapping or sequence
        Columns of Z per grouping (last grouping uses K)
    y_star : np.ndarray
        Working response
    K : np.ndarray
        Known covariance matrix

    Returns
    -------
    np.ndarray
        c variance component estimates; may be negative
    """
    response, design = _he_design(Z, P, u_indices, y_star, K)
    coef, _, _, _ = np.linalg.lstsq(design, response, rcond=None)
    return coef[1:]


def est_haseman_elston_constrained(
    Z: np.ndarray,
    P: np.ndarray,
    u_indices: IndexMap,
    y_star: np.ndarray,
    K: np.ndarray,
    sigma0: np.ndarray,
    iteration: int
) -> np.ndarray:
    """
    Haseman-Elston regression constrained to non-negative estimates.

    Parameters
    ----------
    Z, P, u_indices, y_star, K
        As for :func:`est_haseman_elston`
    sigma0 : np.ndarray
        Current estimate [intercept, sigma_1, ..., sigma_c]; all zeros on the
        first iteration
    iteration : int
        Current iteration number (0-based)

    Returns
    -------
    np.ndarray
        c + 1 non-negative estimates [intercept, sigma_1, ..., sigma_c]. If
        the NNLS solver fails to converge, ``sigma0`` is returned unchanged.
    """
    response, design = _he_design(Z, P, u_indices, y_star, K)
    sigma0 = np.asarray(sigma0, dtype=float)
    if sigma0.size != design.shape[1]:
        raise DimensionMismatchError(
            f"Constrained Haseman-Elston needs {design.shape[1]} starting values "
            f"(intercept + {design.shape[1] - 1} components), got {sigma0.size}"
        )

    try:
        coef, _ = nnls(design, response)
    except RuntimeError as e:
        warnings.warn(
            f"NNLS did not converge at iteration {iteration} ({e}) - keeping the current estimates",
            RuntimeWarning,
        )
        return np.maximum(sigma0, 0.0)
    return coef

"""
Score vectors and expected information matrices of the variance components,
and the Fisher scoring update.

Under REML the quantities are built from the projection matrix P and the
projected partial derivatives P dV/dsigma_i; under pseudo-likelihood they use
the inverse pseudo-variance and the residual y* - X beta.
"""

from __future__ import annotations
from typing import List

import numpy as np

from ..exceptions import SingularMatrixError
from ..utils import trace_product


def sigma_score_reml(VP_partial: List[np.ndarray], y_star: np.ndarray, P: np.ndarray) -> np.ndarray:
    """
    REML score of the variance components.

    score_i = -0.5 tr(P dV_i) + 0.5 y*' P dV_i P y*

    Parameters
    ----------
    VP_partial : list of np.ndarray
        REML-projected partial derivatives, one per variance component
    y_star : np.ndarray
        Working response
    P : np.ndarray
        REML projection matrix

    Returns
    -------
    np.ndarray
        Score vector of length c
    """
    Py = P @ y_star
    score = np.empty(len(VP_partial))
    for i, dV in enumerate(VP_partial):
        lhs = -0.5 * trace_product(P, dV)
        rhs = 0.5 * float(Py @ dV @ Py)
        score[i] = lhs + rhs
    return score


def sigma_info_reml(VP_partial: List[np.ndarray], P: np.ndarray) -> np.ndarray:
    """
    REML expected information of the variance components.

    info_ij = 0.5 tr(P dV_i P dV_j), symmetric; only the upper triangle is
    computed.
    """
    c = len(VP_partial)
    PdV = [P @ dV for dV in VP_partial]
    info = np.zeros((c, c))
    for i in range(c):
        for j in range(i, c):
            info[i, j] = 0.5 * trace_product(PdV[i], PdV[j])
            info[j, i] = info[i, j]
    return info


def sigma_score(
    y_star: np.ndarray,
    beta: np.ndarray,
    X: np.ndarray,
    V_partial: List[np.ndarray],
    V_star_inv: np.ndarray
) -> np.ndarray:
    """
    Pseudo-likelihood score of the variance components.

    score_i = -0.5 tr(V^-1 dV_i) + 0.5 r' V^-1 dV_i V^-1 r,  r = y* - X beta
    """
    resid = y_star - X @ beta
    Vr = V_star_inv @ resid
    score = np.empty(len(V_partial))
    for i, dV in enumerate(V_partial):
        score[i] = -0.5 * trace_product(V_star_inv, dV) + 0.5 * float(Vr @ dV @ Vr)
    return score


def sigma_information(V_star_inv: np.ndarray, V_partial: List[np.ndarray]) -> np.ndarray:
    """
    Pseudo-likelihood expected information of the variance components.

    info_ij = 0.5 tr(V^-1 dV_i V^-1 dV_j)
    """
    c = len(V_partial)
    VdV = [V_star_inv @ dV for dV in V_partial]
    info = np.zeros((c, c))
    for i in range(c):
        for j in range(i, c):
            info[i, j] = 0.5 * trace_product(VdV[i], VdV[j])
            info[j, i] = info[i, j]
    return info


def fisher_score(information: np.ndarray, score: np.ndarray, sigma: np.ndarray) -> np.ndarray:
    """
    One Fisher scoring step: sigma + information^-1 score.

    Raises
    ------
    SingularMatrixError
        If the information matrix cannot be inverted
    """
    try:
        info_inv = np.linalg.inv(information)
    except np.linalg.LinAlgError as e:
        raise SingularMatrixError(
            f"Variance component information matrix ({information.shape[0]}x{information.shape[1]}) "
            f"is singular: {e}"
        ) from e
    return sigma + info_inv @ score

"""
Tests for the Haseman-Elston variance component estimators.
"""

import pytest
import numpy as np

import sys
import os
# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pyplglmm.exceptions import DimensionMismatchError
from pyplglmm.matrices import compute_p_reml
from pyplglmm.reml.haseman_elston import (
    _he_design,
    est_haseman_elston,
    est_haseman_elston_constrained,
)


def he_inputs(seed=0, n=12):
    rng = np.random.default_rng(seed)
    Z1 = np.kron(np.eye(4), np.ones((n // 4, 1)))
    Z2 = np.eye(n)
    Z = np.hstack([Z1, Z2])
    K = np.eye(n)
    u_indices = {'block': np.arange(4), 'genetic': np.arange(4, 4 + n)}
    X = np.ones((n, 1))
    P = compute_p_reml(np.eye(n), X)
    y_star = 1.0 + rng.normal(size=n)
    return Z, P, u_indices, y_star, K


class TestDesign:

    def test_response_and_columns(self):
        Z, P, u_indices, y_star, K = he_inputs()
        response, design = _he_design(Z, P, u_indices, y_star, K)
        n = P.shape[0]
        iu = np.triu_indices(n)
        Py = P @ y_star

        assert response.shape == (n * (n + 1) // 2,)
        np.testing.assert_allclose(response, np.outer(Py, Py)[iu])
        assert design.shape == (response.size, 3)
        np.testing.assert_allclose(design[:, 0], 1.0)
        np.testing.assert_allclose(design[:, 2], (P @ P)[iu])

    def test_row_mismatch(self):
        Z, P, u_indices, y_star, K = he_inputs()
        with pytest.raises(DimensionMismatchError, match="Haseman-Elston"):
            _he_design(Z, P, u_indices, y_star[:-1], K)


class TestEstimators:

    def test_unconstrained_returns_components_only(self):
        Z, P, u_indices, y_star, K = he_inputs()
        sigma = est_haseman_elston(Z, P, u_indices, y_star, K)
        assert sigma.shape == (2,)
        assert np.all(np.isfinite(sigma))

    def test_unconstrained_matches_least_squares(self):
        Z, P, u_indices, y_star, K = he_inputs(seed=3)
        response, design = _he_design(Z, P, u_indices, y_star, K)
        coef = np.linalg.lstsq(design, response, rcond=None)[0]
        np.testing.assert_allclose(est_haseman_elston(Z, P, u_indices, y_star, K), coef[1:])

    def test_constrained_non_negative_with_intercept(self):
        for seed in range(5):
            Z, P, u_indices, y_star, K = he_inputs(seed=seed)
            estimate = est_haseman_elston_constrained(Z, P, u_indices, y_star, K, np.zeros(3), 0)
            assert estimate.shape == (3,)
            assert np.all(estimate >= 0)

    def test_constrained_recovers_unconstrained_when_feasible(self):
        Z, P, u_indices, y_star, K = he_inputs(seed=1)
        response, design = _he_design(Z, P, u_indices, y_star, K)
        coef = np.linalg.lstsq(design, response, rcond=None)[0]
        estimate = est_haseman_elston_constrained(Z, P, u_indices, y_star, K, np.zeros(3), 0)
        if np.all(coef >= 0):
            np.testing.assert_allclose(estimate, coef, atol=1e-8)
        else:
            assert np.sum((design @ estimate - response) ** 2) >= np.sum((design @ coef - response) ** 2) - 1e-10

    def test_constant_response_gives_zero(self):
        Z, P, u_indices, _, K = he_inputs()
        estimate = est_haseman_elston_constrained(Z, P, u_indices, np.full(12, 2.0), K, np.zeros(3), 0)
        np.testing.assert_allclose(estimate, 0.0, atol=1e-12)

    def test_starting_values_size(self):
        Z, P, u_indices, y_star, K = he_inputs()
        with pytest.raises(DimensionMismatchError, match="starting values"):
            est_haseman_elston_constrained(Z, P, u_indices, y_star, K, np.zeros(2), 0)

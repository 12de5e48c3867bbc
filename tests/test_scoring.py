"""
Tests for the variance component score, information and Fisher scoring.
"""

import pytest
import numpy as np

import sys
import os
# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pyplglmm.exceptions import SingularMatrixError
from pyplglmm.matrices import compute_p_reml
from pyplglmm.pseudovar import pseudovar_partial_p
from pyplglmm.reml.scoring import (
    fisher_score,
    sigma_info_reml,
    sigma_information,
    sigma_score,
    sigma_score_reml,
)


class TestPseudoLikelihoodScore:
    """Score and information of the pseudo-likelihood."""

    def setup_method(self):
        rng = np.random.default_rng(7)
        self.n = 12
        Z1 = np.kron(np.eye(4), np.ones((3, 1)))
        self.dV = [Z1 @ Z1.T, np.eye(self.n)]
        self.W = np.diag(rng.uniform(0.3, 1.0, size=self.n))
        self.X = np.c_[np.ones(self.n), rng.normal(size=self.n)]
        self.beta = np.array([0.5, -0.2])
        self.y_star = self.X @ self.beta + rng.normal(size=self.n)
        self.sigma = np.array([0.6, 0.4])

    def V(self, sigma):
        return self.W + sigma[0] * self.dV[0] + sigma[1] * self.dV[1]

    def loglik(self, sigma):
        V = self.V(sigma)
        r = self.y_star - self.X @ self.beta
        _, logdet = np.linalg.slogdet(V)
        return -0.5 * logdet - 0.5 * r @ np.linalg.solve(V, r)

    def test_score_is_gradient(self):
        score = sigma_score(self.y_star, self.beta, self.X, self.dV, np.linalg.inv(self.V(self.sigma)))
        h = 1e-6
        numeric = np.array([
            (self.loglik(self.sigma + h * e) - self.loglik(self.sigma - h * e)) / (2 * h)
            for e in np.eye(2)
        ])
        np.testing.assert_allclose(score, numeric, rtol=1e-5, atol=1e-8)

    def test_information_symmetric_positive_definite(self):
        info = sigma_information(np.linalg.inv(self.V(self.sigma)), self.dV)
        np.testing.assert_allclose(info, info.T)
        assert np.all(np.linalg.eigvalsh(info) > 0)

    def test_information_single_component(self):
        # V = (w + s) I gives info = n / (2 (w + s)^2)
        n, w, s = 5, 0.5, 1.5
        info = sigma_information(np.eye(n) / (w + s), [np.eye(n)])
        np.testing.assert_allclose(info, [[n / (2 * (w + s) ** 2)]])


class TestREMLScore:

    def setup_method(self):
        rng = np.random.default_rng(9)
        n = 10
        Z1 = np.kron(np.eye(5), np.ones((2, 1)))
        self.dV = [Z1 @ Z1.T, np.eye(n)]
        X = np.ones((n, 1))
        Vinv = np.linalg.inv(np.diag(rng.uniform(0.5, 1.0, n)) + 0.5 * self.dV[0] + 0.5 * self.dV[1])
        self.P = compute_p_reml(Vinv, X)
        self.VP = pseudovar_partial_p(self.dV, self.P)
        self.y_star = rng.normal(size=n)

    def test_score_formula(self):
        score = sigma_score_reml(self.VP, self.y_star, self.P)
        Py = self.P @ self.y_star
        for i, dV in enumerate(self.VP):
            expected = -0.5 * np.trace(self.P @ dV) + 0.5 * Py @ dV @ Py
            assert score[i] == pytest.approx(expected)

    def test_score_vanishes_for_projected_out_response(self):
        # the constant response lies in the column space of X
        score = sigma_score_reml(self.VP, np.full(10, 3.0), self.P)
        expected = [-0.5 * np.trace(self.P @ dV) for dV in self.VP]
        np.testing.assert_allclose(score, expected, atol=1e-10)

    def test_information_symmetric(self):
        info = sigma_info_reml(self.VP, self.P)
        assert info.shape == (2, 2)
        np.testing.assert_allclose(info, info.T)
        assert info[0, 1] == pytest.approx(0.5 * np.trace(self.P @ self.VP[0] @ self.P @ self.VP[1]))


class TestFisherScore:

    def test_newton_equation(self):
        info = np.array([[2.0, 0.3], [0.3, 1.0]])
        score = np.array([0.4, -0.1])
        sigma = np.array([1.0, 0.5])
        update = fisher_score(info, score, sigma)
        np.testing.assert_allclose(info @ (update - sigma), score)

    def test_zero_score_is_fixed_point(self):
        sigma = np.array([0.2, 0.8])
        np.testing.assert_allclose(fisher_score(np.eye(2), np.zeros(2), sigma), sigma)

    def test_singular_information(self):
        with pytest.raises(SingularMatrixError, match="information matrix"):
            fisher_score(np.zeros((2, 2)), np.ones(2), np.ones(2))

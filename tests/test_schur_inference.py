"""
Tests for the mixed model equations, Schur complement and fixed effect
inference.
"""

import pytest
import numpy as np

import sys
import os
# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pyplglmm.exceptions import DimensionMismatchError, SingularMatrixError
from pyplglmm.inference import (
    compute_p_values,
    compute_se,
    compute_t_score,
    satterthwaite_df,
    var_covar,
)
from pyplglmm.reml.schur import coeff_matrix, schur_complement, solve_equations, split_blocks


def mme_inputs(seed=0, n=20):
    rng = np.random.default_rng(seed)
    X = np.c_[np.ones(n), rng.normal(size=n)]
    Z = np.kron(np.eye(5), np.ones((n // 5, 1)))
    Winv = np.diag(rng.uniform(0.5, 2.0, size=n))
    Ginv = np.eye(5) / 0.4
    y_star = rng.normal(size=n)
    return X, Z, Winv, Ginv, y_star


class TestMixedModelEquations:

    def test_coeff_matrix_blocks(self):
        X, Z, Winv, Ginv, _ = mme_inputs()
        C = coeff_matrix(X, Winv, Z, Ginv)
        assert C.shape == (7, 7)
        np.testing.assert_allclose(C, C.T)
        ul, ur, ll, lr = split_blocks(C, 2)
        np.testing.assert_allclose(ul, X.T @ Winv @ X)
        np.testing.assert_allclose(ur, X.T @ Winv @ Z)
        np.testing.assert_allclose(lr, Z.T @ Winv @ Z + Ginv)

    def test_solution_solves_equations(self):
        X, Z, Winv, Ginv, y_star = mme_inputs()
        C = coeff_matrix(X, Winv, Z, Ginv)
        theta = solve_equations(2, 5, Winv, Z.T, X.T, C, y_star)
        rhs = np.concatenate([X.T @ Winv @ y_star, Z.T @ Winv @ y_star])
        np.testing.assert_allclose(C @ theta, rhs, atol=1e-10)

    def test_ginv_shape_mismatch(self):
        X, Z, Winv, _, _ = mme_inputs()
        with pytest.raises(DimensionMismatchError, match="G\\^-1"):
            coeff_matrix(X, Winv, Z, np.eye(4))

    def test_singular_coefficient_matrix(self):
        with pytest.raises(SingularMatrixError, match="coefficient matrix"):
            solve_equations(1, 1, np.eye(2), np.zeros((1, 2)), np.zeros((1, 2)), np.zeros((2, 2)), np.ones(2))


class TestSchurComplement:

    def test_inverse_is_fixed_effect_block_of_inverse(self):
        X, Z, Winv, Ginv, _ = mme_inputs(seed=4)
        C = coeff_matrix(X, Winv, Z, Ginv)
        S = schur_complement(C, 2, 5)
        np.testing.assert_allclose(np.linalg.inv(S), np.linalg.inv(C)[:2, :2], rtol=1e-8)

    def test_dimension_check(self):
        with pytest.raises(DimensionMismatchError, match="m \\+ s"):
            schur_complement(np.eye(6), 2, 5)


class TestInference:

    def test_standard_errors(self):
        X, Z, Winv, Ginv, _ = mme_inputs(seed=2)
        C = coeff_matrix(X, Winv, Z, Ginv)
        se = compute_se(2, 5, C)
        assert se.shape == (2,)
        assert np.all(se >= 0)
        np.testing.assert_allclose(se, np.sqrt(np.diag(np.linalg.inv(C))[:2]), rtol=1e-8)

    def test_singular_schur_complement(self):
        X, Z, Winv, Ginv, _ = mme_inputs()
        X = np.c_[X[:, 0], X[:, 0]]
        C = coeff_matrix(X, Winv, Z, Ginv)
        with pytest.raises(SingularMatrixError, match="computationally singular"):
            compute_se(2, 5, C)

    def test_t_scores(self):
        np.testing.assert_allclose(compute_t_score([2.0, -1.0], [0.5, 0.25]), [4.0, -4.0])

    def test_t_score_length_mismatch(self):
        with pytest.raises(DimensionMismatchError, match="sizes differ"):
            compute_t_score([1.0, 2.0], [0.1])

    def test_var_covar(self):
        n = 4
        Va = var_covar([np.eye(n), 2 * np.eye(n)], 2)
        np.testing.assert_allclose(Va, [[2 / 4, 2 / 8], [2 / 8, 2 / 16]])

    def test_var_covar_count_mismatch(self):
        with pytest.raises(DimensionMismatchError):
            var_covar([np.eye(3)], 2)

    def test_satterthwaite_balanced_one_way(self):
        # one-way layout: df of the intercept lies between the number of
        # groups minus one and the number of observations minus one
        n_groups, reps = 6, 4
        n = n_groups * reps
        Z = np.kron(np.eye(n_groups), np.ones((reps, 1)))
        X = np.ones((n, 1))
        dV = [Z @ Z.T, np.eye(n)]
        V = 0.8 * dV[0] + 1.0 * dV[1]
        Vinv = np.linalg.inv(V)
        vcov = np.linalg.inv(np.array([[0.5 * np.trace(Vinv @ a @ Vinv @ b) for b in dV] for a in dV]))
        df = satterthwaite_df(X, Vinv, dV, vcov)
        assert df.shape == (1,)
        assert n_groups - 1 - 1e-6 <= df[0] <= n - 1

    def test_p_values(self):
        p = compute_p_values(np.array([0.0, 2.0, -2.0, 50.0]), np.array([10.0, 10.0, 10.0, 10.0]))
        assert p[0] == pytest.approx(1.0)
        assert p[1] == pytest.approx(p[2])
        assert 0.05 < p[1] < 0.1
        assert p[3] < 1e-10

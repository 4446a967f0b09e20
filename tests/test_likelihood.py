"""Tests for the quadrature approximation of the marginal log-likelihood."""

import numpy as np
import pandas as pd
import pytest
from scipy import stats

from mixtype.exceptions import ConfigurationError, CovarianceFactorizationError
from mixtype.likelihood import marginal_loglik_contributions
from mixtype.quadrature import build_quadrature_grid

# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture()
def rng():
    return np.random.default_rng(42)


@pytest.fixture()
def normal_1d(rng):
    """Single Normal coordinate: y_i = x_i'β + w_i + e_i."""
    n = 60
    X = np.column_stack([np.ones(n), rng.standard_normal(n)])
    beta = np.array([0.5, -0.3])
    sigma2, psi = 0.5, 1.0
    y = X @ beta + rng.normal(scale=np.sqrt(sigma2 + psi), size=n)
    return y[:, None], X, beta, sigma2, psi


@pytest.fixture()
def normal_2d(rng):
    """Two correlated Normal coordinates with per-coordinate intercepts."""
    n = 40
    X = np.tile(np.eye(2), (n, 1))
    beta = np.array([0.2, -0.4])
    Sigma = np.array([[0.8, 0.3], [0.3, 0.6]])
    psi = np.array([1.0, 0.5])
    cov = Sigma + np.diag(psi)
    Y = rng.multivariate_normal(beta, cov, size=n)
    return Y, X, beta, Sigma, psi


# ------------------------------------------------------------------ #
# Agreement with closed forms
# ------------------------------------------------------------------ #


class TestGaussianClosedForm:
    def test_single_normal_converges_to_exact(self, normal_1d):
        Y, X, beta, sigma2, psi = normal_1d
        exact = stats.norm.logpdf(
            Y[:, 0], loc=X @ beta, scale=np.sqrt(sigma2 + psi)
        ).sum()

        errors = {}
        for k in (2, 5, 10, 20, 40):
            grid = build_quadrature_grid(1, k)
            total = marginal_loglik_contributions(
                Y, X, ["normal"], [psi], beta, [[sigma2]], grid
            ).sum()
            errors[k] = abs(total - exact)

        assert errors[40] < 1e-8
        assert errors[20] <= errors[2]
        assert errors[40] <= errors[5]
        assert errors[40] <= errors[10] + 1e-10

    def test_bivariate_normal_matches_exact(self, normal_2d):
        Y, X, beta, Sigma, psi = normal_2d
        grid = build_quadrature_grid(2, 30)
        contrib = marginal_loglik_contributions(
            Y, X, ["normal", "normal"], psi, beta, Sigma, grid
        )
        exact = stats.multivariate_normal.logpdf(Y, mean=beta, cov=Sigma + np.diag(psi))
        np.testing.assert_allclose(contrib, exact, atol=1e-7)

    def test_bernoulli_with_negligible_variance(self):
        # As Σ → 0 the marginal is the plain logistic log-likelihood.
        y = np.array([[0.0], [1.0], [1.0]])
        X = np.ones((3, 1))
        beta = np.array([0.4])
        grid = build_quadrature_grid(1, 5)
        contrib = marginal_loglik_contributions(
            y, X, ["bernoulli"], None, beta, [[1e-12]], grid
        )
        p = 1.0 / (1.0 + np.exp(-0.4))
        np.testing.assert_allclose(contrib, np.log([1 - p, p, p]), atol=1e-9)


# ------------------------------------------------------------------ #
# Evaluation mechanics
# ------------------------------------------------------------------ #


class TestEvaluation:
    def test_shape(self, normal_2d):
        Y, X, beta, Sigma, psi = normal_2d
        grid = build_quadrature_grid(2, 4)
        out = marginal_loglik_contributions(Y, X, ["normal", "normal"], psi, beta, Sigma, grid)
        assert out.shape == (Y.shape[0],)

    def test_chunking_and_threads_do_not_change_result(self, normal_2d):
        Y, X, beta, Sigma, psi = normal_2d
        grid = build_quadrature_grid(2, 6)
        types = ["normal", "normal"]
        ref = marginal_loglik_contributions(Y, X, types, psi, beta, Sigma, grid)
        chunked = marginal_loglik_contributions(
            Y, X, types, psi, beta, Sigma, grid, n_jobs=2, chunk_size=7
        )
        np.testing.assert_allclose(chunked, ref, rtol=1e-12)

    def test_three_dimensional_design(self, normal_2d):
        Y, X, beta, Sigma, psi = normal_2d
        grid = build_quadrature_grid(2, 4)
        types = ["normal", "normal"]
        stacked = marginal_loglik_contributions(Y, X, types, psi, beta, Sigma, grid)
        X3 = X.reshape(-1, 2, 2)
        cube = marginal_loglik_contributions(Y, X3, types, psi, beta, Sigma, grid)
        np.testing.assert_array_equal(stacked, cube)

    def test_pandas_inputs(self, normal_2d):
        Y, X, beta, Sigma, psi = normal_2d
        grid = build_quadrature_grid(2, 4)
        types = ["normal", "normal"]
        ref = marginal_loglik_contributions(Y, X, types, psi, beta, Sigma, grid)
        out = marginal_loglik_contributions(
            pd.DataFrame(Y), pd.DataFrame(X), types, psi, beta, Sigma, grid
        )
        np.testing.assert_array_equal(out, ref)

    def test_mixed_types_finite_under_extreme_values(self):
        Y = np.array([[50.0, 1.0, 8.0], [0.0, 0.0, -8.0]])
        X = np.tile(np.eye(3), (2, 1))
        beta = np.array([-5.0, 6.0, 0.0])
        Sigma = np.diag([4.0, 1.0, 0.01])
        grid = build_quadrature_grid(3, 6)
        out = marginal_loglik_contributions(
            Y, X, ["poisson", "bernoulli", "normal"], [1.0, 1.0, 0.01], beta, Sigma, grid
        )
        assert np.all(np.isfinite(out))

    def test_quasi_poisson_dispersion_scales_kernel(self):
        Y = np.array([[3.0], [0.0]])
        X = np.ones((2, 1))
        grid = build_quadrature_grid(1, 8)
        a = marginal_loglik_contributions(Y, X, ["poisson"], [1.0], [0.2], [[0.3]], grid)
        b = marginal_loglik_contributions(Y, X, ["poisson"], [2.0], [0.2], [[0.3]], grid)
        assert np.all(np.isfinite(b))
        assert not np.allclose(a, b)

    def test_matches_direct_weighted_sum(self):
        y = np.array([2.0, 1.0])
        beta = np.array([0.3, -0.4])
        Sigma = np.array([[0.5, 0.2], [0.2, 1.0]])
        grid = build_quadrature_grid(2, 5)
        W = beta + grid.nodes @ np.linalg.cholesky(Sigma).T
        cond = stats.poisson.pmf(y[0], np.exp(W[:, 0])) * stats.bernoulli.pmf(
            y[1], 1.0 / (1.0 + np.exp(-W[:, 1]))
        )
        expected = np.log(np.sum(grid.weights * cond))
        out = marginal_loglik_contributions(
            y, np.eye(2), ["poisson", "bernoulli"], None, beta, Sigma, grid
        )
        assert out.shape == (1,)
        assert out[0] == pytest.approx(expected, rel=1e-10)


# ------------------------------------------------------------------ #
# Errors
# ------------------------------------------------------------------ #


class TestErrors:
    def test_non_pd_sigma(self, normal_2d):
        Y, X, beta, _, psi = normal_2d
        grid = build_quadrature_grid(2, 3)
        Sigma = np.array([[1.0, 2.0], [2.0, 1.0]])
        with pytest.raises(CovarianceFactorizationError):
            marginal_loglik_contributions(Y, X, ["normal", "normal"], psi, beta, Sigma, grid)

    def test_wrong_beta_length(self, normal_2d):
        Y, X, _, Sigma, psi = normal_2d
        grid = build_quadrature_grid(2, 3)
        with pytest.raises(ValueError, match="beta"):
            marginal_loglik_contributions(
                Y, X, ["normal", "normal"], psi, np.zeros(3), Sigma, grid
            )

    def test_grid_dimension_mismatch(self, normal_2d):
        Y, X, beta, Sigma, psi = normal_2d
        grid = build_quadrature_grid(3, 3)
        with pytest.raises(ValueError, match="dimension"):
            marginal_loglik_contributions(Y, X, ["normal", "normal"], psi, beta, Sigma, grid)

    def test_type_count_mismatch(self, normal_2d):
        Y, X, beta, Sigma, psi = normal_2d
        grid = build_quadrature_grid(2, 3)
        with pytest.raises(ConfigurationError):
            marginal_loglik_contributions(Y, X, ["normal"], psi, beta, Sigma, grid)

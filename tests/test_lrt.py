"""Tests for the approximate likelihood-ratio test."""

import dataclasses
import warnings

import numpy as np
import pytest
from scipy import stats

from mixtype import LikelihoodRatioResult, fit, likelihood_ratio_test, simulate_responses
from mixtype.exceptions import InvalidTestError

nan = np.nan

NULL_M = np.array([[nan, 0.0], [0.0, nan]])
TYPES = ["normal", "normal"]

# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture()
def rng():
    return np.random.default_rng(42)


@pytest.fixture()
def correlated_fits(rng):
    """Null (Σ01 = 0) and full fits on strongly correlated data."""
    n = 300
    X = np.tile(np.eye(2), (n, 1))
    Sigma = np.array([[1.0, 0.6], [0.6, 1.0]])
    Y = simulate_responses(X, [0.0, 0.0], Sigma, TYPES, random_state=rng)
    null = fit(Y, X, TYPES, M=NULL_M, num_nodes=6, compute_se=False)
    full = fit(Y, X, TYPES, num_nodes=6, compute_se=False)
    return null, full


# ------------------------------------------------------------------ #
# Valid tests
# ------------------------------------------------------------------ #


class TestLikelihoodRatio:
    def test_result_fields(self, correlated_fits):
        null, full = correlated_fits
        res = likelihood_ratio_test(null, full)
        assert isinstance(res, LikelihoodRatioResult)
        assert res.df == 1
        assert res.statistic >= 0
        assert res.statistic == pytest.approx(2 * (full.loglik - null.loglik))
        assert res.loglik_null == null.loglik
        assert res.loglik_full == full.loglik
        assert res.both_converged is True

    def test_detects_correlation(self, correlated_fits):
        null, full = correlated_fits
        res = likelihood_ratio_test(null, full)
        assert res.p_value < 1e-4

    def test_p_value_is_chi2_tail(self, correlated_fits):
        null, full = correlated_fits
        res = likelihood_ratio_test(null, full)
        assert res.p_value == pytest.approx(stats.chi2.sf(res.statistic, 1))

    def test_small_negative_statistic_clipped(self, correlated_fits):
        _, full = correlated_fits
        null = dataclasses.replace(
            full,
            restriction=NULL_M.copy(),
            free_mask=np.isnan(NULL_M),
            n_free_cov=2,
            loglik=full.loglik + 1e-9,
        )
        res = likelihood_ratio_test(null, full)
        assert res.statistic == 0.0
        assert res.p_value == 1.0

    def test_non_converged_input_warns(self, correlated_fits):
        null, full = correlated_fits
        stalled = dataclasses.replace(full, converged=False)
        with pytest.warns(UserWarning, match="did not converge"):
            res = likelihood_ratio_test(null, stalled)
        assert res.both_converged is False

    def test_converged_inputs_do_not_warn(self, correlated_fits):
        null, full = correlated_fits
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            likelihood_ratio_test(null, full)

    def test_dict_access(self, correlated_fits):
        res = likelihood_ratio_test(*correlated_fits)
        assert res["df"] == 1
        assert res.to_dict()["statistic"] == res.statistic


# ------------------------------------------------------------------ #
# Invalid comparisons
# ------------------------------------------------------------------ #


class TestInvalidTests:
    def test_different_types(self, correlated_fits):
        null, full = correlated_fits
        other = dataclasses.replace(full, types=("normal", "poisson"))
        with pytest.raises(InvalidTestError, match="response types"):
            likelihood_ratio_test(null, other)

    def test_different_psi(self, correlated_fits):
        null, full = correlated_fits
        other = dataclasses.replace(full, psi=np.array([1.0, 2.0]))
        with pytest.raises(InvalidTestError, match="dispersions"):
            likelihood_ratio_test(null, other)

    def test_different_data(self, correlated_fits):
        null, full = correlated_fits
        other = dataclasses.replace(full, data_hash="0" * 64)
        with pytest.raises(InvalidTestError, match="different data"):
            likelihood_ratio_test(null, other)

    def test_different_quadrature(self, correlated_fits):
        null, full = correlated_fits
        other = dataclasses.replace(full, num_nodes=8)
        with pytest.raises(InvalidTestError, match="quadrature"):
            likelihood_ratio_test(null, other)

    def test_different_sample_size(self, correlated_fits):
        null, full = correlated_fits
        other = dataclasses.replace(full, n_obs=full.n_obs + 1)
        with pytest.raises(InvalidTestError, match="observations"):
            likelihood_ratio_test(null, other)

    def test_not_nested(self, correlated_fits):
        null, full = correlated_fits
        shifted = np.array([[nan, 0.5], [0.5, nan]])
        other = dataclasses.replace(full, restriction=shifted, n_free_cov=2)
        with pytest.raises(InvalidTestError, match="not nested"):
            likelihood_ratio_test(null, other)

    def test_swapped_arguments(self, correlated_fits):
        null, full = correlated_fits
        with pytest.raises(InvalidTestError, match="not nested"):
            likelihood_ratio_test(full, null)

    def test_zero_df(self, correlated_fits):
        null, _ = correlated_fits
        with pytest.raises(InvalidTestError, match="more free covariance"):
            likelihood_ratio_test(null, null)

    def test_clearly_negative_statistic(self, correlated_fits):
        null, full = correlated_fits
        better_null = dataclasses.replace(null, loglik=full.loglik + 5.0)
        with pytest.raises(InvalidTestError, match="negative"):
            likelihood_ratio_test(better_null, full)


# ------------------------------------------------------------------ #
# Null distribution
# ------------------------------------------------------------------ #


@pytest.mark.slow
class TestNullDistribution:
    def test_statistic_is_chi2_one_under_null(self):
        rng = np.random.default_rng(7)
        n = 200
        X = np.tile(np.eye(2), (n, 1))
        Sigma = np.array([[1.0, 0.0], [0.0, 0.7]])
        stats_ = []
        for _ in range(100):
            Y = simulate_responses(X, [0.2, -0.1], Sigma, TYPES, random_state=rng)
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                null = fit(Y, X, TYPES, M=NULL_M, num_nodes=5, compute_se=False)
                full = fit(Y, X, TYPES, num_nodes=5, compute_se=False)
                stats_.append(likelihood_ratio_test(null, full).statistic)
        stats_ = np.asarray(stats_)
        assert stats.kstest(stats_, "chi2", args=(1,)).pvalue > 0.01
        assert stats_.mean() == pytest.approx(1.0, abs=0.45)

"""Tests for the response families and the conditional density evaluator."""

import numpy as np
import pytest
from scipy import stats
from scipy.special import expit, gammaln

from mixtype.exceptions import ConfigurationError, ResponseDomainError
from mixtype.families import (
    BernoulliFamily,
    NormalFamily,
    PoissonFamily,
    ResponseFamily,
    log_conditional_density,
    resolve_families,
    resolve_family,
)

# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture()
def rng():
    return np.random.default_rng(42)


# ------------------------------------------------------------------ #
# Protocol conformance and registry
# ------------------------------------------------------------------ #


class TestProtocolConformance:
    @pytest.mark.parametrize("cls", [NormalFamily, BernoulliFamily, PoissonFamily])
    def test_isinstance_check(self, cls):
        assert isinstance(cls(), ResponseFamily)

    def test_names(self):
        assert NormalFamily().name == "normal"
        assert BernoulliFamily().name == "bernoulli"
        assert PoissonFamily().name == "poisson"

    def test_uses_dispersion(self):
        assert NormalFamily().uses_dispersion is True
        assert PoissonFamily().uses_dispersion is True
        assert BernoulliFamily().uses_dispersion is False

    def test_frozen(self):
        import dataclasses

        fam = NormalFamily()
        assert dataclasses.is_dataclass(fam)
        assert NormalFamily() == fam


class TestResolveFamily:
    @pytest.mark.parametrize(
        "label,cls",
        [
            ("normal", NormalFamily),
            ("Gaussian", NormalFamily),
            ("BERNOULLI", BernoulliFamily),
            ("binary", BernoulliFamily),
            ("logistic", BernoulliFamily),
            ("poisson", PoissonFamily),
            (" quasi-poisson ", PoissonFamily),
        ],
    )
    def test_aliases(self, label, cls):
        assert isinstance(resolve_family(label), cls)

    def test_instance_passthrough(self):
        fam = PoissonFamily()
        assert resolve_family(fam) is fam

    def test_unknown_label(self):
        with pytest.raises(ConfigurationError, match="Unknown response type"):
            resolve_family("gamma")

    def test_non_string(self):
        with pytest.raises(ConfigurationError, match="string"):
            resolve_family(3)

    def test_resolve_families_sequence(self):
        fams = resolve_families(["normal", "bernoulli", "poisson"])
        assert [f.name for f in fams] == ["normal", "bernoulli", "poisson"]

    def test_resolve_families_single_string(self):
        fams = resolve_families("normal")
        assert len(fams) == 1


# ------------------------------------------------------------------ #
# Log densities
# ------------------------------------------------------------------ #


class TestNormalDensity:
    def test_matches_scipy(self, rng):
        y = rng.standard_normal(20)
        w = rng.standard_normal(20)
        out = log_conditional_density(y, "normal", w, psi=2.5)
        np.testing.assert_allclose(out, stats.norm.logpdf(y, loc=w, scale=np.sqrt(2.5)))

    def test_scalar_returns_float(self):
        out = log_conditional_density(0.3, "normal", -0.1, psi=1.0)
        assert isinstance(out, float)
        assert out == pytest.approx(stats.norm.logpdf(0.3, loc=-0.1))

    def test_rejects_nonfinite(self):
        with pytest.raises(ResponseDomainError):
            log_conditional_density(np.nan, "normal", 0.0)

    @pytest.mark.parametrize("psi", [0.0, -1.0, np.inf])
    def test_rejects_bad_psi(self, psi):
        with pytest.raises(ConfigurationError, match="positive"):
            log_conditional_density(0.0, "normal", 0.0, psi=psi)


class TestBernoulliDensity:
    def test_matches_log_sigmoid(self):
        w = np.linspace(-5, 5, 11)
        np.testing.assert_allclose(
            log_conditional_density(np.ones(11), "bernoulli", w), np.log(expit(w))
        )
        np.testing.assert_allclose(
            log_conditional_density(np.zeros(11), "bernoulli", w), np.log1p(-expit(w))
        )

    def test_stable_for_large_latent(self):
        assert log_conditional_density(1.0, "bernoulli", 1000.0) == pytest.approx(0.0)
        assert log_conditional_density(0.0, "bernoulli", 1000.0) == pytest.approx(-1000.0)
        assert log_conditional_density(1.0, "bernoulli", -1000.0) == pytest.approx(-1000.0)

    def test_rejects_non_binary(self):
        with pytest.raises(ResponseDomainError, match="0, 1"):
            log_conditional_density(np.array([0.0, 2.0]), "bernoulli", 0.0)

    def test_rejects_dispersion(self):
        with pytest.raises(ConfigurationError, match="must be 1"):
            log_conditional_density(1.0, "bernoulli", 0.0, psi=2.0)


class TestPoissonDensity:
    def test_matches_scipy_at_unit_dispersion(self):
        y = np.arange(8, dtype=float)
        w = np.linspace(-1, 2, 8)
        np.testing.assert_allclose(
            log_conditional_density(y, "poisson", w),
            stats.poisson.logpmf(y, np.exp(w)),
        )

    def test_quasi_kernel(self):
        y, w, psi = 3.0, 0.4, 2.0
        expected = (y * w - np.exp(w)) / psi - gammaln(y + 1.0)
        assert log_conditional_density(y, "poisson", w, psi=psi) == pytest.approx(expected)

    def test_stable_for_large_latent(self):
        out = log_conditional_density(2.0, "poisson", 1000.0)
        assert np.isfinite(out)

    def test_accepts_whole_floats(self):
        log_conditional_density(np.array([0.0, 3.0, 10.0]), "poisson", 0.0)

    @pytest.mark.parametrize("y", [-1.0, 1.5, 1000.004, 1e6 + 0.5])
    def test_rejects_invalid_counts(self, y):
        with pytest.raises(ResponseDomainError):
            log_conditional_density(y, "poisson", 0.0)


# ------------------------------------------------------------------ #
# Moments, working responses, sampling
# ------------------------------------------------------------------ #


class TestConditionalMoments:
    def test_normal(self):
        fam = NormalFamily()
        w = np.array([-1.0, 0.5])
        np.testing.assert_array_equal(fam.conditional_mean(w), w)
        np.testing.assert_array_equal(fam.conditional_variance(w, 2.0), [2.0, 2.0])

    def test_bernoulli(self):
        fam = BernoulliFamily()
        mu = fam.conditional_mean(np.array([0.0]))
        assert mu[0] == pytest.approx(0.5)
        assert fam.conditional_variance(np.array([0.0]), 1.0)[0] == pytest.approx(0.25)

    def test_poisson(self):
        fam = PoissonFamily()
        w = np.array([0.0, 1.0])
        np.testing.assert_allclose(fam.conditional_mean(w), np.exp(w))
        np.testing.assert_allclose(fam.conditional_variance(w, 3.0), 3.0 * np.exp(w))


class TestWorkingResponse:
    def test_bernoulli_smoothed_logit(self):
        z = BernoulliFamily().working_response(np.array([0.0, 1.0]))
        np.testing.assert_allclose(z, [np.log(1 / 3), np.log(3)])

    def test_poisson_log(self):
        z = PoissonFamily().working_response(np.array([0.0, 2.0]))
        np.testing.assert_allclose(z, np.log([0.5, 2.5]))


class TestSample:
    def test_bernoulli_support(self, rng):
        y = BernoulliFamily().sample(rng, np.zeros(500), 1.0)
        assert set(np.unique(y)) <= {0.0, 1.0}

    def test_poisson_mean(self, rng):
        y = PoissonFamily().sample(rng, np.full(20_000, np.log(4.0)), 1.0)
        assert y.mean() == pytest.approx(4.0, rel=0.05)

    def test_negative_binomial_variance(self, rng):
        y = PoissonFamily().sample(rng, np.full(40_000, np.log(5.0)), 3.0)
        assert y.mean() == pytest.approx(5.0, rel=0.05)
        assert y.var() == pytest.approx(15.0, rel=0.1)

    def test_underdispersed_rejected(self, rng):
        with pytest.raises(ConfigurationError, match="dispersion >= 1"):
            PoissonFamily().sample(rng, np.zeros(3), 0.5)

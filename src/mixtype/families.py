"""Response families and the conditional density evaluator.

Every coordinate of a mixed-type response vector is linked to its latent
Gaussian coordinate ``w`` through one of three conditional families:

=============  ========================  =====================  ==========
Family         E[y | w]                  Var(y | w)             Dispersion
=============  ========================  =====================  ==========
``normal``     ``w``                     ``ψ``                  known ψ
``poisson``    ``exp(w)``                ``ψ · exp(w)``         known ψ
``bernoulli``  ``1 / (1 + exp(-w))``     ``μ (1 - μ)``          fixed at 1
=============  ========================  =====================  ==========

The ``ResponseFamily`` protocol decouples per-type behaviour (support
checks, log density, conditional moments, sampling) from the likelihood
and optimiser code, which only ever loop over coordinates and dispatch
to ``family.<method>()``.

Array namespaces
~~~~~~~~~~~~~~~~
:meth:`ResponseFamily.log_density` accepts an ``xp`` argument (``numpy``
or ``jax.numpy``) so that the *same* formula is used by the NumPy
backend and differentiated by the JAX backend.  Only ``w`` is ever
traced; ``y`` and ``ψ`` are data and stay NumPy.

Quasi-Poisson
~~~~~~~~~~~~~
For ``ψ ≠ 1`` there is no Poisson-type density with variance
``ψ · exp(w)``.  The conditional log contribution is the
quasi-log-likelihood kernel

    (y · w − exp(w)) / ψ − log Γ(y + 1)

which coincides with the Poisson log-mass at ``ψ = 1``.  Marginal
likelihoods built from it are approximations and are labelled as such.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, final, runtime_checkable

import numpy as np
from scipy.special import expit, gammaln

from .exceptions import ConfigurationError, ResponseDomainError

_LOG_2PI: float = float(np.log(2.0 * np.pi))

_EXP_CLIP: float = 700.0
"""Upper clip for the exponent in ``exp(w)``.

``exp(709.78)`` overflows float64; clipping at 700 keeps the Poisson
mean finite while leaving any realistic latent value untouched.
"""


# ------------------------------------------------------------------ #
# ResponseFamily protocol
# ------------------------------------------------------------------ #


@runtime_checkable
class ResponseFamily(Protocol):
    """Interface that every conditional response family implements.

    Attributes:
        name: Canonical label (``"normal"``, ``"bernoulli"``,
            ``"poisson"``).
        uses_dispersion: Whether a dispersion ψ other than 1 is
            meaningful for this family.
    """

    @property
    def name(self) -> str: ...

    @property
    def uses_dispersion(self) -> bool: ...

    def validate_y(self, y: np.ndarray) -> None:
        """Raise ``ResponseDomainError`` if *y* is outside the support."""
        ...

    def validate_psi(self, psi: float) -> None:
        """Raise ``ConfigurationError`` if *psi* is not admissible."""
        ...

    def log_density(self, y: Any, w: Any, psi: float, xp: Any = np) -> Any:
        """Log conditional density of *y* given latent value *w*."""
        ...

    def conditional_mean(self, w: np.ndarray) -> np.ndarray: ...

    def conditional_variance(self, w: np.ndarray, psi: float) -> np.ndarray: ...

    def working_response(self, y: np.ndarray) -> np.ndarray:
        """Transform *y* to the latent scale for moment-based starts."""
        ...

    def sample(
        self, rng: np.random.Generator, w: np.ndarray, psi: float
    ) -> np.ndarray: ...


def _check_positive_psi(name: str, psi: float) -> None:
    if not np.isfinite(psi) or psi <= 0:
        msg = f"Dispersion for a {name} coordinate must be positive, got {psi}."
        raise ConfigurationError(msg)


# ------------------------------------------------------------------ #
# NormalFamily
# ------------------------------------------------------------------ #


@final
@dataclass(frozen=True)
class NormalFamily:
    """Gaussian response: ``y | w ~ N(w, ψ)``."""

    @property
    def name(self) -> str:
        return "normal"

    @property
    def uses_dispersion(self) -> bool:
        return True

    def validate_y(self, y: np.ndarray) -> None:
        """Check that *y* is finite."""
        if not np.all(np.isfinite(y)):
            msg = "Normal coordinates require finite response values."
            raise ResponseDomainError(msg)

    def validate_psi(self, psi: float) -> None:
        _check_positive_psi(self.name, psi)

    def log_density(self, y: Any, w: Any, psi: float, xp: Any = np) -> Any:
        return -0.5 * (_LOG_2PI + np.log(psi)) - (y - w) ** 2 / (2.0 * psi)

    def conditional_mean(self, w: np.ndarray) -> np.ndarray:
        return np.asarray(w, dtype=float)

    def conditional_variance(self, w: np.ndarray, psi: float) -> np.ndarray:
        return np.full_like(np.asarray(w, dtype=float), psi)

    def working_response(self, y: np.ndarray) -> np.ndarray:
        return np.asarray(y, dtype=float)

    def sample(
        self, rng: np.random.Generator, w: np.ndarray, psi: float
    ) -> np.ndarray:
        return w + np.sqrt(psi) * rng.standard_normal(np.shape(w))


# ------------------------------------------------------------------ #
# BernoulliFamily
# ------------------------------------------------------------------ #


@final
@dataclass(frozen=True)
class BernoulliFamily:
    """Binary response with logistic link: ``P(y = 1 | w) = σ(w)``.

    The dispersion is fixed at 1.  The identifiability constraint
    ``Σ_jj = 1`` on the matching latent variance is enforced by the
    restriction handler, not here.
    """

    @property
    def name(self) -> str:
        return "bernoulli"

    @property
    def uses_dispersion(self) -> bool:
        return False

    def validate_y(self, y: np.ndarray) -> None:
        """Check that *y* only takes the values 0 and 1."""
        if not np.all(np.isin(y, [0.0, 1.0])):
            msg = "Bernoulli coordinates require response values in {0, 1}."
            raise ResponseDomainError(msg)

    def validate_psi(self, psi: float) -> None:
        if psi != 1.0:
            msg = f"Dispersion for a bernoulli coordinate must be 1, got {psi}."
            raise ConfigurationError(msg)

    def log_density(self, y: Any, w: Any, psi: float, xp: Any = np) -> Any:
        # y·w − log(1 + e^w), with logaddexp for large |w|.
        return y * w - xp.logaddexp(0.0, w)

    def conditional_mean(self, w: np.ndarray) -> np.ndarray:
        return expit(w)

    def conditional_variance(self, w: np.ndarray, psi: float) -> np.ndarray:
        mu = expit(w)
        return mu * (1.0 - mu)

    def working_response(self, y: np.ndarray) -> np.ndarray:
        # Smoothed empirical logit: 0 → log(1/3), 1 → log(3).
        p = (np.asarray(y, dtype=float) + 0.5) / 2.0
        return np.log(p / (1.0 - p))

    def sample(
        self, rng: np.random.Generator, w: np.ndarray, psi: float
    ) -> np.ndarray:
        return rng.binomial(1, expit(w)).astype(float)


# ------------------------------------------------------------------ #
# PoissonFamily
# ------------------------------------------------------------------ #


@final
@dataclass(frozen=True)
class PoissonFamily:
    """Count response with log link, quasi-Poisson when ``ψ ≠ 1``."""

    @property
    def name(self) -> str:
        return "poisson"

    @property
    def uses_dispersion(self) -> bool:
        return True

    def validate_y(self, y: np.ndarray) -> None:
        """Check that *y* contains non-negative integer-valued data."""
        if not np.all(np.isfinite(y)):
            msg = "Poisson coordinates require finite response values."
            raise ResponseDomainError(msg)
        if np.any(y < 0):
            msg = "Poisson coordinates require non-negative response values."
            raise ResponseDomainError(msg)
        # Whole-valued floats (3.0) pass; any fractional part fails.
        if not np.all(y == np.floor(y)):
            msg = "Poisson coordinates require integer-valued responses."
            raise ResponseDomainError(msg)

    def validate_psi(self, psi: float) -> None:
        _check_positive_psi(self.name, psi)

    def log_density(self, y: Any, w: Any, psi: float, xp: Any = np) -> Any:
        log_fact = gammaln(np.asarray(y, dtype=float) + 1.0)
        mean = xp.exp(xp.minimum(w, _EXP_CLIP))
        return (y * w - mean) / psi - log_fact

    def conditional_mean(self, w: np.ndarray) -> np.ndarray:
        return np.exp(np.minimum(w, _EXP_CLIP))

    def conditional_variance(self, w: np.ndarray, psi: float) -> np.ndarray:
        return psi * np.exp(np.minimum(w, _EXP_CLIP))

    def working_response(self, y: np.ndarray) -> np.ndarray:
        return np.log(np.asarray(y, dtype=float) + 0.5)

    def sample(
        self, rng: np.random.Generator, w: np.ndarray, psi: float
    ) -> np.ndarray:
        mu = self.conditional_mean(w)
        if psi == 1.0:
            return rng.poisson(mu).astype(float)
        if psi < 1.0:
            msg = (
                "Sampling quasi-Poisson responses requires dispersion >= 1 "
                f"(negative binomial), got {psi}."
            )
            raise ConfigurationError(msg)
        # Negative binomial with mean μ and variance ψ·μ.
        size = mu / (psi - 1.0)
        return rng.negative_binomial(size, 1.0 / psi).astype(float)


# ------------------------------------------------------------------ #
# Registry and resolution
# ------------------------------------------------------------------ #

_FAMILIES: dict[str, type] = {
    "normal": NormalFamily,
    "gaussian": NormalFamily,
    "bernoulli": BernoulliFamily,
    "binary": BernoulliFamily,
    "logistic": BernoulliFamily,
    "poisson": PoissonFamily,
    "quasi-poisson": PoissonFamily,
    "quasipoisson": PoissonFamily,
}


def resolve_family(label: str | ResponseFamily) -> ResponseFamily:
    """Map a type label (or family instance) to a ``ResponseFamily``.

    Args:
        label: Case-insensitive name such as ``"normal"``,
            ``"Bernoulli"`` or ``"poisson"``, or an existing family
            instance (returned unchanged).

    Raises:
        ConfigurationError: If *label* names no supported family.
    """
    if isinstance(label, ResponseFamily):
        return label
    if not isinstance(label, str):
        msg = f"Response type must be a string label, got {type(label).__name__}."
        raise ConfigurationError(msg)
    key = label.strip().lower()
    if key not in _FAMILIES:
        supported = sorted(set(_FAMILIES))
        msg = f"Unknown response type '{label}'. Choose from: {supported}"
        raise ConfigurationError(msg)
    return _FAMILIES[key]()  # type: ignore[no-any-return]


def resolve_families(types: Any) -> tuple[ResponseFamily, ...]:
    """Resolve a length-r sequence of labels into family instances."""
    if isinstance(types, str):
        types = [types]
    return tuple(resolve_family(t) for t in types)


def log_conditional_density(
    y: float | np.ndarray,
    response_type: str | ResponseFamily,
    w: float | np.ndarray,
    psi: float = 1.0,
) -> float | np.ndarray:
    """Evaluate ``log p(y | w)`` for a single response type.

    *y* and *w* broadcast against each other.  The result is a Python
    float when both are scalars.

    Args:
        y: Response value(s).
        response_type: Type label or family instance.
        w: Latent value(s).
        psi: Dispersion; must be 1 for Bernoulli.

    Raises:
        ResponseDomainError: If *y* is outside the family's support.
        ConfigurationError: If *psi* is not admissible.
    """
    family = resolve_family(response_type)
    y_arr = np.asarray(y, dtype=float)
    w_arr = np.asarray(w, dtype=float)
    family.validate_y(y_arr)
    family.validate_psi(float(psi))
    out = family.log_density(y_arr, w_arr, float(psi))
    if np.ndim(out) == 0:
        return float(out)
    return np.asarray(out)

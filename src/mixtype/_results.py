"""Result containers returned by :func:`~mixtype.fit` and
:func:`~mixtype.likelihood_ratio_test`.

Both are frozen dataclasses.  Fields can be read as attributes
(``res.Sigma``) or with mapping syntax (``res["Sigma"]``,
``res.get("beta_se")``, ``"loglik" in res``), and :meth:`to_dict`
gives a JSON-ready ``dict`` in which arrays are nested lists and NumPy
scalars are Python numbers.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any

import numpy as np

# ------------------------------------------------------------------ #
# Serialisation helper
# ------------------------------------------------------------------ #


def _numpy_to_python(obj: Any) -> Any:
    """Replace NumPy arrays and scalars inside *obj* with builtins."""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, dict):
        return {k: _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        converted = [_numpy_to_python(item) for item in obj]
        return type(obj)(converted)
    return obj


# ------------------------------------------------------------------ #
# Mapping-style access
# ------------------------------------------------------------------ #


class _DictAccessMixin:
    """Read-only mapping access to dataclass fields.

    ``res[key]`` raises ``KeyError`` for unknown names, ``res.get``
    returns a default instead, and ``in`` tests membership.
    """

    def __getitem__(self, key: str) -> Any:
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key) from None

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self, key, default)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and hasattr(self, key)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain, JSON-serialisable dictionary."""
        return {
            f.name: _numpy_to_python(getattr(self, f.name))
            for f in fields(self)  # type: ignore[arg-type]
        }


# ------------------------------------------------------------------ #
# FitResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class FitResult(_DictAccessMixin):
    """Result of one call to :func:`~mixtype.fit`.

    All fields are accessible both as attributes (``result.Sigma``)
    and via dict syntax (``result["Sigma"]``).
    """

    # ---- Estimates -------------------------------------------------
    beta: np.ndarray
    """Estimated coefficients β̂, shape ``(p,)``."""

    Sigma: np.ndarray
    """Estimated latent covariance Σ̂, shape ``(r, r)``."""

    loglik: float
    """Maximised approximate log-likelihood."""

    converged: bool
    """Whether the optimiser reported convergence within ``max_iter``."""

    # ---- Optimiser bookkeeping ------------------------------------
    n_iter: int
    """Optimiser iterations used."""

    message: str
    """Optimiser termination message."""

    theta: np.ndarray
    """Free covariance parameters at the optimum."""

    # ---- Restriction bookkeeping ----------------------------------
    restriction: np.ndarray
    """Restriction matrix used (``nan`` = free), shape ``(r, r)``."""

    free_mask: np.ndarray
    """``True`` where Σ was estimated, shape ``(r, r)``."""

    n_free_cov: int
    """Number of free upper-triangular covariance entries."""

    n_params: int
    """Total free parameters, ``p + n_free_cov``."""

    # ---- Model description ----------------------------------------
    types: tuple[str, ...]
    """Response type of each coordinate."""

    psi: np.ndarray
    """Dispersions used, shape ``(r,)``."""

    num_nodes: int
    """Quadrature nodes per latent dimension."""

    n_obs: int
    """Number of observations n."""

    data_hash: str
    """Digest of (Y, X); identifies fits made on the same data."""

    backend: str
    """Objective backend used (``"numpy"`` or ``"jax"``)."""

    # ---- Inference -------------------------------------------------
    beta_se: np.ndarray
    """Standard errors of β̂ from the numerical Hessian (``nan`` if
    unavailable)."""

    aic: float
    """``−2 ℓ + 2 k`` with ``k = n_params``."""

    bic: float
    """``−2 ℓ + k log n``."""


# ------------------------------------------------------------------ #
# LikelihoodRatioResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class LikelihoodRatioResult(_DictAccessMixin):
    """Result of :func:`~mixtype.likelihood_ratio_test`."""

    statistic: float
    """``2 (ℓ_full − ℓ_null)``, clipped at 0 within tolerance."""

    df: int
    """Difference in free covariance parameters."""

    p_value: float
    """Upper tail of χ²_df at ``statistic``."""

    loglik_null: float
    """Maximised log-likelihood of the restricted fit."""

    loglik_full: float
    """Maximised log-likelihood of the less restricted fit."""

    both_converged: bool
    """``False`` if either input fit did not converge; the asymptotic
    reference distribution is then unreliable."""

"""Marginal moments of the observed responses.

For observation i the latent vector is ``w ~ N(X_i β, Σ)`` and, given
w, coordinate j has conditional mean ``m_j(w)`` and variance
``v_j(w)`` (see :mod:`mixtype.families`).  The marginal moments follow
from the laws of total expectation and covariance,

    E[y_i]   = E[m(w)]
    Cov(y_i) = E[diag v(w)] + Cov(m(w)),

and are evaluated on the same tensor-product Gauss–Hermite grid that
the likelihood uses.  For Normal coordinates the result is exact.
"""

from __future__ import annotations

from typing import Any

import numpy as np

from ._compat import _ensure_array
from ._typing import ArrayLike, TypesLike
from ._validation import prepare_design, prepare_psi
from .exceptions import ConfigurationError
from .families import resolve_families
from .likelihood import cholesky_root
from .quadrature import build_quadrature_grid


def _as_covariance(sigma_or_Sigma: Any, r: int) -> np.ndarray:
    """Accept an r×r covariance, or length-r standard deviations."""
    arr = np.asarray(_ensure_array(sigma_or_Sigma, name="Sigma"), dtype=float)
    if arr.ndim == 2:
        if arr.shape != (r, r):
            msg = f"Sigma must be {r}x{r}, got shape {arr.shape}."
            raise ConfigurationError(msg)
        if not np.allclose(arr, arr.T):
            msg = "Sigma must be symmetric."
            raise ConfigurationError(msg)
        return arr
    sd = np.atleast_1d(arr).reshape(-1)
    if sd.shape == (1,) and r > 1:
        sd = np.repeat(sd, r)
    if sd.shape != (r,):
        msg = f"Expected {r} latent standard deviations, got {sd.shape[0]}."
        raise ConfigurationError(msg)
    if np.any(sd <= 0):
        msg = "Latent standard deviations must be positive."
        raise ConfigurationError(msg)
    return np.diag(sd**2)


def predict_moments(
    X: ArrayLike,
    beta: Any,
    Sigma: Any,
    types: TypesLike,
    psi: Any = None,
    num_nodes: int = 10,
) -> tuple[np.ndarray, np.ndarray]:
    """Marginal mean and covariance of y for each design row block.

    Args:
        X: Stacked design ``(n·r, p)`` or ``(n, r, p)``.
        beta: Coefficients ``(p,)``.
        Sigma: Latent covariance ``(r, r)``, or latent standard
            deviations (scalar or length r) for a diagonal Σ.
        types: Length-r response type labels.
        psi: Length-r dispersions; ``None`` means all ones.
        num_nodes: Gauss–Hermite nodes per latent dimension.

    Returns:
        ``(mean, cov)`` with shapes ``(n, r)`` and ``(n, r, r)``.

    Raises:
        ConfigurationError: On inconsistent shapes or dispersions.
        CovarianceFactorizationError: If Σ is not positive-definite.
    """
    families = resolve_families(types)
    r = len(families)
    X3 = prepare_design(X, r)
    p = X3.shape[2]
    beta = np.asarray(beta, dtype=float).reshape(-1)
    if beta.shape != (p,):
        msg = f"beta must have length {p}, got {beta.shape[0]}."
        raise ConfigurationError(msg)
    psi_arr = prepare_psi(psi, families)
    L = cholesky_root(_as_covariance(Sigma, r))
    grid = build_quadrature_grid(r, num_nodes)

    mu = X3 @ beta
    W = mu[:, None, :] + (grid.nodes @ L.T)[None, :, :]
    m = np.stack(
        [fam.conditional_mean(W[:, :, j]) for j, fam in enumerate(families)], axis=-1
    )
    v = np.stack(
        [
            fam.conditional_variance(W[:, :, j], float(psi_arr[j]))
            for j, fam in enumerate(families)
        ],
        axis=-1,
    )

    w = grid.weights
    mean = np.einsum("g,ngj->nj", w, m)
    second = np.einsum("g,ngj,ngk->njk", w, m, m)
    cov = second - mean[:, :, None] * mean[:, None, :]
    idx = np.arange(r)
    cov[:, idx, idx] += np.einsum("g,ngj->nj", w, v)
    return mean, cov

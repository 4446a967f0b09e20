"""Random samples from the mixed-type latent Gaussian model.

Draws ``w_i ~ N(X_i β, Σ)`` and then each ``y_ij`` from its conditional
family.  Quasi-Poisson coordinates with ``ψ > 1`` are sampled from a
negative binomial with mean ``exp(w)`` and variance ``ψ · exp(w)``;
``ψ < 1`` has no such sampling distribution and is rejected.
"""

from __future__ import annotations

from typing import Any

import numpy as np

from ._typing import ArrayLike, TypesLike
from ._validation import prepare_design, prepare_psi
from .exceptions import ConfigurationError
from .families import resolve_families
from .likelihood import cholesky_root


def simulate_responses(
    X: ArrayLike,
    beta: Any,
    Sigma: Any,
    types: TypesLike,
    psi: Any = None,
    random_state: int | np.random.Generator | None = None,
) -> np.ndarray:
    """Draw one response vector per design block.

    Args:
        X: Stacked design ``(n·r, p)`` or ``(n, r, p)``.
        beta: Coefficients ``(p,)``.
        Sigma: Latent covariance ``(r, r)``.
        types: Length-r response type labels.
        psi: Length-r dispersions; ``None`` means all ones.
        random_state: Seed or ``numpy.random.Generator``.

    Returns:
        ``(n, r)`` array of simulated responses.
    """
    families = resolve_families(types)
    r = len(families)
    X3 = prepare_design(X, r)
    beta = np.asarray(beta, dtype=float).reshape(-1)
    if beta.shape != (X3.shape[2],):
        msg = f"beta must have length {X3.shape[2]}, got {beta.shape[0]}."
        raise ConfigurationError(msg)
    Sigma = np.asarray(Sigma, dtype=float)
    if Sigma.shape != (r, r):
        msg = f"Sigma must be {r}x{r}, got shape {Sigma.shape}."
        raise ConfigurationError(msg)
    psi_arr = prepare_psi(psi, families)
    L = cholesky_root(Sigma)
    rng = np.random.default_rng(random_state)

    n = X3.shape[0]
    W = X3 @ beta + rng.standard_normal((n, r)) @ L.T
    Y = np.empty((n, r))
    for j, fam in enumerate(families):
        Y[:, j] = fam.sample(rng, W[:, j], float(psi_arr[j]))
    return Y

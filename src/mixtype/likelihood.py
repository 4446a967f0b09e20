"""Quadrature approximation of the marginal log-likelihood.

For observation i with linear predictor ``μ_i = X_i β`` and latent
covariance ``Σ = L Lᵀ`` (lower Cholesky factor), the marginal
likelihood

    p(y_i) = ∫ ∏_j p(y_ij | w_j) φ_r(w; μ_i, Σ) dw

is approximated on a standard-normal quadrature grid ``{(z_g, ω_g)}``
by substituting ``w = μ_i + L z``:

    log p(y_i) ≈ logsumexp_g [ log ω_g + Σ_j log p(y_ij | μ_ij + (L z_g)_j) ]

The weights already integrate against φ_r, so no Jacobian term is
needed.  The combination over nodes is done in log space, which keeps
contributions finite when individual node likelihoods underflow.

Parallelism
~~~~~~~~~~~
Contributions are independent across observations.  Evaluation is a
map-reduce over contiguous observation chunks: each chunk is a single
vectorised ``(m, G, r)`` computation, and with ``n_jobs != 1`` the
chunks are dispatched through ``joblib.Parallel(prefer="threads")``.
NumPy releases the GIL inside the elementwise kernels, so threads
overlap without serialising the data.  The grid is read-only and
shared by every chunk.
"""

from __future__ import annotations

from typing import Any

import numpy as np
from joblib import Parallel, delayed
from scipy.special import logsumexp

from ._typing import ArrayLike, TypesLike
from ._validation import ModelData, prepare_data
from .exceptions import CovarianceFactorizationError
from .quadrature import QuadratureGrid

_CHUNK_ELEMENTS: int = 2_000_000
"""Target number of ``(observation, node, coordinate)`` cells per chunk."""


def node_log_densities(
    Y: Any,
    W: Any,
    families: tuple[Any, ...],
    psi: np.ndarray,
    xp: Any = np,
) -> Any:
    """Joint conditional log density at every node.

    Args:
        Y: Responses ``(m, r)``.
        W: Latent values ``(m, G, r)``.
        families: One family per coordinate.
        psi: Dispersions ``(r,)``.

    Returns:
        ``(m, G)`` array of ``Σ_j log p(y_ij | W[i, g, j])``.
    """
    total = 0.0
    for j, fam in enumerate(families):
        total = total + fam.log_density(Y[:, j, None], W[:, :, j], float(psi[j]), xp=xp)
    return total


def chunk_contributions(
    Y: Any,
    X: Any,
    beta: Any,
    L: Any,
    grid: QuadratureGrid,
    families: tuple[Any, ...],
    psi: np.ndarray,
    xp: Any = np,
    lse: Any = logsumexp,
) -> Any:
    """Approximate log marginal likelihoods for one block of observations.

    Args:
        Y: Responses ``(m, r)``.
        X: Design matrices ``(m, r, p)``.
        beta: Coefficients ``(p,)``.
        L: Lower Cholesky factor of Σ ``(r, r)``.
        xp: Array namespace, ``numpy`` or ``jax.numpy``.
        lse: Log-sum-exp matching *xp*; ``jax.scipy.special.logsumexp``
            under JAX.

    Returns:
        ``(m,)`` contributions.
    """
    mu = X @ beta
    offsets = grid.nodes @ L.T
    W = mu[:, None, :] + offsets[None, :, :]
    log_joint = node_log_densities(Y, W, families, psi, xp=xp)
    return lse(log_joint + grid.log_weights[None, :], axis=1)


def cholesky_root(Sigma: np.ndarray) -> np.ndarray:
    """Lower Cholesky factor of *Sigma*.

    Raises:
        CovarianceFactorizationError: If *Sigma* is not
            positive-definite.
    """
    try:
        return np.linalg.cholesky(Sigma)
    except np.linalg.LinAlgError as exc:
        msg = "Covariance matrix is not positive-definite; Cholesky factorisation failed."
        raise CovarianceFactorizationError(msg) from exc


def default_chunk_size(grid: QuadratureGrid) -> int:
    return max(1, _CHUNK_ELEMENTS // (grid.size * grid.dim))


def evaluate_contributions(
    data: ModelData,
    beta: np.ndarray,
    L: np.ndarray,
    grid: QuadratureGrid,
    n_jobs: int = 1,
    chunk_size: int | None = None,
) -> np.ndarray:
    """Map :func:`chunk_contributions` over observation chunks."""
    if chunk_size is None:
        chunk_size = default_chunk_size(grid)
    starts = range(0, data.n, chunk_size)

    def _one(start: int) -> np.ndarray:
        stop = start + chunk_size
        return chunk_contributions(
            data.Y[start:stop],
            data.X[start:stop],
            beta,
            L,
            grid,
            data.families,
            data.psi,
        )

    if n_jobs == 1 or len(starts) == 1:
        parts = [_one(s) for s in starts]
    else:
        parts = Parallel(n_jobs=n_jobs, prefer="threads")(
            delayed(_one)(s) for s in starts
        )
    return np.concatenate(parts)


def marginal_loglik_contributions(
    Y: ArrayLike,
    X: ArrayLike,
    types: TypesLike,
    psi: Any,
    beta: Any,
    Sigma: Any,
    grid: QuadratureGrid,
    n_jobs: int = 1,
    chunk_size: int | None = None,
) -> np.ndarray:
    """Per-observation approximate log marginal likelihood contributions.

    Args:
        Y: Responses ``(n, r)``.
        X: Stacked design ``(n·r, p)`` or ``(n, r, p)``.
        types: Length-r response type labels.
        psi: Length-r dispersions, or ``None`` for all ones.
        beta: Coefficients ``(p,)``.
        Sigma: Latent covariance ``(r, r)``.
        grid: Quadrature grid with ``grid.dim == r``.
        n_jobs: joblib worker count for the chunk map.
        chunk_size: Observations per chunk (default sized to the grid).

    Returns:
        ``(n,)`` array; the total approximate log-likelihood is its sum.

    Raises:
        ConfigurationError: On inconsistent inputs.
        CovarianceFactorizationError: If *Sigma* does not factor.
    """
    data = prepare_data(Y, X, types, psi)
    beta = np.asarray(beta, dtype=float).reshape(-1)
    if beta.shape != (data.p,):
        msg = f"beta must have length {data.p}, got {beta.shape[0]}."
        raise ValueError(msg)
    Sigma = np.asarray(Sigma, dtype=float)
    if Sigma.shape != (data.r, data.r):
        msg = f"Sigma must be {data.r}x{data.r}, got shape {Sigma.shape}."
        raise ValueError(msg)
    if grid.dim != data.r:
        msg = f"Quadrature grid has dimension {grid.dim}, expected {data.r}."
        raise ValueError(msg)
    L = cholesky_root(Sigma)
    return evaluate_contributions(data, beta, L, grid, n_jobs=n_jobs, chunk_size=chunk_size)

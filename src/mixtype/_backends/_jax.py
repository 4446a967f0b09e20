"""JAX objective backend.

The mean negative log-likelihood is written once, against an array
namespace, in :mod:`mixtype.likelihood`, :mod:`mixtype.families` and
:mod:`mixtype.restrictions`.  This backend runs that code with
``xp=jax.numpy`` and differentiates it with ``jax.value_and_grad``, so
the gradient is exact for the quadrature rule being optimised.

NumPy ↔ JAX boundary convention
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
The design and the grid are converted to float64 JAX arrays once, when
the objective is built; responses remain NumPy constants.  The
objective accepts and returns NumPy values so that
:func:`scipy.optimize.minimize` never sees JAX types.

All observations are evaluated in a single ``(n, G, r)`` block; there
is no joblib chunking on this path.

Graceful degradation
~~~~~~~~~~~~~~~~~~~~
If JAX is not installed, :class:`JaxBackend` can still be instantiated
(for introspection) but ``is_available`` returns ``False`` and
:func:`~mixtype._backends.resolve_backend` refuses to return it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np

from ..likelihood import chunk_contributions
from ..quadrature import QuadratureGrid

try:
    import jax

    # Quadrature sums over many nodes lose too much precision in float32.
    jax.config.update("jax_enable_x64", True)

    import jax.numpy as jnp
    from jax.scipy.special import logsumexp as jax_logsumexp

    _CAN_IMPORT_JAX = True
except ImportError:
    _CAN_IMPORT_JAX = False


@dataclass(frozen=True)
class JaxBackend:
    """JAX autodiff objective backend."""

    @property
    def name(self) -> str:
        return "jax"

    @property
    def is_available(self) -> bool:
        return _CAN_IMPORT_JAX

    def make_objective(
        self,
        data: Any,
        grid: Any,
        param: Any,
        *,
        n_jobs: int = 1,
        with_gradient: bool = True,
    ) -> Any:
        p = data.p
        # Y stays NumPy: it is sliced per coordinate and passed to
        # scipy.special.gammaln, which needs concrete values.
        Y = np.asarray(data.Y, dtype=float)
        X = jnp.asarray(data.X, dtype=jnp.float64)
        grid_j = QuadratureGrid(
            nodes=jnp.asarray(grid.nodes, dtype=jnp.float64),
            weights=jnp.asarray(grid.weights, dtype=jnp.float64),
            log_weights=jnp.asarray(grid.log_weights, dtype=jnp.float64),
            dim=grid.dim,
            num_nodes=grid.num_nodes,
        )
        families = data.families
        psi = np.asarray(data.psi, dtype=float)

        def _nll(params: jnp.ndarray) -> jnp.ndarray:
            beta = params[:p]
            theta = params[p:]
            _, min_mass = param.cholesky_factor(theta, xp=jnp)
            Sigma = param.to_matrix(theta, xp=jnp)
            L = jnp.linalg.cholesky(Sigma)
            contributions = chunk_contributions(
                Y, X, beta, L, grid_j, families, psi,
                xp=jnp, lse=jax_logsumexp,
            )
            value = -jnp.mean(contributions)
            feasible = (min_mass > 0) & jnp.isfinite(value)
            return jnp.where(feasible, value, jnp.inf)

        if not with_gradient:
            value_only = jax.jit(_nll)

            def _value(params: np.ndarray) -> float:
                return float(value_only(jnp.asarray(params, dtype=jnp.float64)))

            return _value

        value_and_grad = jax.jit(jax.value_and_grad(_nll))

        def objective(params: np.ndarray) -> tuple[float, np.ndarray]:
            value, grad = value_and_grad(jnp.asarray(params, dtype=jnp.float64))
            value = float(value)
            if not np.isfinite(value):
                return np.inf, np.full(np.shape(params), np.nan)
            return value, np.asarray(grad, dtype=float)

        return objective

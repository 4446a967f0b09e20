"""Backend abstraction for the optimisation objective.

Each backend implements :class:`BackendProtocol`: given validated data,
a quadrature grid and a covariance parameterisation, it builds the
function the optimiser minimises,

    params = [β, θ]  ↦  (−ℓ(params) / n,  ∇),

where ℓ is the approximate log-likelihood of
:mod:`mixtype.likelihood`.  Both backends evaluate the identical
quadrature combination rule; they differ only in how the gradient is
obtained:

* ``"numpy"`` — centred finite differences of the NumPy objective
  (:func:`statsmodels.tools.numdiff.approx_fprime`), with the
  observation map parallelised through joblib.
* ``"jax"`` — reverse-mode autodiff of the same formula written against
  ``jax.numpy``.

Resolution follows the policy set by :mod:`.._config`.  When ``"jax"``
is explicitly requested but JAX is not installed, an
:class:`ImportError` is raised rather than falling back to NumPy.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

import numpy as np

from .._config import get_backend

Objective = Callable[[np.ndarray], tuple[float, np.ndarray]]
ValueFunction = Callable[[np.ndarray], float]


@runtime_checkable
class BackendProtocol(Protocol):
    """Interface that every objective backend must implement.

    Attributes:
        name: Short identifier (``"numpy"`` or ``"jax"``).
    """

    @property
    def name(self) -> str: ...

    @property
    def is_available(self) -> bool:
        """Whether the backend's dependencies are importable."""
        ...

    def make_objective(
        self,
        data: Any,
        grid: Any,
        param: Any,
        *,
        n_jobs: int = 1,
        with_gradient: bool = True,
    ) -> Objective | ValueFunction:
        """Build ``params ↦ (mean negative log-likelihood, gradient)``.

        Infeasible covariance parameters evaluate to ``+inf`` without
        touching the likelihood.

        Args:
            data: Validated :class:`~mixtype._validation.ModelData`.
            grid: :class:`~mixtype.quadrature.QuadratureGrid`.
            param: :class:`~mixtype.restrictions.CovarianceParameterization`.
            n_jobs: Worker count for backends that parallelise over
                observations.
            with_gradient: When ``False``, return ``params ↦ value``
                only (for derivative-free optimisers).
        """
        ...


_BACKEND_CACHE: dict[str, BackendProtocol] = {}


def resolve_backend(name: str | None = None) -> BackendProtocol:
    """Return a :class:`BackendProtocol` instance for *name*.

    When *name* is ``None`` (the default), the policy from
    :func:`~mixtype._config.get_backend` is used.

    Raises:
        ImportError: If ``"jax"`` is explicitly requested but JAX
            is not installed.
        ValueError: If *name* is not a recognised backend.
    """
    if name is None:
        name = get_backend()
    name = name.strip().lower()

    if name in _BACKEND_CACHE:
        return _BACKEND_CACHE[name]

    if name == "numpy":
        from ._numpy import NumpyBackend

        backend: BackendProtocol = NumpyBackend()

    elif name == "jax":
        from ._jax import JaxBackend

        jax_backend = JaxBackend()
        if not jax_backend.is_available:
            msg = (
                "The jax backend needs JAX, which is not installed. "
                "Install the extra (`pip install mixtype[jax]`) or select "
                "the numpy backend."
            )
            raise ImportError(msg)
        backend = jax_backend

    else:
        msg = f"Unknown backend '{name}'. Choose from: ['jax', 'numpy']"
        raise ValueError(msg)

    _BACKEND_CACHE[name] = backend
    return backend

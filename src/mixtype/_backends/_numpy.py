"""NumPy objective backend.

The objective is the mean negative approximate log-likelihood,
evaluated by :func:`mixtype.likelihood.evaluate_contributions` (joblib
map over observation chunks when ``n_jobs != 1``).

Gradients
~~~~~~~~~
The gradient is a centred finite difference of that same function via
:func:`statsmodels.tools.numdiff.approx_fprime`.  The step for coordinate
k is ``ε^{1/3} · max(|x_k|, 0.1)``.

Infeasible points
~~~~~~~~~~~~~~~~~
When θ lies outside the feasible set of the restriction
(:class:`~mixtype.exceptions.InfeasibleCovarianceError`), the objective
is ``+inf`` and the likelihood is not evaluated.  A difference stencil
that straddles the boundary produces a non-finite gradient, which the
optimiser's line search rejects.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
from statsmodels.tools.numdiff import approx_fprime

from ..exceptions import InfeasibleCovarianceError
from ..likelihood import cholesky_root, evaluate_contributions


def total_loglik(
    data: Any,
    grid: Any,
    param: Any,
    params: np.ndarray,
    *,
    n_jobs: int = 1,
) -> float:
    """Total approximate log-likelihood at ``params = [β, θ]``.

    Returns ``-inf`` at infeasible θ.

    Raises:
        CovarianceFactorizationError: If the implied Σ does not factor.
    """
    params = np.asarray(params, dtype=float)
    beta = params[: data.p]
    theta = params[data.p :]
    try:
        Sigma = param.to_matrix(theta)
    except InfeasibleCovarianceError:
        return -np.inf
    L = cholesky_root(Sigma)
    contributions = evaluate_contributions(data, beta, L, grid, n_jobs=n_jobs)
    total = float(np.sum(contributions))
    return total if not np.isnan(total) else -np.inf


@dataclass(frozen=True)
class NumpyBackend:
    """NumPy / joblib objective backend.

    The class is a frozen dataclass with no instance state; it
    exists solely to namespace :meth:`make_objective` behind the
    :class:`BackendProtocol` interface, and is safe to cache.
    """

    @property
    def name(self) -> str:
        return "numpy"

    @property
    def is_available(self) -> bool:
        return True

    def make_objective(
        self,
        data: Any,
        grid: Any,
        param: Any,
        *,
        n_jobs: int = 1,
        with_gradient: bool = True,
    ) -> Any:
        n = data.n

        def _value(params: np.ndarray) -> float:
            return -total_loglik(data, grid, param, params, n_jobs=n_jobs) / n

        if not with_gradient:
            return _value

        def objective(params: np.ndarray) -> tuple[float, np.ndarray]:
            value = _value(params)
            if not np.isfinite(value):
                return np.inf, np.full(params.shape, np.nan)
            with np.errstate(invalid="ignore"):
                grad = np.atleast_1d(approx_fprime(params, _value, centered=True))
            return value, grad.reshape(params.shape)

        return objective

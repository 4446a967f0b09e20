"""Maximum approximate-likelihood fitting.

:func:`fit` jointly estimates the coefficients β and the free entries
of the latent covariance Σ by minimising the mean negative quadrature
log-likelihood over ``params = [β, θ]`` with
:func:`scipy.optimize.minimize`.  θ is the free-parameter vector of a
:class:`~mixtype.restrictions.CovarianceParameterization`, so every
iterate the optimiser proposes maps to a positive-definite Σ that
satisfies the restriction matrix exactly; points outside the feasible
set evaluate to ``+inf``.

Starting values
~~~~~~~~~~~~~~~
β₀ is the OLS fit of a per-type working response (the identity for
Normal, ``log(y + ½)`` for Poisson, a smoothed logit for Bernoulli) on
the stacked design.  For Σ₀, free Normal variances come from the OLS
residual variance minus the known dispersion (floored at 0.1), other
free variances are 1 and free covariances 0.  If that matrix violates
the restriction, the parameterisation's own feasible start is used.

Convergence
~~~~~~~~~~~
Non-convergence is never an exception.  The best iterate seen is
returned with ``converged=False`` and a statsmodels
``ConvergenceWarning`` is issued.  A BFGS stop on "precision loss" is
accepted as converged when the final gradient is already below
``√tol``: with finite-difference gradients this is the usual way a
well-converged run ends.
"""

from __future__ import annotations

import hashlib
import logging
import warnings
from collections.abc import Callable
from typing import Any

import numpy as np
import statsmodels.api as sm
from scipy import optimize
from statsmodels.tools.numdiff import approx_hess
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from ._backends import resolve_backend
from ._backends._numpy import total_loglik
from ._results import FitResult
from ._typing import ArrayLike, TypesLike
from ._validation import ModelData, prepare_data
from .exceptions import ConfigurationError, NumericalError
from .families import NormalFamily
from .quadrature import QuadratureGrid, build_quadrature_grid
from .restrictions import CovarianceParameterization

logger = logging.getLogger(__name__)

_GRADIENT_METHODS = frozenset({"BFGS", "L-BFGS-B", "CG"})
_DERIVATIVE_FREE_METHODS = frozenset({"Nelder-Mead", "Powell"})

_MIN_START_VARIANCE: float = 0.1
_BFGS_PRECISION_LOSS: int = 2


# ------------------------------------------------------------------ #
# Starting values
# ------------------------------------------------------------------ #


def _moment_start(
    data: ModelData, param: CovarianceParameterization
) -> tuple[np.ndarray, np.ndarray]:
    """OLS coefficients and a moment-based covariance guess."""
    Z = np.column_stack(
        [fam.working_response(data.Y[:, j]) for j, fam in enumerate(data.families)]
    )
    X_stacked = data.X.reshape(data.n * data.r, data.p)
    ols = sm.OLS(Z.reshape(-1), X_stacked).fit()
    beta0 = np.asarray(ols.params, dtype=float)
    resid = np.asarray(ols.resid, dtype=float).reshape(data.n, data.r)

    Sigma0 = np.eye(data.r)
    for j, fam in enumerate(data.families):
        if isinstance(fam, NormalFamily):
            Sigma0[j, j] = max(float(np.var(resid[:, j])) - data.psi[j], _MIN_START_VARIANCE)

    M = param.pattern.to_matrix()
    Sigma0 = np.where(np.isnan(M), Sigma0, M)
    return beta0, Sigma0


def _starting_values(
    data: ModelData,
    param: CovarianceParameterization,
    start: Any,
) -> np.ndarray:
    """Assemble the initial ``[β, θ]`` vector.

    Args:
        start: ``None``, a dict with optional ``"beta"`` / ``"Sigma"``
            keys, or a flat vector of length ``p + n_params``.

    Raises:
        ConfigurationError: If a user-supplied start has the wrong
            shape or lies outside the feasible set.
    """
    p, q = data.p, param.n_params

    if start is not None and not isinstance(start, dict):
        x0 = np.asarray(start, dtype=float).reshape(-1)
        if x0.shape != (p + q,):
            msg = (
                f"start vector must have length p + q = {p + q}, "
                f"got {x0.shape[0]}."
            )
            raise ConfigurationError(msg)
        if not np.all(np.isfinite(x0)):
            msg = "start vector contains non-finite values."
            raise ConfigurationError(msg)
        if not param.is_feasible(x0[p:]):
            msg = "start vector maps to an infeasible covariance matrix."
            raise ConfigurationError(msg)
        return x0

    beta0, Sigma0 = _moment_start(data, param)
    start = start or {}
    unknown = set(start) - {"beta", "Sigma"}
    if unknown:
        msg = f"Unknown start keys {sorted(unknown)}; use 'beta' and/or 'Sigma'."
        raise ConfigurationError(msg)

    if "beta" in start:
        beta0 = np.asarray(start["beta"], dtype=float).reshape(-1)
        if beta0.shape != (p,):
            msg = f"start['beta'] must have length {p}, got {beta0.shape[0]}."
            raise ConfigurationError(msg)

    if "Sigma" in start:
        theta0 = param.from_matrix(start["Sigma"])
        if not param.is_feasible(theta0):
            msg = "start['Sigma'] lies outside the feasible covariance set."
            raise ConfigurationError(msg)
    else:
        theta0 = param.feasible_start(Sigma0)

    logger.debug("Start values: beta=%s theta=%s", beta0, theta0)
    return np.concatenate([beta0, theta0])


# ------------------------------------------------------------------ #
# Optimisation helpers
# ------------------------------------------------------------------ #


class _BestIterate:
    """Wrap an objective and remember the lowest finite value seen."""

    def __init__(self, func: Callable[[np.ndarray], Any], x0: np.ndarray, with_gradient: bool):
        self._func = func
        self._with_gradient = with_gradient
        self.x = np.array(x0, dtype=float)
        self.value = np.inf
        self.n_evals = 0

    def __call__(self, x: np.ndarray) -> Any:
        out = self._func(x)
        value = out[0] if self._with_gradient else out
        self.n_evals += 1
        if np.isfinite(value) and value < self.value:
            self.value = float(value)
            self.x = np.array(x, dtype=float)
        return out


def _optimizer_options(method: str, tol: float, max_iter: int) -> dict[str, Any]:
    if method in _GRADIENT_METHODS:
        return {"maxiter": max_iter, "gtol": tol}
    if method == "Nelder-Mead":
        return {"maxiter": max_iter, "xatol": tol, "fatol": tol}
    return {"maxiter": max_iter, "xtol": tol, "ftol": tol}


def _is_converged(res: optimize.OptimizeResult, method: str, tol: float) -> bool:
    if res.success:
        return True
    if method == "BFGS" and res.status == _BFGS_PRECISION_LOSS:
        jac = np.asarray(getattr(res, "jac", np.nan), dtype=float)
        return bool(np.all(np.isfinite(jac)) and np.max(np.abs(jac)) < np.sqrt(tol))
    return False


def _standard_errors(
    data: ModelData,
    grid: QuadratureGrid,
    param: CovarianceParameterization,
    x: np.ndarray,
    n_jobs: int,
) -> np.ndarray:
    """β standard errors from the inverse observed information.

    Returns ``nan`` (with a warning) when the numerical Hessian is not
    negative-definite at *x*.
    """

    def _loglik(params: np.ndarray) -> float:
        return total_loglik(data, grid, param, params, n_jobs=n_jobs)

    with np.errstate(invalid="ignore", over="ignore"):
        H = approx_hess(x, _loglik)
    info = -0.5 * (H + H.T)
    if np.all(np.isfinite(info)):
        try:
            np.linalg.cholesky(info)
        except np.linalg.LinAlgError as exc:
            logger.debug("Observed information is not positive-definite: %s", exc)
        else:
            cov = np.linalg.inv(info)
            return np.sqrt(np.diag(cov)[: data.p])
    warnings.warn(
        "The numerical Hessian of the log-likelihood is not negative-definite "
        "at the estimate; standard errors are unavailable.",
        UserWarning,
        stacklevel=3,
    )
    return np.full(data.p, np.nan)


def _data_hash(data: ModelData) -> str:
    digest = hashlib.sha256()
    digest.update(np.ascontiguousarray(data.Y).tobytes())
    digest.update(np.ascontiguousarray(data.X).tobytes())
    return digest.hexdigest()


# ------------------------------------------------------------------ #
# Public entry point
# ------------------------------------------------------------------ #


def fit(
    Y: ArrayLike,
    X: ArrayLike,
    types: TypesLike,
    psi: Any = None,
    M: Any = None,
    num_nodes: int = 10,
    start: Any = None,
    tol: float = 1e-6,
    max_iter: int = 500,
    method: str = "BFGS",
    n_jobs: int = 1,
    backend: str | None = None,
    compute_se: bool = True,
) -> FitResult:
    """Fit the mixed-type latent Gaussian regression model.

    Args:
        Y: Responses ``(n, r)``.  NumPy, pandas or polars.
        X: Stacked design ``(n·r, p)`` whose rows ``[i·r, (i+1)·r)``
            form ``X_i``, or an ``(n, r, p)`` array.
        types: Length-r response type labels (``"normal"``,
            ``"bernoulli"``, ``"poisson"``).
        psi: Length-r known dispersions; ``None`` means all ones.
        M: Optional r×r restriction matrix (``nan`` marks free
            entries).  Defaults to fixing every Bernoulli variance at 1.
        num_nodes: Gauss–Hermite nodes per latent dimension.
        start: ``None``, a dict with ``"beta"`` and/or ``"Sigma"``, or
            a flat ``[β, θ]`` vector.
        tol: Convergence tolerance passed to the optimiser (``gtol`` for
            gradient methods).  A BFGS stop on precision loss still
            counts as converged when the largest gradient component of
            the mean objective is below ``√tol``, a looser bound than
            ``gtol``.
        max_iter: Optimiser iteration cap.
        method: ``"BFGS"`` (default), ``"L-BFGS-B"``, ``"CG"``,
            ``"Nelder-Mead"`` or ``"Powell"``.
        n_jobs: joblib workers for the likelihood map (NumPy backend).
        backend: ``"numpy"``, ``"jax"`` or ``None`` for the configured
            default.
        compute_se: Whether to compute β standard errors from the
            numerical Hessian.

    Returns:
        :class:`~mixtype.FitResult`.

    Raises:
        ConfigurationError: On inconsistent inputs or an infeasible
            restriction matrix.
        NumericalError: If the objective is not finite at the start.
    """
    if not isinstance(num_nodes, (int, np.integer)) or num_nodes < 1:
        msg = f"num_nodes must be a positive integer, got {num_nodes!r}."
        raise ConfigurationError(msg)
    if not tol > 0:
        msg = f"tol must be positive, got {tol}."
        raise ConfigurationError(msg)
    if not isinstance(max_iter, (int, np.integer)) or max_iter < 1:
        msg = f"max_iter must be a positive integer, got {max_iter!r}."
        raise ConfigurationError(msg)
    if method not in _GRADIENT_METHODS | _DERIVATIVE_FREE_METHODS:
        supported = sorted(_GRADIENT_METHODS | _DERIVATIVE_FREE_METHODS)
        msg = f"Unknown optimisation method '{method}'. Choose from: {supported}"
        raise ValueError(msg)

    data = prepare_data(Y, X, types, psi)
    param = CovarianceParameterization.from_restriction(M, types=data.families)
    grid = build_quadrature_grid(data.r, int(num_nodes))
    x0 = _starting_values(data, param, start)

    be = resolve_backend(backend)
    with_gradient = method in _GRADIENT_METHODS
    objective = be.make_objective(
        data, grid, param, n_jobs=n_jobs, with_gradient=with_gradient
    )
    tracked = _BestIterate(objective, x0, with_gradient)

    f0 = tracked(x0)
    if not np.isfinite(f0[0] if with_gradient else f0):
        msg = (
            "The approximate log-likelihood is not finite at the starting "
            "values; supply different start values."
        )
        raise NumericalError(msg)

    logger.debug(
        "Fitting n=%d r=%d p=%d q=%d with %s on the %s backend (%d nodes).",
        data.n,
        data.r,
        data.p,
        param.n_params,
        method,
        be.name,
        grid.size,
    )
    with np.errstate(invalid="ignore", over="ignore"):
        res = optimize.minimize(
            tracked,
            x0,
            method=method,
            jac=True if with_gradient else None,
            options=_optimizer_options(method, tol, int(max_iter)),
        )

    converged = _is_converged(res, method, tol)
    x_hat = np.asarray(res.x, dtype=float)
    if not (np.isfinite(res.fun) and res.fun <= tracked.value):
        x_hat = tracked.x
    n_iter = int(getattr(res, "nit", 0))
    message = str(res.message)
    logger.debug(
        "Optimiser finished: converged=%s nit=%d nfev=%d message=%s",
        converged,
        n_iter,
        tracked.n_evals,
        message,
    )
    if not converged:
        warnings.warn(
            f"Optimiser did not converge after {n_iter} iterations "
            f"({message}); returning the best iterate.",
            ConvergenceWarning,
            stacklevel=2,
        )

    beta = x_hat[: data.p].copy()
    theta = x_hat[data.p :].copy()
    Sigma = param.to_matrix(theta)
    loglik = total_loglik(data, grid, param, x_hat, n_jobs=n_jobs)

    if compute_se:
        beta_se = _standard_errors(data, grid, param, x_hat, n_jobs)
    else:
        beta_se = np.full(data.p, np.nan)

    k = data.p + param.n_params
    return FitResult(
        beta=beta,
        Sigma=Sigma,
        loglik=float(loglik),
        converged=converged,
        n_iter=n_iter,
        message=message,
        theta=theta,
        restriction=param.pattern.to_matrix(),
        free_mask=param.pattern.free_mask,
        n_free_cov=param.n_params,
        n_params=k,
        types=data.type_names,
        psi=data.psi.copy(),
        num_nodes=int(num_nodes),
        n_obs=data.n,
        data_hash=_data_hash(data),
        backend=be.name,
        beta_se=beta_se,
        aic=float(-2.0 * loglik + 2.0 * k),
        bic=float(-2.0 * loglik + k * np.log(data.n)),
    )

"""Approximate likelihood-ratio test between nested covariance restrictions.

Given a *null* fit whose restriction matrix fixes every entry the
*full* fit fixes (at the same value) plus some more, the statistic

    LR = 2 (ℓ_full − ℓ_null)

is referred to a χ² distribution with ``df = q_full − q_null`` degrees
of freedom, where q counts free covariance parameters.  The reference
distribution is asymptotic and assumes both fits reached comparable
optima of the same quadrature-approximated likelihood.

Validity checks
~~~~~~~~~~~~~~~
* Both fits must describe the same data and model: identical response
  types, dispersions, number of observations, coefficient dimension,
  quadrature size and data digest.
* The restriction patterns must be nested and ``df > 0``.
* A negative statistic beyond ``tol · max(1, |ℓ_full|)`` means one fit
  stopped short of its optimum (or the models are not nested) and is
  an :class:`~mixtype.exceptions.InvalidTestError`.  Smaller negative
  values are optimiser noise and are clipped to 0.
* Non-converged inputs do not raise; they produce a ``UserWarning``
  and ``both_converged=False``.
"""

from __future__ import annotations

import logging
import warnings

import numpy as np
from scipy import stats

from ._results import FitResult, LikelihoodRatioResult
from .exceptions import InvalidTestError
from .restrictions import RestrictionPattern

logger = logging.getLogger(__name__)


def _check_same_model(fit_null: FitResult, fit_full: FitResult) -> None:
    if tuple(fit_null.types) != tuple(fit_full.types):
        msg = (
            f"Fits have different response types: {tuple(fit_null.types)} "
            f"vs {tuple(fit_full.types)}."
        )
        raise InvalidTestError(msg)
    if not np.array_equal(np.asarray(fit_null.psi), np.asarray(fit_full.psi)):
        msg = "Fits were made with different dispersions psi."
        raise InvalidTestError(msg)
    if fit_null.n_obs != fit_full.n_obs:
        msg = (
            f"Fits use different numbers of observations "
            f"({fit_null.n_obs} vs {fit_full.n_obs})."
        )
        raise InvalidTestError(msg)
    if np.shape(fit_null.beta) != np.shape(fit_full.beta):
        msg = "Fits have different coefficient dimensions."
        raise InvalidTestError(msg)
    if fit_null.num_nodes != fit_full.num_nodes:
        msg = (
            "Fits use different quadrature sizes "
            f"({fit_null.num_nodes} vs {fit_full.num_nodes} nodes); their "
            "approximate log-likelihoods are not comparable."
        )
        raise InvalidTestError(msg)
    if fit_null.data_hash != fit_full.data_hash:
        msg = "Fits were made on different data."
        raise InvalidTestError(msg)


def likelihood_ratio_test(
    fit_null: FitResult,
    fit_full: FitResult,
    tol: float = 1e-6,
) -> LikelihoodRatioResult:
    """Compare two nested fits by an approximate likelihood-ratio test.

    Args:
        fit_null: Fit under the more restrictive restriction matrix.
        fit_full: Fit under the less restrictive restriction matrix.
        tol: Relative tolerance below zero within which a negative
            statistic is treated as optimiser noise.

    Returns:
        :class:`~mixtype.LikelihoodRatioResult` with ``statistic``,
        ``df`` and ``p_value``.

    Raises:
        InvalidTestError: If the fits are not comparable, not nested,
            have ``df <= 0``, or give a clearly negative statistic.
    """
    _check_same_model(fit_null, fit_full)

    pattern_null = RestrictionPattern.from_matrix(fit_null.restriction)
    pattern_full = RestrictionPattern.from_matrix(fit_full.restriction)
    if not pattern_null.contains(pattern_full):
        msg = (
            "Restriction matrices are not nested: the null fit must fix every "
            "covariance entry the full fit fixes, at the same value."
        )
        raise InvalidTestError(msg)

    df = int(fit_full.n_free_cov) - int(fit_null.n_free_cov)
    if df <= 0:
        msg = (
            f"The full fit must have more free covariance parameters than the "
            f"null fit (got {fit_full.n_free_cov} vs {fit_null.n_free_cov})."
        )
        raise InvalidTestError(msg)

    both_converged = bool(fit_null.converged and fit_full.converged)
    if not both_converged:
        warnings.warn(
            "At least one fit did not converge; the chi-square reference "
            "distribution of the likelihood-ratio statistic is unreliable.",
            UserWarning,
            stacklevel=2,
        )

    statistic = 2.0 * (float(fit_full.loglik) - float(fit_null.loglik))
    if statistic < 0:
        threshold = tol * max(1.0, abs(float(fit_full.loglik)))
        if statistic < -threshold:
            msg = (
                f"Likelihood-ratio statistic is negative ({statistic:.6g}): the "
                "full fit attains a lower log-likelihood than the nested null "
                "fit, so at least one optimisation stopped short. Refit with "
                "other start values."
            )
            raise InvalidTestError(msg)
        logger.debug("Clipping negative LR statistic %.3g to 0.", statistic)
        statistic = 0.0

    p_value = float(stats.chi2.sf(statistic, df))
    logger.debug("LR test: statistic=%.6g df=%d p=%.4g", statistic, df, p_value)
    return LikelihoodRatioResult(
        statistic=statistic,
        df=df,
        p_value=p_value,
        loglik_null=float(fit_null.loglik),
        loglik_full=float(fit_full.loglik),
        both_converged=both_converged,
    )

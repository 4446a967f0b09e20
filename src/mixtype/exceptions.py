"""Exception hierarchy for mixtype.

Three families of failure are distinguished:

* **Configuration errors** — inputs that can never produce a valid fit
  (mismatched shapes, inconsistent restriction matrices, responses
  outside their declared support).  Raised before any computation.
  These subclass :class:`ValueError` so that callers catching the
  builtin continue to work.
* **Numerical errors** — failures inside the likelihood machinery that
  cannot be recovered locally, e.g. a covariance matrix that does not
  factor.  These subclass :class:`RuntimeError`.
* **Test-validity errors** — a likelihood-ratio comparison between two
  fits that are not nested, or whose statistic is negative beyond
  optimiser noise.

Optimiser non-convergence is *not* an exception: it is reported through
``FitResult.converged`` and a ``ConvergenceWarning``.
"""

from __future__ import annotations

__all__ = [
    "MixtypeError",
    "ConfigurationError",
    "ResponseDomainError",
    "InfeasibleRestrictionError",
    "NumericalError",
    "CovarianceFactorizationError",
    "InfeasibleCovarianceError",
    "InvalidTestError",
]


class MixtypeError(Exception):
    """Base exception for all mixtype errors."""


class ConfigurationError(MixtypeError, ValueError):
    """Invalid model configuration detected before fitting.

    Common causes:
    - Y, X, types and psi disagree on n, r or p
    - Asymmetric restriction matrix
    - Non-positive dispersion, or dispersion != 1 for a Bernoulli
      coordinate
    """


class ResponseDomainError(ConfigurationError):
    """A response value lies outside the support of its declared type.

    Examples: a value other than 0/1 under ``"bernoulli"``, or a
    negative / fractional count under ``"poisson"``.
    """


class InfeasibleRestrictionError(ConfigurationError):
    """The fixed entries of a restriction matrix cannot be completed to
    a positive-definite covariance matrix."""


class NumericalError(MixtypeError, RuntimeError):
    """Unrecoverable numerical failure during likelihood evaluation."""


class CovarianceFactorizationError(NumericalError):
    """A candidate covariance matrix failed its Cholesky factorisation."""


class InfeasibleCovarianceError(NumericalError):
    """A parameter vector maps outside the feasible covariance set.

    Raised by :meth:`CovarianceParameterization.to_matrix` when the
    fixed entries of a row use up all of its variance.  The optimiser
    treats such points as having infinite objective.
    """


class InvalidTestError(MixtypeError, ValueError):
    """A likelihood-ratio test was requested on an invalid pair of fits."""

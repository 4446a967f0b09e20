"""mixtype — Regression for mixed-type multivariate responses.

Fits Normal, Bernoulli and (quasi-)Poisson response coordinates that
share a latent Gaussian vector ``w_i ~ N(X_i β, Σ)``.  The marginal
likelihood is approximated by tensor-product Gauss–Hermite quadrature,
β and the free entries of Σ are estimated jointly under user-supplied
equality restrictions on Σ, and nested restrictions are compared with
an approximate likelihood-ratio test.

Public API:
    .. autosummary::
        fit
        likelihood_ratio_test
        predict_moments
        simulate_responses
        marginal_loglik_contributions
        build_quadrature_grid
        log_conditional_density
        print_fit_table
        print_lrt_table
        get_backend
        set_backend
        QuadratureGrid
        ResponseFamily
        NormalFamily
        BernoulliFamily
        PoissonFamily
        resolve_family
        RestrictionPattern
        CovarianceParameterization
        Fixed
        Free
        default_restriction
        FitResult
        LikelihoodRatioResult
"""

from ._config import get_backend, set_backend
from ._results import FitResult, LikelihoodRatioResult
from .display import print_fit_table, print_lrt_table
from .exceptions import (
    ConfigurationError,
    CovarianceFactorizationError,
    InfeasibleCovarianceError,
    InfeasibleRestrictionError,
    InvalidTestError,
    MixtypeError,
    NumericalError,
    ResponseDomainError,
)
from .families import (
    BernoulliFamily,
    NormalFamily,
    PoissonFamily,
    ResponseFamily,
    log_conditional_density,
    resolve_family,
)
from .fitting import fit
from .likelihood import marginal_loglik_contributions
from .lrt import likelihood_ratio_test
from .moments import predict_moments
from .quadrature import QuadratureGrid, build_quadrature_grid
from .restrictions import (
    CovarianceParameterization,
    Fixed,
    Free,
    RestrictionPattern,
    default_restriction,
)
from .simulation import simulate_responses

__version__ = "0.1.0"

__all__ = [
    "FitResult",
    "LikelihoodRatioResult",
    "fit",
    "likelihood_ratio_test",
    "predict_moments",
    "simulate_responses",
    "marginal_loglik_contributions",
    "build_quadrature_grid",
    "QuadratureGrid",
    "log_conditional_density",
    "ResponseFamily",
    "NormalFamily",
    "BernoulliFamily",
    "PoissonFamily",
    "resolve_family",
    "RestrictionPattern",
    "CovarianceParameterization",
    "Fixed",
    "Free",
    "default_restriction",
    "print_fit_table",
    "print_lrt_table",
    "get_backend",
    "set_backend",
    "MixtypeError",
    "ConfigurationError",
    "ResponseDomainError",
    "InfeasibleRestrictionError",
    "NumericalError",
    "CovarianceFactorizationError",
    "InfeasibleCovarianceError",
    "InvalidTestError",
]

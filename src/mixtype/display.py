"""Formatted ASCII table display for fits and likelihood-ratio tests.

The tables mirror the statsmodels summary style: a header panel with
model information, a coefficient panel, the estimated latent
covariance with fixed entries marked, and a notes panel for anything
that should make the reader distrust the numbers (non-convergence,
missing standard errors, quasi-likelihood dispersions).
"""

from __future__ import annotations

import textwrap

import numpy as np
from scipy import stats as _sp_stats

from ._results import FitResult, LikelihoodRatioResult


def _wrap(text: str, width: int = 80, indent: int = 2) -> str:
    """Word-wrap *text* to *width*, indenting continuation lines."""
    return textwrap.fill(
        text,
        width=width,
        initial_indent="",
        subsequent_indent=" " * indent,
    )


def _fmt(val: float, spec: str = ".4f") -> str:
    """Format a float, showing ``N/A`` for nan."""
    if val is None or not np.isfinite(val):
        return "N/A"
    return format(val, spec)


def _print_title(title: str) -> None:
    print("=" * 80)
    for line in textwrap.wrap(title, width=78):
        print(f"{line:^80}")
    print("=" * 80)


def _print_notes(notes: list[str]) -> None:
    if not notes:
        return
    print("-" * 80)
    print("Notes")
    print("-" * 80)
    for note in notes:
        print(_wrap(f"  [!] {note}", width=80, indent=6))


def print_fit_table(
    result: FitResult,
    *,
    title: str = "Mixed-Type Latent Gaussian Regression",
    coef_names: list[str] | None = None,
) -> None:
    """Print a fitted model in a formatted ASCII table.

    Args:
        result: Result returned by :func:`~mixtype.fit`.
        title: Title for the output table.
        coef_names: Optional labels for β; defaults to ``beta[0]``,
            ``beta[1]``, ...
    """
    col1 = 40
    col2 = 38
    beta = np.asarray(result.beta)
    se = np.asarray(result.beta_se)
    Sigma = np.asarray(result.Sigma)
    free = np.asarray(result.free_mask)
    r = Sigma.shape[0]
    if coef_names is None:
        coef_names = [f"beta[{k}]" for k in range(beta.shape[0])]

    _print_title(title)
    types_str = ", ".join(result.types)
    print(
        f"{'Types:':<16}{types_str[: col1 - 17]:<{col1 - 16}}"
        f"{'No. Observations:':>{col2 - 11}} {result.n_obs:>10}"
    )
    print(
        f"{'Backend:':<16}{result.backend:<{col1 - 16}}"
        f"{'Log-Likelihood:':>{col2 - 11}} {_fmt(result.loglik, '.3f'):>10}"
    )
    print(
        f"{'Nodes/Dim:':<16}{result.num_nodes:<{col1 - 16}}"
        f"{'AIC:':>{col2 - 11}} {_fmt(result.aic, '.3f'):>10}"
    )
    print(
        f"{'Converged:':<16}{str(result.converged):<{col1 - 16}}"
        f"{'BIC:':>{col2 - 11}} {_fmt(result.bic, '.3f'):>10}"
    )
    print(
        f"{'Iterations:':<16}{result.n_iter:<{col1 - 16}}"
        f"{'Free Cov. Params:':>{col2 - 11}} {result.n_free_cov:>10}"
    )
    print("-" * 80)

    # Coefficient panel: 22 + 12 + 12 + 12 + 22 = 80
    fc = 22
    print(f"{'Coefficient':<{fc}}{'Estimate':>12}{'Std. Err.':>12}{'z':>12}{'P>|z|':>22}")
    print("-" * 80)
    for k, name in enumerate(coef_names):
        z = beta[k] / se[k] if np.isfinite(se[k]) and se[k] > 0 else np.nan
        p = 2.0 * _sp_stats.norm.sf(abs(z)) if np.isfinite(z) else np.nan
        label = name if len(name) <= fc else name[: fc - 3] + "..."
        print(
            f"{label:<{fc}}{_fmt(beta[k]):>12}{_fmt(se[k]):>12}"
            f"{_fmt(z, '.3f'):>12}{_fmt(p, '.4f'):>22}"
        )

    print("-" * 80)
    print("Latent Covariance (* = fixed)")
    print("-" * 80)
    header = "".join(f"{f'[{j}]':>12}" for j in range(r))
    print(f"{'':<{fc}}{header}")
    for i in range(r):
        cells = "".join(
            f"{_fmt(Sigma[i, j]) + ('' if free[i, j] else '*'):>12}" for j in range(r)
        )
        row_label = f"[{i}] {result.types[i]}"
        print(f"{row_label:<{fc}}{cells}")

    notes: list[str] = []
    if not result.converged:
        notes.append(
            f"The optimiser did not converge ({result.message}); estimates are "
            "the best iterate found."
        )
    if not np.all(np.isfinite(se)):
        notes.append("Standard errors are unavailable.")
    for j, t in enumerate(result.types):
        if t == "poisson" and result.psi[j] != 1.0:
            notes.append(
                f"Coordinate {j} uses a quasi-Poisson dispersion "
                f"({result.psi[j]:g}); the log-likelihood is a quasi-likelihood."
            )
    _print_notes(notes)
    print("=" * 80)
    print()


def print_lrt_table(
    result: LikelihoodRatioResult,
    *,
    title: str = "Approximate Likelihood-Ratio Test",
) -> None:
    """Print a likelihood-ratio test in a formatted ASCII table.

    Args:
        result: Result returned by :func:`~mixtype.likelihood_ratio_test`.
        title: Title for the output table.
    """
    _print_title(title)
    print(f"{'Log-Likelihood (null):':<30} {result.loglik_null:>12.4f}")
    print(f"{'Log-Likelihood (full):':<30} {result.loglik_full:>12.4f}")
    print("-" * 80)
    print(f"{'LR Statistic:':<30} {result.statistic:>12.4f}")
    print(f"{'Degrees of Freedom:':<30} {result.df:>12d}")
    print(f"{'p-Value (chi-square):':<30} {result.p_value:>12.4g}")
    if not result.both_converged:
        _print_notes(
            [
                "At least one fit did not converge; the chi-square reference "
                "distribution is unreliable."
            ]
        )
    print("=" * 80)
    print()

"""Covariance restrictions and the constrained covariance parameterisation.

A restriction matrix ``M`` is an r×r symmetric array whose entries are
either a number (the corresponding entry of Σ is fixed at that value)
or ``nan`` (free).  It is decomposed once into a table of tagged
entries (:class:`Fixed` or :class:`Free`) held by a
:class:`RestrictionPattern`.  The optimiser only ever sees the vector θ
of free parameters; :class:`CovarianceParameterization` maps θ to a
covariance matrix that honours every fixed entry exactly.

Parameterisation
~~~~~~~~~~~~~~~~
Coordinates are reordered so that those with a fixed variance come
first (stable within each group).  A lower-triangular factor ``L`` of
the reordered matrix is then filled row by row:

* **Free-variance row** ``a``: a free off-diagonal entry ``L[a, b]`` is
  θ directly, a fixed one is solved for exactly from
  ``Σ_ab = L[a, :b] · L[b, :b] + L[a, b] L[b, b]``, and the diagonal is
  ``exp(θ)``.  This reduces to the log-Cholesky parameterisation when
  nothing is fixed.
* **Fixed-variance row** with ``Σ_aa = v``: the row is ``√v · u`` for a
  unit vector ``u``.  Free coordinates of ``u`` are
  ``√m · tanh(θ)`` where ``m`` is the squared norm still available;
  fixed coordinates are solved for; the diagonal takes whatever mass is
  left, ``u_a = √m``.

Every θ therefore yields a positive-definite Σ unless the *fixed*
entries alone exhaust a row's mass.  Such points raise
:class:`InfeasibleCovarianceError`; the optimiser treats them as having
infinite objective and never evaluates the likelihood there.

The free index of each entry follows the upper triangle of the
*original* coordinates in row-major order, so θ does not depend on the
internal reordering.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np
from scipy import optimize
from typing_extensions import Self

from .exceptions import (
    ConfigurationError,
    CovarianceFactorizationError,
    InfeasibleCovarianceError,
    InfeasibleRestrictionError,
)
from .families import BernoulliFamily, resolve_families

logger = logging.getLogger(__name__)

_SYMMETRY_TOL: float = 1e-10
_ARCTANH_CLIP: float = 1.0 - 1e-12


# ------------------------------------------------------------------ #
# Tagged entries
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class Fixed:
    """A covariance entry held at a known value."""

    value: float


@dataclass(frozen=True)
class Free:
    """A covariance entry estimated as θ[index]."""

    index: int


Entry = Fixed | Free


def default_restriction(types: Any) -> np.ndarray:
    """Restriction matrix fixing ``Σ_jj = 1`` for Bernoulli coordinates.

    All other entries are free (``nan``).
    """
    families = resolve_families(types)
    r = len(families)
    M = np.full((r, r), np.nan)
    for j, fam in enumerate(families):
        if isinstance(fam, BernoulliFamily):
            M[j, j] = 1.0
    return M


# ------------------------------------------------------------------ #
# RestrictionPattern
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class RestrictionPattern:
    """Tagged decomposition of a symmetric restriction matrix.

    Attributes:
        dim: Dimension r.
        entries: Symmetric r×r table; ``entries[i][j]`` and
            ``entries[j][i]`` are the same object.
        n_free: Number of free upper-triangular entries (length of θ).
    """

    dim: int
    entries: tuple[tuple[Entry, ...], ...]
    n_free: int

    @classmethod
    def from_matrix(
        cls,
        M: Any,
        types: Any = None,
    ) -> Self:
        """Validate *M* and build the tagged pattern.

        Args:
            M: r×r array with ``nan`` marking free entries.
            types: Optional response types.  When given, every
                Bernoulli coordinate must have its variance fixed at 1.

        Raises:
            ConfigurationError: If *M* is not square, is asymmetric,
                contains infinities, or leaves a Bernoulli variance
                free or fixed at a value other than 1.
            InfeasibleRestrictionError: If the fixed entries cannot be
                part of a positive-definite matrix.
        """
        M = np.asarray(M, dtype=float)
        if M.ndim != 2 or M.shape[0] != M.shape[1]:
            msg = f"Restriction matrix must be square, got shape {M.shape}."
            raise ConfigurationError(msg)
        r = M.shape[0]
        if r < 1:
            msg = "Restriction matrix must have at least one row."
            raise ConfigurationError(msg)
        if np.any(np.isinf(M)):
            msg = "Restriction matrix may contain numbers or nan, not inf."
            raise ConfigurationError(msg)

        free = np.isnan(M)
        if not np.array_equal(free, free.T):
            i, j = np.argwhere(free != free.T)[0]
            msg = (
                f"Restriction matrix is asymmetric: entry ({i}, {j}) is "
                f"{'free' if free[i, j] else 'fixed'} but ({j}, {i}) is "
                f"{'free' if free[j, i] else 'fixed'}."
            )
            raise ConfigurationError(msg)
        values = np.where(free, 0.0, M)
        scale = np.maximum(1.0, np.abs(values))
        mismatch = np.abs(values - values.T) > _SYMMETRY_TOL * scale
        if np.any(mismatch):
            i, j = np.argwhere(mismatch)[0]
            msg = (
                f"Restriction matrix is asymmetric: M[{i}, {j}] = {M[i, j]} "
                f"but M[{j}, {i}] = {M[j, i]}."
            )
            raise ConfigurationError(msg)

        if types is not None:
            families = resolve_families(types)
            if len(families) != r:
                msg = (
                    f"Restriction matrix is {r}x{r} but {len(families)} "
                    "response types were given."
                )
                raise ConfigurationError(msg)
            for j, fam in enumerate(families):
                if isinstance(fam, BernoulliFamily) and (free[j, j] or M[j, j] != 1.0):
                    msg = (
                        f"Coordinate {j} is Bernoulli, so its latent variance "
                        f"must be fixed at 1 in the restriction matrix "
                        f"(got {M[j, j]})."
                    )
                    raise ConfigurationError(msg)

        for j in range(r):
            if not free[j, j] and M[j, j] <= 0:
                msg = f"Fixed variance M[{j}, {j}] = {M[j, j]} must be positive."
                raise InfeasibleRestrictionError(msg)

        _check_fixed_blocks(M, free)

        table: list[list[Entry | None]] = [[None] * r for _ in range(r)]
        n_free = 0
        for i in range(r):
            for j in range(i, r):
                entry: Entry
                if free[i, j]:
                    entry = Free(n_free)
                    n_free += 1
                else:
                    entry = Fixed(float(M[i, j]))
                table[i][j] = entry
                table[j][i] = entry
        entries = tuple(tuple(row) for row in table)  # type: ignore[arg-type]
        return cls(dim=r, entries=entries, n_free=n_free)

    @classmethod
    def default(cls, types: Any) -> Self:
        """Pattern fixing only the Bernoulli variances at 1."""
        return cls.from_matrix(default_restriction(types), types=types)

    def to_matrix(self) -> np.ndarray:
        """Return the restriction matrix with ``nan`` for free entries."""
        M = np.full((self.dim, self.dim), np.nan)
        for i in range(self.dim):
            for j in range(self.dim):
                e = self.entries[i][j]
                if isinstance(e, Fixed):
                    M[i, j] = e.value
        return M

    @property
    def free_mask(self) -> np.ndarray:
        """Boolean r×r mask, ``True`` where Σ is estimated."""
        return np.isnan(self.to_matrix())

    def contains(self, other: RestrictionPattern, atol: float = 1e-10) -> bool:
        """Whether this pattern fixes every entry *other* fixes, at the same value.

        ``null.contains(full)`` is the nesting condition for a
        likelihood-ratio test of *null* against *full*.
        """
        if self.dim != other.dim:
            return False
        for i in range(self.dim):
            for j in range(i, self.dim):
                theirs = other.entries[i][j]
                if isinstance(theirs, Fixed):
                    mine = self.entries[i][j]
                    if not isinstance(mine, Fixed):
                        return False
                    if abs(mine.value - theirs.value) > atol:
                        return False
        return True


def _check_fixed_blocks(M: np.ndarray, free: np.ndarray) -> None:
    """Necessary feasibility checks on the fixed entries.

    * Every pair (i, j) with both variances and the covariance fixed
      must satisfy ``|Σ_ij| < √(Σ_ii Σ_jj)``.
    * If all entries among the fixed-variance coordinates are fixed,
      that block must be positive-definite.
    """
    fixed_diag = np.flatnonzero(~np.diag(free))
    for a, i in enumerate(fixed_diag):
        for j in fixed_diag[a + 1 :]:
            if not free[i, j] and abs(M[i, j]) >= np.sqrt(M[i, i] * M[j, j]):
                msg = (
                    f"Fixed covariance M[{i}, {j}] = {M[i, j]} is not smaller "
                    f"in magnitude than sqrt(M[{i}, {i}] * M[{j}, {j}]); no "
                    "positive-definite covariance satisfies the restrictions."
                )
                raise InfeasibleRestrictionError(msg)
    if fixed_diag.size > 2:
        block_free = free[np.ix_(fixed_diag, fixed_diag)]
        if not block_free.any():
            block = M[np.ix_(fixed_diag, fixed_diag)]
            if np.linalg.eigvalsh(block).min() <= 0:
                msg = (
                    "The fully fixed block of the restriction matrix over "
                    f"coordinates {fixed_diag.tolist()} is not positive-definite."
                )
                raise InfeasibleRestrictionError(msg)


# ------------------------------------------------------------------ #
# CovarianceParameterization
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class CovarianceParameterization:
    """Map between free parameters θ and a restricted covariance Σ.

    Construct with :meth:`from_pattern`; :meth:`to_matrix` and
    :meth:`from_matrix` are mutually inverse on the feasible set.

    Attributes:
        pattern: The tagged restriction pattern.
        order: Processing order, fixed-variance coordinates first.
    """

    pattern: RestrictionPattern
    order: tuple[int, ...]

    @classmethod
    def from_pattern(cls, pattern: RestrictionPattern) -> Self:
        fixed_first = [
            i for i in range(pattern.dim) if isinstance(pattern.entries[i][i], Fixed)
        ]
        free_after = [i for i in range(pattern.dim) if i not in fixed_first]
        return cls(pattern=pattern, order=tuple(fixed_first + free_after))

    @classmethod
    def from_restriction(cls, M: Any = None, types: Any = None) -> Self:
        """Build from a restriction matrix, or the default when *M* is None."""
        if M is None:
            if types is None:
                msg = "Either a restriction matrix or response types is required."
                raise ConfigurationError(msg)
            pattern = RestrictionPattern.default(types)
        else:
            pattern = RestrictionPattern.from_matrix(M, types=types)
        return cls.from_pattern(pattern)

    @property
    def dim(self) -> int:
        return self.pattern.dim

    @property
    def n_params(self) -> int:
        """Length of θ."""
        return self.pattern.n_free

    # ---- θ → L -------------------------------------------------------

    def cholesky_factor(self, theta: Any, xp: Any = np) -> tuple[Any, Any]:
        """Fill the lower factor of the *reordered* covariance.

        Works for ``xp=numpy`` and ``xp=jax.numpy``.  With NumPy an
        infeasible θ raises immediately; with JAX (which cannot branch
        on traced values) the caller must check the returned mass.

        Returns:
            ``(L, min_mass)`` where ``min_mass`` is the smallest
            remaining diagonal mass over fixed-variance rows (``1.0``
            when there are none).  θ is feasible iff ``min_mass > 0``.
        """
        strict = xp is np
        entries = self.pattern.entries
        order = self.order
        r = self.dim
        rows: list[list[Any]] = []
        masses: list[Any] = []

        for a in range(r):
            i = order[a]
            diag = entries[i][i]
            row: list[Any] = []
            if isinstance(diag, Fixed):
                scale = float(np.sqrt(diag.value))
                mass: Any = 1.0
                for b in range(a):
                    e = entries[i][order[b]]
                    if isinstance(e, Fixed):
                        dot = sum((row[c] * rows[b][c] for c in range(b)), 0.0)
                        u = (e.value / scale - dot) / rows[b][b]
                    else:
                        u = xp.sqrt(xp.maximum(mass, 0.0)) * xp.tanh(theta[e.index])
                    mass = mass - u * u
                    if strict and not mass > 0:
                        msg = (
                            f"Fixed entries exhaust the variance of coordinate {i} "
                            "at this parameter value."
                        )
                        raise InfeasibleCovarianceError(msg)
                    row.append(u)
                masses.append(mass)
                row.append(xp.sqrt(xp.maximum(mass, 0.0)))
                row = [scale * u for u in row]
            else:
                for b in range(a):
                    e = entries[i][order[b]]
                    if isinstance(e, Fixed):
                        dot = sum((row[c] * rows[b][c] for c in range(b)), 0.0)
                        row.append((e.value - dot) / rows[b][b])
                    else:
                        row.append(theta[e.index])
                row.append(xp.exp(theta[diag.index]))
            rows.append(row + [0.0] * (r - a - 1))

        L = xp.stack(
            [xp.stack([xp.asarray(x, dtype=xp.float64) for x in row]) for row in rows]
        )
        if masses:
            min_mass = xp.min(xp.stack([xp.asarray(m, dtype=xp.float64) for m in masses]))
        else:
            min_mass = xp.asarray(1.0, dtype=xp.float64)
        return L, min_mass

    def _restore_order(self, S_perm: Any, xp: Any = np) -> Any:
        inverse = np.argsort(np.asarray(self.order))
        return S_perm[inverse][:, inverse]

    def _fixed_arrays(self) -> tuple[np.ndarray, np.ndarray]:
        M = self.pattern.to_matrix()
        fixed = ~np.isnan(M)
        return fixed, np.where(fixed, M, 0.0)

    def to_matrix(self, theta: Any, xp: Any = np) -> Any:
        """Covariance matrix for parameter vector *theta*.

        Fixed entries are written back exactly after the product
        ``L Lᵀ`` so that e.g. a zero restriction is returned as an
        exact zero.

        Raises:
            InfeasibleCovarianceError: (NumPy only) if the fixed
                entries exhaust a row's variance at *theta*.
        """
        if xp is np:
            theta = np.asarray(theta, dtype=float)
            if theta.shape != (self.n_params,):
                msg = (
                    f"Expected {self.n_params} covariance parameters, "
                    f"got shape {theta.shape}."
                )
                raise ValueError(msg)
        L, _ = self.cholesky_factor(theta, xp=xp)
        S = self._restore_order(L @ L.T, xp=xp)
        S = 0.5 * (S + S.T)
        fixed, values = self._fixed_arrays()
        return xp.where(fixed, values, S)

    # ---- Σ → θ -------------------------------------------------------

    def from_matrix(self, Sigma: Any) -> np.ndarray:
        """Invert :meth:`to_matrix` for a feasible covariance matrix.

        Raises:
            ConfigurationError: If *Sigma* has the wrong shape or
                violates a fixed entry.
            CovarianceFactorizationError: If *Sigma* is not
                positive-definite.
        """
        Sigma = np.asarray(Sigma, dtype=float)
        r = self.dim
        if Sigma.shape != (r, r):
            msg = f"Sigma must be {r}x{r}, got shape {Sigma.shape}."
            raise ConfigurationError(msg)
        fixed, values = self._fixed_arrays()
        if np.any(np.abs(Sigma - values)[fixed] > 1e-8 * np.maximum(1.0, np.abs(values[fixed]))):
            msg = "Sigma does not satisfy the fixed entries of the restriction."
            raise ConfigurationError(msg)

        idx = np.asarray(self.order)
        try:
            L = np.linalg.cholesky(0.5 * (Sigma + Sigma.T)[np.ix_(idx, idx)])
        except np.linalg.LinAlgError as exc:
            msg = "Sigma is not positive-definite."
            raise CovarianceFactorizationError(msg) from exc

        entries = self.pattern.entries
        theta = np.zeros(self.n_params)
        for a in range(r):
            i = self.order[a]
            diag = entries[i][i]
            if isinstance(diag, Fixed):
                u = L[a, : a + 1] / np.sqrt(diag.value)
                mass = 1.0
                for b in range(a):
                    e = entries[i][self.order[b]]
                    if isinstance(e, Free):
                        ratio = u[b] / np.sqrt(max(mass, 1e-300))
                        theta[e.index] = np.arctanh(
                            np.clip(ratio, -_ARCTANH_CLIP, _ARCTANH_CLIP)
                        )
                    mass -= u[b] ** 2
            else:
                for b in range(a):
                    e = entries[i][self.order[b]]
                    if isinstance(e, Free):
                        theta[e.index] = L[a, b]
                theta[diag.index] = np.log(L[a, a])
        return theta

    # ---- Feasibility -------------------------------------------------

    def is_feasible(self, theta: Any) -> bool:
        try:
            with np.errstate(divide="ignore", invalid="ignore"):
                self.cholesky_factor(np.asarray(theta, dtype=float))
        except InfeasibleCovarianceError:
            return False
        return True

    def _relaxed_min_mass(self, theta: np.ndarray) -> float:
        with np.errstate(all="ignore"):
            _, min_mass = self.cholesky_factor(theta, xp=_RelaxedNumpy)
        value = float(min_mass)
        return value if np.isfinite(value) else -np.inf

    def feasible_start(self, Sigma0: Any = None) -> np.ndarray:
        """Return a feasible θ, preferring the one matching *Sigma0*.

        Candidates, in order: ``from_matrix(Sigma0)``, ``θ = 0``, then
        the maximiser of the smallest remaining row mass found by
        Nelder–Mead.  This is the explicit feasibility pre-check for
        the restriction: if no candidate is feasible the fixed entries
        are declared infeasible.

        Raises:
            InfeasibleRestrictionError: If no feasible θ is found.
        """
        if Sigma0 is not None:
            try:
                theta = self.from_matrix(Sigma0)
            except (ConfigurationError, CovarianceFactorizationError) as exc:
                logger.debug("Start covariance rejected (%s); trying theta = 0.", exc)
            else:
                if self.is_feasible(theta):
                    return theta

        theta0 = np.zeros(self.n_params)
        if self.is_feasible(theta0):
            return theta0
        if self.n_params == 0:
            msg = "The fully fixed restriction matrix is not positive-definite."
            raise InfeasibleRestrictionError(msg)

        logger.debug("theta = 0 is infeasible; searching for a feasible start.")
        res = optimize.minimize(
            lambda t: -self._relaxed_min_mass(t),
            theta0,
            method="Nelder-Mead",
            options={"maxiter": 2000 * self.n_params, "xatol": 1e-8, "fatol": 1e-12},
        )
        if -res.fun > 1e-8 and self.is_feasible(res.x):
            return np.asarray(res.x)
        msg = (
            "The fixed entries of the restriction matrix cannot be completed "
            "to a positive-definite covariance matrix."
        )
        raise InfeasibleRestrictionError(msg)


class _RelaxedNumpy:
    """NumPy namespace that is *not* ``numpy`` itself.

    Passing it as ``xp`` to :meth:`CovarianceParameterization.cholesky_factor`
    disables the eager infeasibility check, so the smallest row mass
    can be computed (and maximised) even at infeasible θ.
    """

    float64 = np.float64
    sqrt = staticmethod(np.sqrt)
    maximum = staticmethod(np.maximum)
    tanh = staticmethod(np.tanh)
    exp = staticmethod(np.exp)
    stack = staticmethod(np.stack)
    asarray = staticmethod(np.asarray)
    min = staticmethod(np.min)
    where = staticmethod(np.where)

"""Configuration checks for model inputs.

All user-supplied data passes through :func:`prepare_data` (or
:func:`prepare_design` when there is no response) before any numerical
work.  Dimension mismatches, invalid dispersions and responses outside
their declared support are reported here as ``ConfigurationError`` /
``ResponseDomainError`` so that the likelihood code can assume clean
arrays.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np

from ._compat import _ensure_array
from .exceptions import ConfigurationError
from .families import ResponseFamily, resolve_families


@dataclass(frozen=True)
class ModelData:
    """Validated, immutable model inputs.

    Attributes:
        Y: Responses ``(n, r)``.
        X: Per-observation design matrices ``(n, r, p)``.
        families: One ``ResponseFamily`` per coordinate.
        psi: Dispersions ``(r,)``.
    """

    Y: np.ndarray
    X: np.ndarray
    families: tuple[ResponseFamily, ...]
    psi: np.ndarray

    @property
    def n(self) -> int:
        return int(self.X.shape[0])

    @property
    def r(self) -> int:
        return int(self.X.shape[1])

    @property
    def p(self) -> int:
        return int(self.X.shape[2])

    @property
    def type_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.families)


def prepare_design(X: Any, r: int) -> np.ndarray:
    """Reshape a stacked ``(n·r, p)`` design into ``(n, r, p)``.

    Rows ``[i·r, (i+1)·r)`` of the stacked matrix form ``X_i``.  A
    3-D array of shape ``(n, r, p)`` is accepted as-is.

    Raises:
        ConfigurationError: On a row count that is not a multiple of
            *r*, a wrong 3-D shape, or non-finite entries.
    """
    X_arr = _ensure_array(X, name="X")
    if X_arr.ndim == 3:
        if X_arr.shape[1] != r:
            msg = f"X has shape {X_arr.shape}; expected (n, {r}, p)."
            raise ConfigurationError(msg)
        X3 = X_arr
    elif X_arr.ndim == 2:
        rows, p = X_arr.shape
        if rows % r != 0:
            msg = (
                f"Stacked design X has {rows} rows, which is not a multiple "
                f"of the response dimension r = {r}."
            )
            raise ConfigurationError(msg)
        X3 = X_arr.reshape(rows // r, r, p)
    else:
        msg = f"X must be 2- or 3-dimensional, got shape {X_arr.shape}."
        raise ConfigurationError(msg)
    if X3.shape[2] < 1:
        msg = "X must have at least one column."
        raise ConfigurationError(msg)
    if not np.all(np.isfinite(X3)):
        msg = "X contains non-finite values."
        raise ConfigurationError(msg)
    return X3


def prepare_psi(psi: Any, families: tuple[ResponseFamily, ...]) -> np.ndarray:
    """Validate dispersions; ``None`` means ψ = 1 for every coordinate."""
    r = len(families)
    if psi is None:
        psi_arr = np.ones(r)
    else:
        psi_arr = np.atleast_1d(_ensure_array(psi, name="psi")).reshape(-1)
    if psi_arr.shape != (r,):
        msg = f"psi must have length {r}, got {psi_arr.shape[0]}."
        raise ConfigurationError(msg)
    for fam, value in zip(families, psi_arr):
        fam.validate_psi(float(value))
    return psi_arr


def prepare_data(Y: Any, X: Any, types: Any, psi: Any = None) -> ModelData:
    """Validate and package ``(Y, X, types, psi)``.

    A 1-D *Y* is one column when there is a single response type and
    one observation (a row of length r) otherwise.

    Raises:
        ConfigurationError: On any dimension mismatch or invalid
            dispersion.
        ResponseDomainError: If a response column violates its type.
    """
    families = resolve_families(types)
    r = len(families)
    if r < 1:
        msg = "At least one response type is required."
        raise ConfigurationError(msg)

    Y_arr = _ensure_array(Y, name="Y")
    if Y_arr.ndim == 1 and r > 1:
        # A single observation of every coordinate.
        Y_arr = Y_arr[np.newaxis, :]
    Y_arr = _ensure_array(Y_arr, name="Y", ndim=2)
    if r == 1 and Y_arr.shape[1] != 1 and Y_arr.shape[0] == 1:
        Y_arr = Y_arr.T
    if Y_arr.shape[1] != r:
        msg = f"Y has {Y_arr.shape[1]} columns but {r} response types were given."
        raise ConfigurationError(msg)
    if Y_arr.shape[0] < 1:
        msg = "Y must contain at least one observation."
        raise ConfigurationError(msg)

    X3 = prepare_design(X, r)
    if X3.shape[0] != Y_arr.shape[0]:
        msg = (
            f"X describes {X3.shape[0]} observations but Y has "
            f"{Y_arr.shape[0]} rows."
        )
        raise ConfigurationError(msg)

    psi_arr = prepare_psi(psi, families)
    for j, fam in enumerate(families):
        fam.validate_y(Y_arr[:, j])

    return ModelData(Y=Y_arr, X=X3, families=families, psi=psi_arr)

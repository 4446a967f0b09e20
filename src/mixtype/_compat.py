"""Input compatibility layer for array and DataFrame inputs.

The public API accepts NumPy arrays, nested lists, pandas objects and,
when installed, Polars DataFrames.  Everything is converted to a
float64 :class:`numpy.ndarray` at the boundary so that the internal
likelihood code only ever sees plain arrays.

Polars is **not** a required dependency.  If it is not installed, the
converter simply handles NumPy and pandas inputs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeAlias

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    import polars as pl

    DataFrameLike: TypeAlias = pd.DataFrame | pl.DataFrame | pl.LazyFrame
else:
    DataFrameLike: TypeAlias = pd.DataFrame

# Polars is optional.
try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False


def _ensure_array(obj: Any, *, name: str = "input", ndim: int | None = None) -> np.ndarray:
    """Convert *obj* to a float64 :class:`numpy.ndarray`.

    Accepted types:
        * ``numpy.ndarray`` and nested sequences.
        * ``pandas.DataFrame`` / ``pandas.Series`` — via ``.to_numpy()``.
        * ``polars.DataFrame`` / ``polars.LazyFrame`` — via ``.to_numpy()``.

    Args:
        obj: The object to convert.
        name: Label used in error messages (e.g. ``"Y"`` or ``"X"``).
        ndim: When given, a 1-D input is promoted to a column for
            ``ndim=2`` and any other mismatch raises.

    Returns:
        A float64 array.

    Raises:
        TypeError: If *obj* cannot be interpreted numerically.
        ValueError: If the array has the wrong number of dimensions.
    """
    if isinstance(obj, (pd.DataFrame, pd.Series)):
        arr = obj.to_numpy()
    elif _HAS_POLARS and isinstance(obj, pl.LazyFrame):
        arr = obj.collect().to_numpy()
    elif _HAS_POLARS and isinstance(obj, pl.DataFrame):
        arr = obj.to_numpy()
    else:
        arr = np.asarray(obj)

    try:
        arr = arr.astype(np.float64)
    except (TypeError, ValueError) as exc:
        msg = f"'{name}' must be numeric, got dtype {arr.dtype}."
        raise TypeError(msg) from exc

    if ndim is not None:
        if ndim == 2 and arr.ndim == 1:
            arr = arr[:, np.newaxis]
        if arr.ndim != ndim:
            msg = f"'{name}' must be {ndim}-dimensional, got shape {arr.shape}."
            raise ValueError(msg)
    return arr

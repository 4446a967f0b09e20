"""Objective-backend selection for mixtype.

The backend decides how :func:`mixtype.fit` evaluates the approximate
log-likelihood and its gradient.  The first of these that is set wins:

    1. :func:`set_backend` called with ``"numpy"`` or ``"jax"``.
    2. The ``MIXTYPE_BACKEND`` environment variable.
    3. ``"numpy"``.

JAX is never picked just because it is importable; the NumPy objective
(finite-difference gradients) is always the default and JAX autodiff
must be asked for.

Examples:
    From the shell::

        export MIXTYPE_BACKEND=jax

    From Python::

        import mixtype
        mixtype.set_backend("jax")

    Drop the programmatic choice again::

        mixtype.set_backend("auto")
"""

from __future__ import annotations

import os

_BACKEND_NAMES = ("jax", "numpy")
_VALID_BACKENDS = {*_BACKEND_NAMES, "auto"}

# None until set_backend() is called.
_backend_override: str | None = None


def get_backend() -> str:
    """Name of the backend new fits will use.

    Returns:
        ``"jax"`` or ``"numpy"``.
    """
    if _backend_override in _BACKEND_NAMES:
        return _backend_override

    env = os.environ.get("MIXTYPE_BACKEND", "").strip().lower()
    if env in _BACKEND_NAMES:
        return env

    return "numpy"


def set_backend(name: str) -> None:
    """Choose the objective backend for subsequent fits.

    Args:
        name: ``"numpy"``, ``"jax"``, or ``"auto"`` to fall back to the
            environment variable and default.  Case is ignored.

    Raises:
        ValueError: If *name* is not one of the above.
    """
    global _backend_override
    normalised = name.strip().lower()
    if normalised not in _VALID_BACKENDS:
        msg = f"Unknown backend '{name}'. Choose from: {sorted(_VALID_BACKENDS)}"
        raise ValueError(msg)
    _backend_override = normalised

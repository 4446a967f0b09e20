"""Tests for the backend configuration system."""

import os

import numpy as np
import pytest

from mixtype._config import get_backend, set_backend


class TestGetBackend:
    """Tests for get_backend() resolution order."""

    def setup_method(self):
        """Reset state before each test."""
        import mixtype._config as _cfg

        _cfg._backend_override = None
        os.environ.pop("MIXTYPE_BACKEND", None)

    def teardown_method(self):
        """Reset state after each test."""
        import mixtype._config as _cfg

        _cfg._backend_override = None
        os.environ.pop("MIXTYPE_BACKEND", None)

    def test_default_is_numpy(self):
        # JAX is opt-in even when installed.
        assert get_backend() == "numpy"

    def test_env_var_jax(self):
        os.environ["MIXTYPE_BACKEND"] = "jax"
        assert get_backend() == "jax"

    def test_env_var_case_insensitive(self):
        os.environ["MIXTYPE_BACKEND"] = " NumPy "
        assert get_backend() == "numpy"

    def test_unrecognised_env_var_ignored(self):
        os.environ["MIXTYPE_BACKEND"] = "tensorflow"
        assert get_backend() == "numpy"

    def test_programmatic_override_wins_over_env(self):
        os.environ["MIXTYPE_BACKEND"] = "numpy"
        set_backend("jax")
        assert get_backend() == "jax"

    def test_auto_restores_default(self):
        os.environ["MIXTYPE_BACKEND"] = "jax"
        set_backend("numpy")
        assert get_backend() == "numpy"
        set_backend("auto")
        assert get_backend() == "jax"


class TestSetBackend:
    """Tests for set_backend() validation."""

    def setup_method(self):
        import mixtype._config as _cfg

        _cfg._backend_override = None

    def teardown_method(self):
        import mixtype._config as _cfg

        _cfg._backend_override = None

    def test_accepts_valid_names(self):
        for name in ("jax", "numpy", "auto"):
            set_backend(name)

    def test_case_insensitive(self):
        set_backend("JAX")
        assert get_backend() == "jax"

    def test_rejects_invalid_name(self):
        with pytest.raises(ValueError, match="Unknown backend"):
            set_backend("tensorflow")


class TestBackendIntegration:
    """The configured backend is the one a fit reports."""

    def setup_method(self):
        import mixtype._config as _cfg

        _cfg._backend_override = None
        os.environ.pop("MIXTYPE_BACKEND", None)

    def teardown_method(self):
        import mixtype._config as _cfg

        _cfg._backend_override = None

    def test_fit_uses_configured_backend(self):
        from mixtype import fit

        set_backend("numpy")
        rng = np.random.default_rng(42)
        y = rng.standard_normal((80, 1)) + 1.0
        res = fit(y, np.ones((80, 1)), ["normal"], num_nodes=5, compute_se=False)
        assert res.backend == "numpy"

    def test_public_api_exports(self):
        import mixtype

        assert hasattr(mixtype, "get_backend")
        assert hasattr(mixtype, "set_backend")

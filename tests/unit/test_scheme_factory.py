"""
Unit tests for weno_fv/factory/scheme_factory.py
"""

import pytest

import logging

import numpy as np

from weno_fv.alg.numerical import GeometryCache, WENOUpwindFit
from weno_fv.config import WENOConfig
from weno_fv.factory import available_schemes, create_interpolation_scheme, register_scheme
from weno_fv.utils.exceptions import ConfigurationError
from weno_fv.utils.logging import configure_logging, get_logger


@pytest.fixture
def no_cache():
    return WENOConfig(polynomial_order=1, cache={"enabled": False})


@pytest.fixture
def flux(quad_mesh):
    return quad_mesh.face_areas @ np.array([1.0, -0.5, 0.0])


class TestRegistry:
    def test_builtin_scheme_registered(self):
        assert "WENOUpwindFit" in available_schemes()

    def test_register_custom_scheme(self):
        @register_scheme("TestUpwind")
        class TestUpwind(WENOUpwindFit):
            name = "TestUpwind"

        assert "TestUpwind" in available_schemes()


class TestCreateScheme:
    def test_entry_with_flux_name(self, quad_mesh, flux, no_cache):
        scheme = create_interpolation_scheme(quad_mesh, "WENOUpwindFit phi 2 1", {"phi": flux}, config=no_cache)
        assert isinstance(scheme, WENOUpwindFit)
        assert scheme.geometry.order == 2
        assert scheme.limiting_factor == 1.0
        np.testing.assert_array_equal(scheme.face_flux, flux)

    def test_entry_with_explicit_flux(self, quad_mesh, flux, no_cache):
        scheme = create_interpolation_scheme(quad_mesh, "WENOUpwindFit 1 0", flux, config=no_cache)
        assert scheme.limiting_factor == 0.0
        np.testing.assert_array_equal(scheme.face_flux, flux)

    def test_config_entry(self, quad_mesh, flux):
        config = WENOConfig(polynomial_order=1, flux_name="U", cache={"enabled": False})
        scheme = create_interpolation_scheme(quad_mesh, config, {"U": flux})
        assert scheme.geometry.order == 1

    def test_without_flux(self, quad_mesh, no_cache):
        scheme = create_interpolation_scheme(quad_mesh, "WENOUpwindFit 1 1", config=no_cache)
        assert np.all(scheme.face_flux == 0.0)
        assert scheme.limiting_factor == 0.0

    def test_shared_cache(self, tmp_path, quad_mesh, flux):
        cache = GeometryCache(tmp_path, polynomial_order=2)
        first = create_interpolation_scheme(quad_mesh, "WENOUpwindFit phi 2 1", {"phi": flux}, cache=cache)
        second = create_interpolation_scheme(quad_mesh, "WENOUpwindFit phi 2 0", {"phi": -flux}, cache=cache)
        assert first.geometry is second.geometry
        assert cache.cache_path(quad_mesh).exists()

    def test_cache_order_mismatch(self, tmp_path, quad_mesh, flux):
        cache = GeometryCache(tmp_path, polynomial_order=1)
        with pytest.raises(ConfigurationError):
            create_interpolation_scheme(quad_mesh, "WENOUpwindFit phi 2 1", {"phi": flux}, cache=cache)

    def test_unknown_scheme(self, quad_mesh, flux, no_cache):
        with pytest.raises(ConfigurationError, match="unknown scheme"):
            create_interpolation_scheme(quad_mesh, "linearUpwind phi 2 1", {"phi": flux}, config=no_cache)

    def test_missing_flux_field(self, quad_mesh, flux, no_cache):
        with pytest.raises(ConfigurationError, match="flux field not found"):
            create_interpolation_scheme(quad_mesh, "WENOUpwindFit phi 2 1", {"U": flux}, config=no_cache)

    def test_named_fluxes_need_a_name(self, quad_mesh, flux, no_cache):
        with pytest.raises(ConfigurationError):
            create_interpolation_scheme(quad_mesh, "WENOUpwindFit 2 1", {"phi": flux}, config=no_cache)


class TestLoggingSettings:
    def test_config_logging_applied(self, tmp_path, quad_mesh, flux):
        path = tmp_path / "logs" / "weno.log"
        config = WENOConfig(
            polynomial_order=1,
            cache={"enabled": False},
            logging={"level": "DEBUG", "log_to_file": True, "log_file_path": str(path)},
        )
        logger = get_logger("weno_fv.tests.factory")
        try:
            configure_logging(level="WARNING", use_colors=False)
            create_interpolation_scheme(quad_mesh, "WENOUpwindFit phi 1 1", {"phi": flux}, config=config)
            assert logger.level == logging.DEBUG
            logger.debug("scheme created")
            for handler in logger.handlers:
                handler.flush()
            assert "scheme created" in path.read_text()
        finally:
            configure_logging(level="INFO")

    def test_bare_entry_keeps_logging(self, tmp_path, quad_mesh, flux):
        logger = get_logger("weno_fv.tests.factory")
        cache = GeometryCache(tmp_path, polynomial_order=1, enabled=False)
        try:
            configure_logging(level="ERROR", use_colors=False)
            create_interpolation_scheme(quad_mesh, "WENOUpwindFit phi 1 1", {"phi": flux}, cache=cache)
            assert logger.level == logging.ERROR
        finally:
            configure_logging(level="INFO")

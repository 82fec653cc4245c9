"""
Pytest configuration and shared fixtures for the weno_fv test suite.

This module provides mesh fixtures and exact-integration helpers used
across the unit, mathematical and integration tests.
"""

import pytest

import numpy as np

from weno_fv.config import StencilConfig
from weno_fv.geometry import box_mesh
from weno_fv.operators import integrate_tetrahedra, integrate_triangles

# =============================================================================
# Test Configuration
# =============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests (slower, cross-component)")
    config.addinivalue_line("markers", "mathematical: Mathematical property validation tests")
    config.addinivalue_line("markers", "slow: Slow tests (may take >10 seconds)")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers based on test paths."""
    for item in items:
        test_path = str(item.fspath)

        if "/unit/" in test_path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
        elif "/mathematical/" in test_path:
            item.add_marker(pytest.mark.mathematical)

        if "large" in item.name or "slow" in item.name:
            item.add_marker(pytest.mark.slow)


# =============================================================================
# Mesh Fixtures
# =============================================================================


@pytest.fixture
def quad_mesh():
    """Perturbed one-cell-thick quadrilateral mesh (2D)."""
    return box_mesh(cells=(6, 6, 1), perturbation=0.2, seed=3)


@pytest.fixture
def regular_quad_mesh():
    """Uniform 8x8 one-cell-thick mesh."""
    return box_mesh(cells=(8, 8, 1))


@pytest.fixture
def prism_mesh():
    """Perturbed triangular-prism mesh (2D)."""
    return box_mesh(cells=(5, 5, 1), prisms=True, perturbation=0.15, seed=7)


@pytest.fixture
def hex_mesh():
    """Perturbed 3D hexahedral mesh."""
    return box_mesh(cells=(4, 4, 4), perturbation=0.15, seed=11)


@pytest.fixture
def periodic_mesh():
    """Perturbed 2D mesh, periodic in x."""
    return box_mesh(cells=(6, 4, 1), periodic=("x",), perturbation=0.15, seed=5)


@pytest.fixture
def stencil_config():
    """Default stencil settings."""
    return StencilConfig()


# =============================================================================
# Exact Integration Helpers
# =============================================================================


def _ones(points):
    return np.ones(len(points))


def exact_cell_averages(mesh, fn, degree):
    """Cell averages of ``fn`` integrated exactly over the cell tetrahedra."""
    values = []
    for cell in range(mesh.n_cells):
        tets = mesh.cell_tetrahedra(cell)
        values.append(integrate_tetrahedra(fn, tets, degree) / integrate_tetrahedra(_ones, tets, 0))
    return np.array(values)


def exact_face_averages(mesh, fn, degree):
    """Face averages of ``fn`` integrated exactly over the face triangle fans."""
    values = []
    for face in range(mesh.n_faces):
        tris = mesh.face_triangles(face)
        values.append(integrate_triangles(fn, tris, degree) / integrate_triangles(_ones, tris, 0))
    return np.array(values)


def uniform_flux(mesh, velocity=(1.0, 0.5, 0.0)):
    """Face flux of a uniform velocity field."""
    return mesh.face_areas @ np.asarray(velocity, dtype=float)


@pytest.fixture
def cell_averages():
    return exact_cell_averages


@pytest.fixture
def face_averages():
    return exact_face_averages


@pytest.fixture
def flux_of():
    return uniform_flux

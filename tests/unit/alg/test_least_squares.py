"""
Unit tests for weno_fv/alg/numerical/weno_components/least_squares.py
"""

import pytest

import numpy as np

from weno_fv.alg.numerical.weno_components import design_matrix, fit_stencil, stencil_dims
from weno_fv.operators import basis_exponents, evaluate_monomials


def _point_moments(points, exponents):
    """Point values stand in for cell moments: fits of polynomials are still exact."""
    return evaluate_monomials(np.asarray(points, dtype=float), exponents)


@pytest.fixture
def square_points():
    rng = np.random.default_rng(0)
    offsets = [(i, j, 0.0) for i in (-1, 0, 1) for j in (-1, 0, 1) if (i, j) != (0, 0)]
    grid = np.array([(0.0, 0.0, 0.0), *offsets])
    grid[1:] += rng.uniform(-0.1, 0.1, size=(8, 3)) * np.array([1, 1, 0])
    return grid


class TestDesignMatrix:
    def test_target_row_subtracted(self):
        moments = np.array([[1.0, 2.0], [3.0, 5.0], [0.0, 1.0]])
        np.testing.assert_allclose(design_matrix(moments), [[2.0, 3.0], [-1.0, -1.0]])


class TestStencilDims:
    def test_flat_direction_inactive(self, square_points):
        dims = stencil_dims(square_points, np.array([True, True, True]), tolerance=1e-8)
        np.testing.assert_array_equal(dims, [1, 1, 0])

    def test_unresolved_direction_masked(self, square_points):
        dims = stencil_dims(square_points, np.array([True, False, False]), tolerance=1e-8)
        np.testing.assert_array_equal(dims, [1, 0, 0])

    def test_empty(self):
        np.testing.assert_array_equal(stencil_dims(np.empty((0, 3)), np.ones(3, dtype=bool), 1e-8), [0, 0, 0])


class TestFitStencil:
    """Test the SVD pseudoinverse."""

    @pytest.mark.parametrize("order", [1, 2])
    def test_polynomial_reproduced(self, square_points, order):
        """A polynomial of the fit degree is recovered exactly from its sampled differences."""
        exponents = basis_exponents(order)
        dims = np.array([1, 1, 0])
        moments = _point_moments(square_points, exponents)
        fit = fit_stencil(moments, exponents, dims)

        true = np.zeros(len(exponents))
        active = ((exponents == 0) | dims.astype(bool)).all(axis=1)
        true[active] = np.arange(1, active.sum() + 1, dtype=float)
        values = 7.0 + moments @ true

        coeffs = fit.operator @ (values[1:] - values[0])
        np.testing.assert_allclose(coeffs, true, atol=1e-10)
        assert not fit.is_singular(1e-8)

    def test_inactive_rows_zero(self, square_points):
        exponents = basis_exponents(2)
        fit = fit_stencil(_point_moments(square_points, exponents), exponents, np.array([1, 1, 0]))
        uses_z = exponents[:, 2] > 0
        assert np.all(fit.operator[uses_z] == 0.0)
        assert fit.n_unknowns == 5
        assert fit.operator.shape == (len(exponents), 8)

    def test_underdetermined_is_singular(self, square_points):
        exponents = basis_exponents(2)
        fit = fit_stencil(_point_moments(square_points[:4], exponents), exponents, np.array([1, 1, 0]))
        assert fit.rank < fit.n_unknowns
        assert fit.is_singular(1e-12)
        assert np.all(fit.operator == 0.0)

    def test_collinear_is_singular(self):
        exponents = basis_exponents(1)
        points = np.array([[0, 0, 0], [1, 1, 0], [2, 2, 0], [-1, -1, 0]], dtype=float)
        fit = fit_stencil(_point_moments(points, exponents), exponents, np.array([1, 1, 0]))
        assert fit.is_singular(1e-8)

    def test_tolerance_controls_singularity(self):
        exponents = basis_exponents(1)
        points = np.array([[0, 0, 0], [1, 0, 0], [0, 0.01, 0], [-1, 0, 0]], dtype=float)
        fit = fit_stencil(_point_moments(points, exponents), exponents, np.array([1, 1, 0]))
        assert not fit.is_singular(1e-4)
        assert fit.is_singular(0.1)
        assert fit.condition_number > 10

    def test_no_active_basis(self):
        exponents = basis_exponents(1)
        fit = fit_stencil(np.zeros((3, 3)), exponents, np.array([0, 0, 0]))
        assert fit.rank == 0
        assert not fit.is_singular(1e-8)
        assert fit.condition_number == 1.0

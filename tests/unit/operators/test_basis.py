"""
Unit tests for weno_fv/operators/basis.py

Tests the monomial basis, the simplex quadrature rules and the
reference-space moments.
"""

import pytest

import numpy as np

from weno_fv.geometry import Jacobian
from weno_fv.operators import (
    active_basis_mask,
    basis_exponents,
    evaluate_monomials,
    face_moments,
    integrate_tetrahedra,
    integrate_triangles,
    oscillation_matrix,
    tetrahedron_rule,
    triangle_rule,
    volume_moments,
)

UNIT_TET = np.array([[[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]]])
UNIT_TRI = np.array([[[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]])


def _unit_cube_tets():
    """Six tetrahedra filling the unit cube."""
    v = np.array([[i & 1, (i >> 1) & 1, (i >> 2) & 1] for i in range(8)], dtype=float)
    paths = [(1, 3), (1, 5), (2, 3), (2, 6), (4, 5), (4, 6)]
    return np.array([[v[0], v[a], v[a | b], v[7]] for a, b in paths])


class TestBasisExponents:
    """Test monomial exponent tables."""

    @pytest.mark.parametrize(("order", "count"), [(0, 0), (1, 3), (2, 9), (3, 19)])
    def test_count_3d(self, order, count):
        assert len(basis_exponents(order)) == count

    @pytest.mark.parametrize(("order", "count"), [(1, 2), (2, 5), (3, 9)])
    def test_count_2d(self, order, count):
        assert len(basis_exponents(order, directions=(True, True, False))) == count

    def test_ordering(self):
        assert basis_exponents(2, directions=(True, True, False)).tolist() == [
            [1, 0, 0],
            [0, 1, 0],
            [2, 0, 0],
            [1, 1, 0],
            [0, 2, 0],
        ]

    def test_shape_without_basis(self):
        assert basis_exponents(0).shape == (0, 3)
        assert basis_exponents(2, directions=(False, False, False)).shape == (0, 3)

    def test_active_mask(self):
        exponents = basis_exponents(2)
        mask = active_basis_mask(exponents, [1, 0, 1])
        assert mask.tolist() == [True, False, True, True, False, True, False, False, True]

    def test_active_mask_per_row(self):
        exponents = basis_exponents(1)
        mask = active_basis_mask(exponents, np.array([[1, 1, 1], [0, 1, 0]]))
        assert mask.tolist() == [[True, True, True], [False, True, False]]

    def test_evaluate_monomials(self):
        xi = np.array([[2.0, 3.0, 5.0]])
        values = evaluate_monomials(xi, basis_exponents(2))
        np.testing.assert_allclose(values[0], [2, 3, 5, 4, 6, 10, 9, 15, 25])


class TestQuadrature:
    """Test exactness of the collapsed Gauss rules."""

    @pytest.mark.parametrize("degree", [0, 1, 2, 3, 4, 6])
    def test_rule_weights(self, degree):
        _, w_tet = tetrahedron_rule(degree)
        _, w_tri = triangle_rule(degree)
        np.testing.assert_allclose(w_tet.sum(), 1.0 / 6.0)
        np.testing.assert_allclose(w_tri.sum(), 0.5)

    @pytest.mark.parametrize("exponent", [(1, 0, 0), (2, 0, 0), (1, 1, 1), (0, 3, 1), (2, 2, 2)])
    def test_tetrahedron_monomials(self, exponent):
        """Integral of x^a y^b z^c over the unit tetrahedron is a! b! c! / (a + b + c + 3)!"""
        from math import factorial

        a, b, c = exponent
        exact = factorial(a) * factorial(b) * factorial(c) / factorial(a + b + c + 3)
        value = integrate_tetrahedra(lambda p: p[:, 0] ** a * p[:, 1] ** b * p[:, 2] ** c, UNIT_TET, a + b + c)
        np.testing.assert_allclose(value, exact, rtol=1e-13)

    @pytest.mark.parametrize("exponent", [(1, 0), (2, 1), (3, 3)])
    def test_triangle_monomials(self, exponent):
        from math import factorial

        a, b = exponent
        exact = factorial(a) * factorial(b) / factorial(a + b + 2)
        value = integrate_triangles(lambda p: p[:, 0] ** a * p[:, 1] ** b, UNIT_TRI, a + b)
        np.testing.assert_allclose(value, exact, rtol=1e-13)

    def test_cube_decomposition(self):
        value = integrate_tetrahedra(lambda p: p[:, 0] ** 2 * p[:, 1], _unit_cube_tets(), 3)
        np.testing.assert_allclose(value, 1.0 / 6.0, rtol=1e-13)

    def test_orientation_independent(self):
        flipped = UNIT_TET[:, [1, 0, 2, 3]]
        a = integrate_tetrahedra(lambda p: p[:, 2], UNIT_TET, 1)
        b = integrate_tetrahedra(lambda p: p[:, 2], flipped, 1)
        np.testing.assert_allclose(a, b)


class TestMoments:
    """Test reference-space moments and the oscillation matrix."""

    @pytest.fixture
    def cube(self):
        tets = _unit_cube_tets()
        return tets, Jacobian.from_vertices(tets.reshape(-1, 3), np.full(3, 0.5))

    def test_jacobian_of_cube(self, cube):
        _, jac = cube
        np.testing.assert_allclose(jac.matrix, np.eye(3))

    def test_centred_volume_moments(self, cube):
        """Odd moments vanish about the centroid; xi^2 averages to 1/12."""
        tets, jac = cube
        moments = volume_moments(tets, jac, basis_exponents(2))
        np.testing.assert_allclose(moments, [0, 0, 0, 1 / 12, 0, 0, 1 / 12, 0, 1 / 12], atol=1e-14)

    def test_face_moments(self, cube):
        _, jac = cube
        top = np.array([[[0, 0, 1], [1, 0, 1], [1, 1, 1]], [[0, 0, 1], [1, 1, 1], [0, 1, 1]]], dtype=float)
        moments = face_moments(top, jac, basis_exponents(1))
        np.testing.assert_allclose(moments, [0.0, 0.0, 0.5], atol=1e-14)

    def test_reference_scaling(self):
        tets = _unit_cube_tets() * np.array([2.0, 4.0, 8.0])
        jac = Jacobian.from_vertices(tets.reshape(-1, 3), np.array([1.0, 2.0, 4.0]))
        moments = volume_moments(tets, jac, basis_exponents(2))
        np.testing.assert_allclose(moments[[3, 6, 8]], 1 / 12, rtol=1e-12)

    def test_empty_basis(self, cube):
        tets, jac = cube
        assert volume_moments(tets, jac, basis_exponents(0)).shape == (0,)
        assert oscillation_matrix(tets, jac, basis_exponents(0), 0).shape == (0, 0)

    def test_oscillation_linear(self, cube):
        """First derivatives of linear monomials give the identity."""
        tets, jac = cube
        B = oscillation_matrix(tets, jac, basis_exponents(1), 1)
        np.testing.assert_allclose(B, np.eye(3), atol=1e-14)

    def test_oscillation_symmetric_positive(self, cube):
        tets, jac = cube
        B = oscillation_matrix(tets, jac, basis_exponents(2), 2)
        np.testing.assert_allclose(B, B.T, atol=1e-14)
        assert np.linalg.eigvalsh(B).min() > 0

    def test_oscillation_quadratic_entry(self, cube):
        """For x^2: avg((2x)^2) over the centred cube plus the second derivative 2^2."""
        tets, jac = cube
        B = oscillation_matrix(tets, jac, basis_exponents(2), 2)
        np.testing.assert_allclose(B[3, 3], 4.0 / 12.0 + 4.0, rtol=1e-12)

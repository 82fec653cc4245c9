"""
Polynomial basis and quadrature operators for reconstruction.

Usage:
    >>> from weno_fv.operators import basis_exponents, volume_moments
    >>> exponents = basis_exponents(2, directions=(True, True, False))
"""

from __future__ import annotations

from .basis import (
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

__all__ = [
    "active_basis_mask",
    "basis_exponents",
    "evaluate_monomials",
    "face_moments",
    "integrate_tetrahedra",
    "integrate_triangles",
    "oscillation_matrix",
    "tetrahedron_rule",
    "triangle_rule",
    "volume_moments",
]

"""
Monomial basis, simplex quadrature and reference-space moments.

The reconstruction polynomial of a target cell is expanded in the zero-mean
monomials ``xi^e - avg_0(xi^e)`` with ``1 <= |e| <= p`` in the target's
reference coordinates. Averages of monomials over cells and faces are
integrated exactly with collapsed Gauss-Legendre rules on the tetrahedra and
triangles decomposing them.

References:
- Duffy (1982): Quadrature over a pyramid or cube of integrands with a singularity at a vertex
- Dumbser & Kaeser (2007): Arbitrary high order non-oscillatory finite volume schemes
  on unstructured meshes for linear hyperbolic systems
"""

from __future__ import annotations

import itertools
from functools import lru_cache
from math import factorial
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from weno_fv.geometry.reference_space import Jacobian


def basis_exponents(order: int, directions=(True, True, True)) -> NDArray:
    """
    Exponents ``(n_basis, 3)`` of the monomials with ``1 <= |e| <= order``.

    Monomials involving an unresolved direction are omitted. Ordering is by
    total degree, then by descending exponent of x, then of y.

    Examples
    --------
    >>> basis_exponents(1).tolist()
    [[1, 0, 0], [0, 1, 0], [0, 0, 1]]
    >>> len(basis_exponents(2, directions=(True, True, False)))
    5
    """
    directions = np.asarray(directions, dtype=bool)
    exponents = []
    for degree in range(1, order + 1):
        for a in range(degree, -1, -1):
            for b in range(degree - a, -1, -1):
                e = (a, b, degree - a - b)
                if all(directions[d] or e[d] == 0 for d in range(3)):
                    exponents.append(e)
    return np.array(exponents, dtype=np.int64).reshape(-1, 3)


def active_basis_mask(exponents: NDArray, dims: NDArray) -> NDArray:
    """True for basis functions whose exponents only use active directions."""
    dims = np.asarray(dims, dtype=bool)
    return ((exponents == 0) | dims[..., None, :]).all(axis=-1)


def evaluate_monomials(xi: NDArray, exponents: NDArray) -> NDArray:
    """Evaluate monomials at reference points: ``(..., 3) -> (..., n_basis)``."""
    return np.prod(np.asarray(xi)[..., None, :] ** exponents, axis=-1)


@lru_cache(maxsize=32)
def _gauss_legendre_01(n: int) -> tuple[NDArray, NDArray]:
    x, w = np.polynomial.legendre.leggauss(n)
    return 0.5 * (x + 1.0), 0.5 * w


@lru_cache(maxsize=32)
def tetrahedron_rule(degree: int) -> tuple[NDArray, NDArray]:
    """
    Collapsed Gauss rule on the unit tetrahedron, exact up to ``degree``.

    Returns
    -------
    points : NDArray, shape (n_q, 3)
        Local coordinates along the three edges from vertex 0
    weights : NDArray, shape (n_q,)
        Weights summing to 1/6
    """
    n = max(1, (degree + 4) // 2)
    x, w = _gauss_legendre_01(n)
    points, weights = [], []
    for (u, wu), (v, wv), (s, ws) in itertools.product(zip(x, w), zip(x, w), zip(x, w)):
        points.append((u, (1.0 - u) * v, (1.0 - u) * (1.0 - v) * s))
        weights.append(wu * wv * ws * (1.0 - u) ** 2 * (1.0 - v))
    return np.array(points), np.array(weights)


@lru_cache(maxsize=32)
def triangle_rule(degree: int) -> tuple[NDArray, NDArray]:
    """Collapsed Gauss rule on the unit triangle, exact up to ``degree``; weights sum to 1/2."""
    n = max(1, (degree + 3) // 2)
    x, w = _gauss_legendre_01(n)
    points, weights = [], []
    for (u, wu), (v, wv) in itertools.product(zip(x, w), zip(x, w)):
        points.append((u, (1.0 - u) * v))
        weights.append(wu * wv * (1.0 - u))
    return np.array(points), np.array(weights)


def tetrahedra_quadrature(tets: NDArray, degree: int) -> tuple[NDArray, NDArray]:
    """Physical quadrature points ``(n, 3)`` and weights ``(n,)`` over a set of tetrahedra."""
    ref_points, ref_weights = tetrahedron_rule(degree)
    edges = tets[:, 1:] - tets[:, :1]
    points = tets[:, None, 0] + np.einsum("qk,tkd->tqd", ref_points, edges)
    jac = np.abs(np.linalg.det(edges))
    weights = jac[:, None] * ref_weights[None, :]
    return points.reshape(-1, 3), weights.ravel()


def triangles_quadrature(tris: NDArray, degree: int) -> tuple[NDArray, NDArray]:
    """Physical quadrature points ``(n, 3)`` and weights ``(n,)`` over a set of triangles."""
    ref_points, ref_weights = triangle_rule(degree)
    edges = tris[:, 1:] - tris[:, :1]
    points = tris[:, None, 0] + np.einsum("qk,tkd->tqd", ref_points, edges)
    jac = np.linalg.norm(np.cross(edges[:, 0], edges[:, 1]), axis=-1)
    weights = jac[:, None] * ref_weights[None, :]
    return points.reshape(-1, 3), weights.ravel()


def integrate_tetrahedra(fn, tets: NDArray, degree: int):
    """Integrate ``fn(points) -> (n, ...)`` over tetrahedra with a rule exact to ``degree``."""
    points, weights = tetrahedra_quadrature(np.asarray(tets, dtype=float), degree)
    return np.tensordot(weights, fn(points), axes=(0, 0))


def integrate_triangles(fn, tris: NDArray, degree: int):
    """Integrate ``fn(points) -> (n, ...)`` over triangles with a rule exact to ``degree``."""
    points, weights = triangles_quadrature(np.asarray(tris, dtype=float), degree)
    return np.tensordot(weights, fn(points), axes=(0, 0))


def volume_moments(tets: NDArray, jacobian: Jacobian, exponents: NDArray) -> NDArray:
    """Averages ``(n_basis,)`` of the monomials over a cell, in the given reference frame."""
    degree = int(exponents.sum(axis=1).max()) if len(exponents) else 0
    points, weights = tetrahedra_quadrature(tets, degree)
    values = evaluate_monomials(jacobian.to_reference(points), exponents)
    return weights @ values / weights.sum()


def face_moments(tris: NDArray, jacobian: Jacobian, exponents: NDArray) -> NDArray:
    """Averages ``(n_basis,)`` of the monomials over a face, in the given reference frame."""
    degree = int(exponents.sum(axis=1).max()) if len(exponents) else 0
    points, weights = triangles_quadrature(tris, degree)
    values = evaluate_monomials(jacobian.to_reference(points), exponents)
    return weights @ values / weights.sum()


def _derivative_multi_indices(order: int) -> list[tuple[int, int, int]]:
    return [
        (a, b, c)
        for degree in range(1, order + 1)
        for a in range(degree, -1, -1)
        for b in range(degree - a, -1, -1)
        for c in (degree - a - b,)
    ]


def oscillation_matrix(tets: NDArray, jacobian: Jacobian, exponents: NDArray, order: int) -> NDArray:
    """
    Smoothness-indicator quadratic form of a cell.

    ``B[k, l] = sum_{1<=|alpha|<=p} avg_cell(D^alpha xi^{e_k} * D^alpha xi^{e_l})``,
    derivatives taken in reference coordinates.
    """
    n_basis = len(exponents)
    if n_basis == 0:
        return np.zeros((0, 0))

    points, weights = tetrahedra_quadrature(tets, max(2 * order - 2, 0))
    xi = jacobian.to_reference(points)
    weights = weights / weights.sum()

    B = np.zeros((n_basis, n_basis))
    for alpha in _derivative_multi_indices(order):
        alpha = np.array(alpha)
        applicable = (exponents >= alpha).all(axis=1)
        if not applicable.any():
            continue
        reduced = np.where(applicable[:, None], exponents - alpha, 0)
        coeff = np.array(
            [
                np.prod([factorial(e[d]) // factorial(e[d] - alpha[d]) for d in range(3)]) if ok else 0.0
                for e, ok in zip(exponents, applicable)
            ],
            dtype=float,
        )
        D = evaluate_monomials(xi, reduced) * coeff
        B += (D * weights[:, None]).T @ D
    return B

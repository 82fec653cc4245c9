"""
Mesh containers, generators, decomposition and per-cell reference spaces.

Usage:
    >>> from weno_fv.geometry import box_mesh, decompose, slab_partition
    >>> mesh = box_mesh(cells=(8, 8, 1), periodic=("x",))
    >>> parts = decompose(mesh, slab_partition(mesh, 2))
"""

from __future__ import annotations

from .decomposition import decompose, slab_partition
from .mesh_generators import box_mesh
from .poly_mesh import Patch, PolyMesh
from .reference_space import CellGeometry, Jacobian, cell_geometry

__all__ = [
    "CellGeometry",
    "Jacobian",
    "Patch",
    "PolyMesh",
    "box_mesh",
    "cell_geometry",
    "decompose",
    "slab_partition",
]

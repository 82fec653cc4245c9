"""
Per-cell reference coordinate systems and transferable cell geometry.

Every target cell gets an affine map ``xi = J^{-1} (x - x_ref)`` with ``x_ref``
the cell centre and ``J`` the diagonal matrix of the cell's vertex bounding-box
extents, so reference coordinates of nearby cells are O(1) regardless of the
physical cell size.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from .poly_mesh import PolyMesh


@dataclass(frozen=True)
class Jacobian:
    """Affine map from physical to reference coordinates of one cell."""

    matrix: NDArray
    ref_point: NDArray

    @classmethod
    def from_vertices(cls, vertices: NDArray, centre: NDArray) -> Jacobian:
        extents = vertices.max(axis=0) - vertices.min(axis=0)
        extents = np.where(extents > 0, extents, 1.0)
        return cls(matrix=np.diag(extents), ref_point=np.asarray(centre, dtype=float))

    def to_reference(self, x: NDArray) -> NDArray:
        """Map physical points ``(..., 3)`` to reference coordinates."""
        return (np.asarray(x) - self.ref_point) / np.diag(self.matrix)


@dataclass
class CellGeometry:
    """
    Geometry of one cell, as shipped between partitions.

    Attributes
    ----------
    gid : int
        Global cell id
    rank : int
        Owning rank
    centre : NDArray
        Cell centre
    volume : float
    tetrahedra : NDArray, shape (n_tet, 4, 3)
        Decomposition of the cell volume
    face_triangles : list[NDArray]
        Triangle fan ``(n_tri, 3, 3)`` of every cell face
    face_physical : NDArray of bool
        True for faces on uncoupled boundary patches
    """

    gid: int
    rank: int
    centre: NDArray
    volume: float
    tetrahedra: NDArray
    face_triangles: list[NDArray]
    face_physical: NDArray

    def translated(self, shift: NDArray) -> CellGeometry:
        """Copy of the geometry moved by ``shift`` (periodic images)."""
        shift = np.asarray(shift, dtype=float)
        if not shift.any():
            return self
        return CellGeometry(
            gid=self.gid,
            rank=self.rank,
            centre=self.centre + shift,
            volume=self.volume,
            tetrahedra=self.tetrahedra + shift,
            face_triangles=[tri + shift for tri in self.face_triangles],
            face_physical=self.face_physical,
        )


def cell_geometry(mesh: PolyMesh, cell: int) -> CellGeometry:
    """Build the transferable geometry of a local cell."""
    patch_of_face = mesh.face_patch_index
    faces = mesh.cell_faces[cell]
    physical = np.array(
        [patch_of_face[f] >= 0 and not mesh.patches[patch_of_face[f]].coupled for f in faces], dtype=bool
    )
    return CellGeometry(
        gid=int(mesh.cell_global_ids[cell]),
        rank=mesh.rank,
        centre=mesh.cell_centres[cell].copy(),
        volume=float(mesh.cell_volumes[cell]),
        tetrahedra=mesh.cell_tetrahedra(cell),
        face_triangles=[mesh.face_triangles(f) for f in faces],
        face_physical=physical,
    )

"""
Polyhedral finite-volume mesh in owner/neighbour face layout.

Faces are stored as point-index lists. Internal faces come first, ordered by
(owner, neighbour); boundary faces follow, grouped by patch. Every face area
vector points out of its owner cell.

A partition of a decomposed mesh is an ordinary ``PolyMesh`` whose coupled
patches name the rank and global cell id on the other side of each face.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from functools import cached_property
from typing import TYPE_CHECKING

import numpy as np

from weno_fv.utils.exceptions import DimensionMismatchError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray


@dataclass
class Patch:
    """
    Contiguous range of boundary faces.

    Attributes
    ----------
    name : str
        Patch name
    start : int
        Index of the first face of the patch in the mesh face list
    size : int
        Number of faces
    coupled : bool
        True for processor and periodic interfaces
    neighbour_rank : int
        Rank owning the cells on the other side (coupled patches only)
    neighbour_cells : NDArray | None
        Global id of the cell on the other side of every face (coupled patches only)
    translation : NDArray
        Offset added to the true position of a neighbour cell to place its
        image next to the face; zero for processor interfaces
    """

    name: str
    start: int
    size: int
    coupled: bool = False
    neighbour_rank: int = -1
    neighbour_cells: NDArray | None = None
    translation: NDArray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self):
        self.translation = np.asarray(self.translation, dtype=float)
        if self.coupled:
            if self.neighbour_cells is None:
                raise ValueError(f"Coupled patch '{self.name}' needs neighbour_cells")
            self.neighbour_cells = np.asarray(self.neighbour_cells, dtype=np.int64)
            if self.neighbour_cells.shape != (self.size,):
                raise DimensionMismatchError(
                    "neighbour_cells", self.neighbour_cells.shape, (self.size,), component="Patch"
                )

    @property
    def face_range(self) -> range:
        return range(self.start, self.start + self.size)


class PolyMesh:
    """
    Polyhedral mesh partition.

    Parameters
    ----------
    points : array_like, shape (n_points, 3)
        Point coordinates
    faces : sequence of array_like
        Point indices of every face, ordered so the right-hand normal points out of the owner
    owner : array_like, shape (n_faces,)
        Owner cell of every face
    neighbour : array_like, shape (n_internal_faces,)
        Neighbour cell of every internal face
    patches : sequence of Patch
        Boundary patches in face order
    cell_global_ids : array_like, optional
        Global id of every local cell (default: ``arange(n_cells)``)
    rank, n_ranks : int
        Partition identity

    Examples
    --------
    >>> from weno_fv.geometry import box_mesh
    >>> mesh = box_mesh(cells=(4, 4, 1))
    >>> mesh.n_cells, mesh.n_internal_faces
    (16, 24)
    """

    def __init__(
        self,
        points,
        faces: Sequence,
        owner,
        neighbour,
        patches: Sequence[Patch],
        cell_global_ids=None,
        rank: int = 0,
        n_ranks: int = 1,
    ):
        self.points = np.asarray(points, dtype=float)
        self.faces = [np.asarray(f, dtype=np.int64) for f in faces]
        self.owner = np.asarray(owner, dtype=np.int64)
        self.neighbour = np.asarray(neighbour, dtype=np.int64)
        self.patches = list(patches)
        self.rank = rank
        self.n_ranks = n_ranks

        if self.points.ndim != 2 or self.points.shape[1] != 3:
            raise DimensionMismatchError("points", self.points.shape, (len(self.points), 3), component="PolyMesh")
        if self.owner.shape != (len(self.faces),):
            raise DimensionMismatchError("owner", self.owner.shape, (len(self.faces),), component="PolyMesh")

        n_boundary = sum(p.size for p in self.patches)
        if len(self.neighbour) + n_boundary != len(self.faces):
            raise ValueError(
                f"{len(self.neighbour)} internal and {n_boundary} boundary faces do not add up to {len(self.faces)}"
            )

        used = [self.owner, self.neighbour]
        self.n_cells = int(max((int(a.max()) for a in used if a.size), default=-1)) + 1

        if cell_global_ids is None:
            cell_global_ids = np.arange(self.n_cells)
        self.cell_global_ids = np.asarray(cell_global_ids, dtype=np.int64)
        if self.cell_global_ids.shape != (self.n_cells,):
            raise DimensionMismatchError(
                "cell_global_ids", self.cell_global_ids.shape, (self.n_cells,), component="PolyMesh"
            )

    # Sizes

    @property
    def n_faces(self) -> int:
        return len(self.faces)

    @property
    def n_internal_faces(self) -> int:
        return len(self.neighbour)

    @cached_property
    def global_to_local(self) -> dict[int, int]:
        return {int(g): i for i, g in enumerate(self.cell_global_ids)}

    @cached_property
    def face_patch_index(self) -> NDArray:
        """Patch index of every face (-1 for internal faces)."""
        labels = np.full(self.n_faces, -1, dtype=np.int64)
        for index, patch in enumerate(self.patches):
            labels[patch.start : patch.start + patch.size] = index
        return labels

    def coupled_faces(self):
        """Yield ``(patch_index, local_face_index, face, neighbour_gid, translation)`` for coupled faces."""
        for patch_index, patch in enumerate(self.patches):
            if not patch.coupled:
                continue
            for k in range(patch.size):
                yield patch_index, k, patch.start + k, int(patch.neighbour_cells[k]), patch.translation

    # Face geometry

    def face_triangles(self, face: int) -> NDArray:
        """Triangle fan ``(n_tri, 3, 3)`` of a face around its point average."""
        return face_triangle_fan(self.points[self.faces[face]])

    @cached_property
    def _face_geometry(self) -> tuple[NDArray, NDArray]:
        centres = np.zeros((self.n_faces, 3))
        areas = np.zeros((self.n_faces, 3))
        for i, face in enumerate(self.faces):
            centres[i], areas[i] = _face_centre_and_area(self.points[face])
        return centres, areas

    @property
    def face_centres(self) -> NDArray:
        return self._face_geometry[0]

    @property
    def face_areas(self) -> NDArray:
        """Face area vectors, pointing out of the owner cell."""
        return self._face_geometry[1]

    # Cell geometry

    @cached_property
    def cell_faces(self) -> list[NDArray]:
        lists: list[list[int]] = [[] for _ in range(self.n_cells)]
        for f, o in enumerate(self.owner):
            lists[o].append(f)
        for f, n in enumerate(self.neighbour):
            lists[n].append(f)
        return [np.array(sorted(faces), dtype=np.int64) for faces in lists]

    @cached_property
    def cell_points(self) -> list[NDArray]:
        return [np.unique(np.concatenate([self.faces[f] for f in faces])) for faces in self.cell_faces]

    @cached_property
    def _cell_geometry(self) -> tuple[NDArray, NDArray]:
        face_centres, face_areas = self._face_geometry
        centres = np.zeros((self.n_cells, 3))
        volumes = np.zeros(self.n_cells)

        for cell, faces in enumerate(self.cell_faces):
            c_est = face_centres[faces].mean(axis=0)
            sf = face_areas[faces].copy()
            sf[self.owner[faces] != cell] *= -1.0
            pyr_vol = np.einsum("ij,ij->i", sf, face_centres[faces] - c_est) / 3.0
            pyr_ctr = 0.75 * face_centres[faces] + 0.25 * c_est
            volumes[cell] = pyr_vol.sum()
            centres[cell] = (pyr_vol[:, None] * pyr_ctr).sum(axis=0) / volumes[cell]

        return centres, volumes

    @property
    def cell_centres(self) -> NDArray:
        return self._cell_geometry[0]

    @property
    def cell_volumes(self) -> NDArray:
        return self._cell_geometry[1]

    def cell_tetrahedra(self, cell: int) -> NDArray:
        """Tetrahedra ``(n_tet, 4, 3)`` decomposing a cell around its centre."""
        centre = self.cell_centres[cell]
        tets = [
            np.concatenate([tri, np.broadcast_to(centre, (len(tri), 1, 3))], axis=1)
            for tri in (self.face_triangles(f) for f in self.cell_faces[cell])
        ]
        return np.concatenate(tets, axis=0)

    def geometric_directions(self, tolerance: float = 1e-8) -> NDArray:
        """
        Directions resolved by this partition.

        A direction counts as resolved if some internal or coupled face has a
        normal component along it; a one-cell-thick mesh therefore resolves
        only the in-plane directions.
        """
        flags = np.zeros(3, dtype=bool)
        areas = self.face_areas
        faces = list(range(self.n_internal_faces))
        for patch in self.patches:
            if patch.coupled:
                faces.extend(patch.face_range)
        if faces:
            sf = areas[faces]
            mag = np.linalg.norm(sf, axis=1, keepdims=True)
            flags = (np.abs(sf) > tolerance * mag).any(axis=0)
        return flags

    def fingerprint(self) -> str:
        """SHA-1 digest over topology, geometry and partition identity."""
        digest = hashlib.sha1()
        digest.update(np.array([self.rank, self.n_ranks, self.n_cells, self.n_faces], dtype=np.int64).tobytes())
        digest.update(np.ascontiguousarray(self.points).tobytes())
        for face in self.faces:
            digest.update(face.tobytes())
            digest.update(b"|")
        digest.update(self.owner.tobytes())
        digest.update(self.neighbour.tobytes())
        digest.update(self.cell_global_ids.tobytes())
        for patch in self.patches:
            digest.update(f"{patch.name}:{patch.start}:{patch.size}:{patch.coupled}:{patch.neighbour_rank}".encode())
            if patch.coupled:
                digest.update(patch.neighbour_cells.tobytes())
                digest.update(patch.translation.tobytes())
        return digest.hexdigest()

    def __repr__(self) -> str:
        return (
            f"PolyMesh(n_cells={self.n_cells}, n_faces={self.n_faces}, "
            f"n_internal_faces={self.n_internal_faces}, patches={len(self.patches)}, "
            f"rank={self.rank}/{self.n_ranks})"
        )


def face_triangle_fan(face_points: NDArray) -> NDArray:
    """Triangles ``(n, 3, 3)`` joining consecutive face points with their average."""
    centre = face_points.mean(axis=0)
    nxt = np.roll(face_points, -1, axis=0)
    return np.stack([face_points, nxt, np.broadcast_to(centre, face_points.shape)], axis=1)


def _face_centre_and_area(face_points: NDArray) -> tuple[NDArray, NDArray]:
    if len(face_points) == 3:
        sf = 0.5 * np.cross(face_points[1] - face_points[0], face_points[2] - face_points[0])
        return face_points.mean(axis=0), sf

    tris = face_triangle_fan(face_points)
    tri_ctr = tris.mean(axis=1)
    tri_sf = 0.5 * np.cross(tris[:, 1] - tris[:, 0], tris[:, 2] - tris[:, 0])
    tri_mag = np.linalg.norm(tri_sf, axis=1)
    sf = tri_sf.sum(axis=0)
    total = tri_mag.sum()
    if total <= 0:
        return face_points.mean(axis=0), sf
    return (tri_mag[:, None] * tri_ctr).sum(axis=0) / total, sf

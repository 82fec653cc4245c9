"""
Simple box mesh generator for tests and demonstrations.

Builds structured hexahedral, or triangular-prism, meshes of a rectangular
box in owner/neighbour layout. Periodic directions become coupled patches on
rank 0. Interior points can be randomly displaced to obtain irregular cells.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from weno_fv.utils.exceptions import ConfigurationError
from weno_fv.utils.logging import get_logger

from .poly_mesh import Patch, PolyMesh

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = get_logger(__name__)

AXES = {"x": 0, "y": 1, "z": 2}
SIDES = ("xmin", "xmax", "ymin", "ymax", "zmin", "zmax")


def _hex_faces(v):
    """Outward-oriented faces of a hexahedron with vertices v0..v7, labelled by box side."""
    return [
        ((v[0], v[4], v[7], v[3]), "xmin"),
        ((v[1], v[2], v[6], v[5]), "xmax"),
        ((v[0], v[1], v[5], v[4]), "ymin"),
        ((v[3], v[7], v[6], v[2]), "ymax"),
        ((v[0], v[3], v[2], v[1]), "zmin"),
        ((v[4], v[5], v[6], v[7]), "zmax"),
    ]


def _prism_faces(v):
    """Two triangular prisms splitting a hexahedron along the v0-v2 diagonal."""
    lower = [
        ((v[0], v[2], v[1]), "zmin"),
        ((v[4], v[5], v[6]), "zmax"),
        ((v[0], v[1], v[5], v[4]), "ymin"),
        ((v[1], v[2], v[6], v[5]), "xmax"),
        ((v[0], v[4], v[6], v[2]), None),
    ]
    upper = [
        ((v[0], v[3], v[2]), "zmin"),
        ((v[4], v[6], v[7]), "zmax"),
        ((v[0], v[4], v[7], v[3]), "xmin"),
        ((v[3], v[7], v[6], v[2]), "ymax"),
        ((v[0], v[2], v[6], v[4]), None),
    ]
    return [lower, upper]


def box_mesh(
    cells: Sequence[int] = (4, 4, 1),
    lengths: Sequence[float] = (1.0, 1.0, 1.0),
    origin: Sequence[float] = (0.0, 0.0, 0.0),
    periodic: Sequence[str] = (),
    prisms: bool = False,
    perturbation: float = 0.0,
    seed: int = 0,
) -> PolyMesh:
    """
    Create a box mesh.

    Parameters
    ----------
    cells : (nx, ny, nz)
        Number of cells per direction; ``nz = 1`` gives a one-cell-thick 2D mesh
    lengths : (Lx, Ly, Lz)
        Box edge lengths
    origin : (x0, y0, z0)
        Lower box corner
    periodic : sequence of {"x", "y", "z"}
        Directions connected periodically
    prisms : bool
        Split every hexahedron into two triangular prisms in the x-y plane
    perturbation : float
        Maximum random displacement of interior points, as a fraction of the
        local cell size (must stay below 0.5 to keep cells valid)
    seed : int
        Seed of the displacement generator

    Returns
    -------
    PolyMesh
        Single-partition mesh
    """
    nx, ny, nz = (int(n) for n in cells)
    if min(nx, ny, nz) < 1:
        raise ConfigurationError("cells", tuple(cells), valid_range=(1, "inf"), component="box_mesh")
    if not 0.0 <= perturbation < 0.5:
        raise ConfigurationError("perturbation", perturbation, valid_range=(0.0, 0.5), component="box_mesh")

    periodic_axes = set()
    for axis in periodic:
        if axis not in AXES:
            raise ConfigurationError(
                "periodic", axis, component="box_mesh", reason="Periodic directions are 'x', 'y' or 'z'"
            )
        periodic_axes.add(AXES[axis])

    lengths = np.asarray(lengths, dtype=float)
    origin = np.asarray(origin, dtype=float)
    n = np.array([nx, ny, nz])
    h = lengths / n

    def pid(i, j, k):
        return i + (nx + 1) * (j + (ny + 1) * k)

    ii, jj, kk = np.meshgrid(np.arange(nx + 1), np.arange(ny + 1), np.arange(nz + 1), indexing="ij")
    index = np.stack([ii.ravel(order="F"), jj.ravel(order="F"), kk.ravel(order="F")], axis=1)
    points = origin + index * h

    if perturbation > 0:
        rng = np.random.default_rng(seed)
        # one-cell-thick directions stay flat and do not restrict interiority
        interior = (((index > 0) & (index < n)) | (n == 1)).all(axis=1)
        shift = rng.uniform(-perturbation, perturbation, size=points.shape) * h
        shift[:, n == 1] = 0.0
        # points stacked along a flat direction move together, keeping side faces planar
        column = index.copy()
        column[:, n == 1] = 0
        shift = shift[pid(column[:, 0], column[:, 1], column[:, 2])]
        points[interior] += shift[interior]

    # Cell face definitions
    cell_defs = []
    for k in range(nz):
        for j in range(ny):
            for i in range(nx):
                v = (
                    pid(i, j, k),
                    pid(i + 1, j, k),
                    pid(i + 1, j + 1, k),
                    pid(i, j + 1, k),
                    pid(i, j, k + 1),
                    pid(i + 1, j, k + 1),
                    pid(i + 1, j + 1, k + 1),
                    pid(i, j + 1, k + 1),
                )
                if prisms:
                    cell_defs.extend(_prism_faces(v))
                else:
                    cell_defs.append(_hex_faces(v))

    # Match shared faces
    shared: dict[tuple, list[tuple[int, tuple, str | None]]] = {}
    for cell, faces in enumerate(cell_defs):
        for face, side in faces:
            shared.setdefault(tuple(sorted(face)), []).append((cell, face, side))

    internal = []
    boundary: dict[str, list[tuple[int, tuple]]] = {side: [] for side in SIDES}
    for entries in shared.values():
        if len(entries) == 2:
            (c0, f0, _), (c1, f1, _) = sorted(entries, key=lambda e: e[0])
            internal.append((c0, c1, f0))
        else:
            cell, face, side = entries[0]
            boundary[side].append((cell, face))

    internal.sort(key=lambda e: (e[0], e[1]))
    faces = [f for _, _, f in internal]
    owner = [o for o, _, _ in internal]
    neighbour = [nb for _, nb, _ in internal]

    # Periodic partner lookup: point index shifted across the box
    def partner_key(face, axis, direction):
        offsets = [0, 0, 0]
        offsets[axis] = direction * n[axis]
        moved = []
        for p in face:
            i, j, k = index[p]
            moved.append(pid(i + offsets[0], j + offsets[1], k + offsets[2]))
        return tuple(sorted(moved))

    side_owner = {}
    for side in SIDES:
        boundary[side].sort(key=lambda e: (e[0], tuple(sorted(e[1]))))
        for cell, face in boundary[side]:
            side_owner[tuple(sorted(face))] = cell

    patches = []
    for side in SIDES:
        axis = AXES[side[0]]
        entries = boundary[side]
        start = len(faces)
        faces.extend(face for _, face in entries)
        owner.extend(cell for cell, _ in entries)

        if axis in periodic_axes:
            direction = 1 if side.endswith("min") else -1
            neighbour_cells = [side_owner[partner_key(face, axis, direction)] for _, face in entries]
            translation = np.zeros(3)
            translation[axis] = -direction * lengths[axis]
            patches.append(
                Patch(
                    name=f"periodic_{side}",
                    start=start,
                    size=len(entries),
                    coupled=True,
                    neighbour_rank=0,
                    neighbour_cells=np.array(neighbour_cells, dtype=np.int64),
                    translation=translation,
                )
            )
        else:
            patches.append(Patch(name=side, start=start, size=len(entries)))

    mesh = PolyMesh(points, faces, owner, neighbour, patches)
    logger.debug(
        f"Generated box mesh: {mesh.n_cells} {'prism' if prisms else 'hex'} cells, "
        f"{mesh.n_internal_faces} internal faces, periodic={sorted(periodic)}"
    )
    return mesh

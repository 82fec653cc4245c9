"""
Mesh decomposition into partitions with processor patches.

``decompose`` splits a single-partition mesh by an explicit cell-to-rank map.
Faces between cells of different ranks become processor patches on both
sides; periodic patches are split by the rank owning the cell on the far side.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from weno_fv.utils.exceptions import ConfigurationError, DimensionMismatchError
from weno_fv.utils.logging import get_logger

from .poly_mesh import Patch, PolyMesh

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = get_logger(__name__)


def slab_partition(mesh: PolyMesh, n_parts: int, axis: int = 0) -> NDArray:
    """
    Assign cells to ``n_parts`` slabs of (nearly) equal cell count along one axis.

    Cells are ordered by centre coordinate, ties broken by global id.
    """
    if n_parts < 1 or n_parts > mesh.n_cells:
        raise ConfigurationError("n_parts", n_parts, valid_range=(1, mesh.n_cells), component="slab_partition")

    order = np.lexsort((mesh.cell_global_ids, np.round(mesh.cell_centres[:, axis], 12)))
    cell_to_rank = np.empty(mesh.n_cells, dtype=np.int64)
    for rank, chunk in enumerate(np.array_split(order, n_parts)):
        cell_to_rank[chunk] = rank
    return cell_to_rank


def decompose(mesh: PolyMesh, cell_to_rank) -> list[PolyMesh]:
    """
    Split a single-partition mesh into one ``PolyMesh`` per rank.

    Parameters
    ----------
    mesh : PolyMesh
        Undecomposed mesh (``n_ranks == 1``)
    cell_to_rank : array_like, shape (n_cells,)
        Owning rank of every cell

    Returns
    -------
    list[PolyMesh]
        Partitions in rank order; local cells keep ascending global-id order
    """
    cell_to_rank = np.asarray(cell_to_rank, dtype=np.int64)
    if cell_to_rank.shape != (mesh.n_cells,):
        raise DimensionMismatchError("cell_to_rank", cell_to_rank.shape, (mesh.n_cells,), component="decompose")
    if mesh.n_ranks != 1:
        raise ConfigurationError(
            "mesh", mesh, component="decompose", reason="Only single-partition meshes can be decomposed"
        )

    n_ranks = int(cell_to_rank.max()) + 1
    gids = mesh.cell_global_ids
    gid_to_cell = {int(g): c for c, g in enumerate(gids)}

    partitions = []
    for rank in range(n_ranks):
        cells = np.flatnonzero(cell_to_rank == rank)
        cells = cells[np.argsort(gids[cells], kind="stable")]
        local = {int(c): i for i, c in enumerate(cells)}

        faces: list[NDArray] = []
        owner: list[int] = []
        neighbour: list[int] = []

        internal = []
        processor: dict[int, list[tuple]] = {}
        for f in range(mesh.n_internal_faces):
            o, nb = int(mesh.owner[f]), int(mesh.neighbour[f])
            ro, rn = cell_to_rank[o], cell_to_rank[nb]
            if ro == rank and rn == rank:
                internal.append((local[o], local[nb], mesh.faces[f]))
            elif ro == rank:
                processor.setdefault(int(rn), []).append((local[o], int(gids[nb]), mesh.faces[f]))
            elif rn == rank:
                # reversed so the face points out of the local cell
                processor.setdefault(int(ro), []).append((local[nb], int(gids[o]), mesh.faces[f][::-1]))

        internal.sort(key=lambda e: (e[0], e[1]))
        for o, nb, face in internal:
            faces.append(face)
            owner.append(o)
            neighbour.append(nb)

        patches = []
        for patch in mesh.patches:
            patch_faces = [f for f in patch.face_range if cell_to_rank[mesh.owner[f]] == rank]
            if not patch.coupled:
                patches.append(Patch(name=patch.name, start=len(faces), size=len(patch_faces)))
                faces.extend(mesh.faces[f] for f in patch_faces)
                owner.extend(local[int(mesh.owner[f])] for f in patch_faces)
                continue

            by_rank: dict[int, list[int]] = {}
            for f in patch_faces:
                far_gid = int(patch.neighbour_cells[f - patch.start])
                by_rank.setdefault(int(cell_to_rank[gid_to_cell[far_gid]]), []).append(f)
            for far_rank in sorted(by_rank):
                selected = by_rank[far_rank]
                patches.append(
                    Patch(
                        name=f"{patch.name}_proc{far_rank}",
                        start=len(faces),
                        size=len(selected),
                        coupled=True,
                        neighbour_rank=far_rank,
                        neighbour_cells=patch.neighbour_cells[[f - patch.start for f in selected]],
                        translation=patch.translation.copy(),
                    )
                )
                faces.extend(mesh.faces[f] for f in selected)
                owner.extend(local[int(mesh.owner[f])] for f in selected)

        for far_rank in sorted(processor):
            entries = sorted(processor[far_rank], key=lambda e: (int(gids[cells[e[0]]]), e[1]))
            patches.append(
                Patch(
                    name=f"procBoundary{rank}to{far_rank}",
                    start=len(faces),
                    size=len(entries),
                    coupled=True,
                    neighbour_rank=far_rank,
                    neighbour_cells=np.array([e[1] for e in entries], dtype=np.int64),
                )
            )
            faces.extend(e[2] for e in entries)
            owner.extend(e[0] for e in entries)

        # Renumber points
        used = np.unique(np.concatenate(faces)) if faces else np.array([], dtype=np.int64)
        point_map = np.full(len(mesh.points), -1, dtype=np.int64)
        point_map[used] = np.arange(len(used))
        local_faces = [point_map[face] for face in faces]

        part = PolyMesh(
            mesh.points[used],
            local_faces,
            owner,
            neighbour,
            patches,
            cell_global_ids=gids[cells],
            rank=rank,
            n_ranks=n_ranks,
        )
        logger.debug(
            f"Partition {rank}/{n_ranks}: {part.n_cells} cells, "
            f"{sum(p.size for p in patches if p.coupled)} coupled faces"
        )
        partitions.append(part)

    return partitions

"""
Export of stencils for visual inspection.

Every stencil becomes a set of line segments from its target cell centre to
the centres of its members (periodic images at their shifted position), so
the stencils can be inspected in ParaView or any other VTK reader.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

from weno_fv.utils.logging import get_logger

if TYPE_CHECKING:
    from weno_fv.alg.numerical.weno_components.geometry_cache import WENOGeometry

logger = get_logger(__name__)


def write_stencil_lines(geometry: WENOGeometry, path: str | Path, central_only: bool = True) -> Path:
    """
    Write the stencils of the local cells as a line mesh.

    Parameters
    ----------
    geometry : WENOGeometry
        Bound stencil geometry
    path : str | Path
        Output file; the format follows the suffix (e.g. ``.vtu``, ``.vtk``)
    central_only : bool
        Skip sectorial stencils

    Returns
    -------
    Path
        The written file

    Raises
    ------
    ImportError
        If meshio is not installed
    """
    try:
        import meshio
    except ImportError as e:
        raise ImportError("meshio is required for stencil export. Install with: pip install weno-fv[vtk]") from e

    points = []
    lines = []
    target_ids = []
    stencil_kind = []

    for target in range(geometry.n_cells):
        stencils = geometry.stencil_range(target)
        if central_only:
            stencils = stencils[:1]
        for position, stencil in enumerate(stencils):
            lo, hi = geometry.stencil_member_ptr[stencil], geometry.stencil_member_ptr[stencil + 1]
            centres = geometry.member_centres[lo:hi]
            base = len(points)
            points.extend(centres)
            for j in range(1, len(centres)):
                lines.append((base, base + j))
                target_ids.append(int(geometry.target_gids[target]))
                stencil_kind.append(position)

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    mesh = meshio.Mesh(
        np.asarray(points, dtype=float).reshape(-1, 3),
        [("line", np.asarray(lines, dtype=np.int64).reshape(-1, 2))],
        cell_data={
            "target": [np.asarray(target_ids, dtype=np.int64)],
            "stencil": [np.asarray(stencil_kind, dtype=np.int64)],
        },
    )
    meshio.write(path, mesh)
    logger.info(f"Wrote {len(lines)} stencil links of rank {geometry.rank} to {path}")
    return path

"""
Stencil geometry bundle and its on-disk cache.

``WENOGeometry`` holds everything the stencil build produces for one
partition: stencils, reference-space Jacobians and moments, least-squares
operators, oscillation matrices, per-face evaluation moments and the halo
maps. It is immutable once created.

``GeometryCache`` owns the geometry of one (mesh, polynomial order) pair. It
is created by the caller, bound exactly once by :meth:`GeometryCache.load_or_build`,
and then passed to the reconstruction scheme. Files live under

    <directory>/<mesh fingerprint[:16]>_order<p>/processor<rank>of<n>.h5

and are replaced atomically. Any mismatch (format version, order, mesh
fingerprint, stencil settings, missing datasets) is a cache miss, never an error.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any

import numpy as np

from weno_fv.config.core import DEFAULT_CACHE_DIRECTORY, StencilConfig
from weno_fv.geometry.reference_space import Jacobian
from weno_fv.parallel.communicator import SerialCommunicator
from weno_fv.utils.exceptions import GeometryNotBuiltError, WENOError
from weno_fv.utils.io.hdf5_utils import load_arrays, read_attributes, save_arrays
from weno_fv.utils.logging import get_logger, log_cache_event

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from weno_fv.geometry.poly_mesh import PolyMesh
    from weno_fv.parallel.communicator import Communicator

logger = get_logger(__name__)

FORMAT_VERSION = 1


def config_digest(config: StencilConfig) -> str:
    """Digest of the stencil settings that shape the cached geometry."""
    return hashlib.sha1(config.model_dump_json().encode()).hexdigest()


@dataclass(frozen=True)
class HaloCell:
    """
    Stencil member that is not a plain local cell.

    Either owned by another rank, or local but reached through a periodic
    interface (non-zero shift). ``patch``/``face`` locate the coupled face of
    this partition through which the cell was first reached (-1 if none).
    """

    gid: int
    rank: int
    shift: NDArray
    centre: NDArray
    patch: int
    face: int


@dataclass(frozen=True, eq=False)
class WENOGeometry:
    """
    Immutable stencil geometry of one partition.

    Targets are the local cells (indices ``0..n_cells-1``, local order)
    followed by the remote cells across coupled faces (ascending global id).
    Stencils of target ``t`` are ``target_stencil_ptr[t]:target_stencil_ptr[t+1]``;
    the first of them is the central stencil. Members of stencil ``s`` are
    ``stencil_member_ptr[s]:stencil_member_ptr[s+1]``, centre first.
    """

    order: int
    rank: int
    n_ranks: int
    fingerprint: str
    config_digest: str
    n_cells: int
    n_dropped_sectors: int
    max_condition_number: float
    exponents: NDArray
    target_gids: NDArray
    target_stencil_ptr: NDArray
    stencil_member_ptr: NDArray
    member_gids: NDArray
    member_shifts: NDArray
    member_centres: NDArray
    stencil_dims: NDArray
    ls_coefficients: NDArray
    jacobian_extents: NDArray
    ref_points: NDArray
    volume_moments: NDArray
    oscillation: NDArray
    face_owner_target: NDArray
    face_neighbour_target: NDArray
    face_owner_moments: NDArray
    face_neighbour_moments: NDArray
    limiter_ptr: NDArray
    limiter_moments: NDArray
    halo_gids: NDArray
    halo_ranks: NDArray
    halo_shifts: NDArray
    halo_centres: NDArray
    halo_patches: NDArray
    halo_faces: NDArray
    request_ranks: NDArray
    request_ptr: NDArray
    request_gids: NDArray
    send_ranks: NDArray
    send_ptr: NDArray
    send_gids: NDArray

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, np.ndarray):
                value.setflags(write=False)

    # Sizes

    @property
    def n_targets(self) -> int:
        return len(self.target_gids)

    @property
    def n_basis(self) -> int:
        return len(self.exponents)

    @property
    def n_stencils(self) -> int:
        return len(self.stencil_member_ptr) - 1

    # Accessors

    def stencil_range(self, target: int) -> range:
        return range(int(self.target_stencil_ptr[target]), int(self.target_stencil_ptr[target + 1]))

    def central_stencil(self, target: int) -> int:
        return int(self.target_stencil_ptr[target])

    def members(self, stencil: int) -> tuple[NDArray, NDArray]:
        """Global ids and shifts of the members of a stencil, centre first."""
        lo, hi = self.stencil_member_ptr[stencil], self.stencil_member_ptr[stencil + 1]
        return self.member_gids[lo:hi], self.member_shifts[lo:hi]

    def stencil_size(self, stencil: int) -> int:
        return int(self.stencil_member_ptr[stencil + 1] - self.stencil_member_ptr[stencil])

    def operator(self, stencil: int) -> NDArray:
        """Least-squares operator ``(n_basis, m - 1)`` of a stencil."""
        lo = int(self.stencil_member_ptr[stencil]) - stencil
        hi = int(self.stencil_member_ptr[stencil + 1]) - stencil - 1
        return self.ls_coefficients[lo:hi].T

    def jacobian(self, target: int) -> Jacobian:
        return Jacobian(matrix=np.diag(self.jacobian_extents[target]), ref_point=self.ref_points[target])

    def halo_cells(self) -> list[HaloCell]:
        return [
            HaloCell(
                gid=int(self.halo_gids[i]),
                rank=int(self.halo_ranks[i]),
                shift=self.halo_shifts[i],
                centre=self.halo_centres[i],
                patch=int(self.halo_patches[i]),
                face=int(self.halo_faces[i]),
            )
            for i in range(len(self.halo_gids))
        ]

    def requests(self) -> dict[int, NDArray]:
        return _unpack_map(self.request_ranks, self.request_ptr, self.request_gids)

    def sends(self) -> dict[int, NDArray]:
        return _unpack_map(self.send_ranks, self.send_ptr, self.send_gids)

    # Persistence

    _SCALARS = ("order", "rank", "n_ranks", "fingerprint", "config_digest", "n_cells", "n_dropped_sectors")

    def to_arrays(self) -> tuple[dict[str, NDArray], dict[str, Any]]:
        arrays, attrs = {}, {"format_version": FORMAT_VERSION}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, np.ndarray):
                arrays[f.name] = value
            else:
                attrs[f.name] = value
        return arrays, attrs

    @classmethod
    def from_arrays(cls, arrays: dict[str, NDArray], attrs: dict[str, Any]) -> WENOGeometry:
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            if f.name in cls._SCALARS:
                value = attrs[f.name]
                kwargs[f.name] = str(value) if f.name in ("fingerprint", "config_digest") else int(value)
            elif f.name == "max_condition_number":
                kwargs[f.name] = float(attrs[f.name])
            else:
                kwargs[f.name] = np.asarray(arrays[f.name])
        return cls(**kwargs)


def pack_map(mapping: dict[int, NDArray]) -> tuple[NDArray, NDArray, NDArray]:
    """Flatten ``rank -> gids`` into (ranks, ptr, gids) arrays."""
    ranks = np.array(sorted(mapping), dtype=np.int64)
    chunks = [np.asarray(mapping[r], dtype=np.int64) for r in ranks]
    ptr = np.zeros(len(ranks) + 1, dtype=np.int64)
    ptr[1:] = np.cumsum([len(c) for c in chunks])
    gids = np.concatenate(chunks) if chunks else np.empty(0, dtype=np.int64)
    return ranks, ptr, gids


def _unpack_map(ranks: NDArray, ptr: NDArray, gids: NDArray) -> dict[int, NDArray]:
    return {int(r): gids[ptr[i] : ptr[i + 1]] for i, r in enumerate(ranks)}


class GeometryCache:
    """
    Explicit cache of the stencil geometry of one mesh partition.

    Parameters
    ----------
    directory : str | Path | None
        Cache root (default: ``./constant/weno_geometry``)
    polynomial_order : int
        Reconstruction order the geometry is built for
    comm : Communicator, optional
        Partition communicator (default: serial)
    enabled : bool
        Read and write files; when False the geometry is always rebuilt

    Examples
    --------
    >>> cache = GeometryCache("constant/weno_geometry", polynomial_order=2)
    >>> geometry = cache.load_or_build(mesh, StencilConfig())
    >>> cache.geometry is geometry
    True
    """

    def __init__(
        self,
        directory: str | Path | None = None,
        polynomial_order: int = 1,
        comm: Communicator | None = None,
        enabled: bool = True,
    ):
        self.directory = Path(directory if directory is not None else DEFAULT_CACHE_DIRECTORY)
        self.polynomial_order = polynomial_order
        self.comm = comm if comm is not None else SerialCommunicator()
        self.enabled = enabled
        self._geometry: WENOGeometry | None = None

    @classmethod
    def from_config(cls, config, comm: Communicator | None = None) -> GeometryCache:
        """Create a cache from a :class:`~weno_fv.config.WENOConfig`."""
        return cls(
            directory=config.cache.resolved_directory(),
            polynomial_order=config.polynomial_order,
            comm=comm,
            enabled=config.cache.enabled,
        )

    # Binding

    @property
    def is_bound(self) -> bool:
        return self._geometry is not None

    @property
    def geometry(self) -> WENOGeometry:
        if self._geometry is None:
            raise GeometryNotBuiltError("access geometry")
        return self._geometry

    def bind(self, geometry: WENOGeometry) -> WENOGeometry:
        """Bind the geometry; allowed exactly once."""
        if self._geometry is not None:
            raise WENOError(
                "Geometry cache is already bound",
                component="GeometryCache",
                suggested_action="Create a new GeometryCache for a changed mesh",
                error_code="GEOMETRY_ALREADY_BOUND",
            )
        self._geometry = geometry
        return geometry

    # Files

    def cache_path(self, mesh: PolyMesh) -> Path:
        return (
            self.directory
            / f"{mesh.fingerprint()[:16]}_order{self.polynomial_order}"
            / f"processor{mesh.rank}of{mesh.n_ranks}.h5"
        )

    def read_list(self, mesh: PolyMesh, config: StencilConfig) -> WENOGeometry | None:
        """Load cached geometry, or return None on any mismatch."""
        path = self.cache_path(mesh)
        if not path.exists():
            log_cache_event(logger, "miss", path, "no file")
            return None

        try:
            attrs = read_attributes(path)
        except OSError as e:
            log_cache_event(logger, "miss", path, f"unreadable: {e}")
            return None

        expected = {
            "format_version": FORMAT_VERSION,
            "order": self.polynomial_order,
            "fingerprint": mesh.fingerprint(),
            "config_digest": config_digest(config),
        }
        for key, value in expected.items():
            stored = attrs.get(key)
            if stored is None or type(value)(stored) != value:
                log_cache_event(logger, "miss", path, f"{key} differs")
                return None

        try:
            arrays, attrs = load_arrays(path)
            geometry = WENOGeometry.from_arrays(arrays, attrs)
        except (OSError, KeyError) as e:
            log_cache_event(logger, "miss", path, f"missing {e}")
            return None

        log_cache_event(logger, "hit", path)
        return geometry

    def write_list(self, geometry: WENOGeometry, mesh: PolyMesh) -> Path:
        """Persist geometry; the file is replaced atomically."""
        path = self.cache_path(mesh)
        arrays, attrs = geometry.to_arrays()
        save_arrays(arrays, attrs, path)
        log_cache_event(logger, "write", path)
        return path

    def load_or_build(self, mesh: PolyMesh, config: StencilConfig | None = None) -> WENOGeometry:
        """
        Bind cached geometry, rebuilding it on every rank if any rank misses.

        The hit/miss vote is collective so that all ranks take part in the
        build exchanges together.
        """
        from .stencil_builder import StencilBuilder

        config = config if config is not None else StencilConfig()

        geometry = self.read_list(mesh, config) if self.enabled else None
        votes = self.comm.allgather(geometry is not None)

        if not all(votes):
            if geometry is not None:
                logger.info(f"Rank {self.comm.rank}: rebuilding geometry because another rank missed the cache")
            geometry = StencilBuilder(mesh, self.polynomial_order, config, self.comm).build()
            if self.enabled:
                self.write_list(geometry, mesh)
                # no rank proceeds until every partition file is on disk
                self.comm.barrier()

        return self.bind(geometry)

    def draw_stencils(self, path: str | Path, central_only: bool = True) -> Path:
        """Write stencil links as a VTK line mesh for post-processing (needs meshio)."""
        from weno_fv.utils.io.stencil_export import write_stencil_lines

        return write_stencil_lines(self.geometry, path, central_only=central_only)

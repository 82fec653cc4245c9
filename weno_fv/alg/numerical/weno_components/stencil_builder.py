"""
Stencil construction and reference-space operator assembly.

For every target cell the builder grows a central stencil by breadth-first
face-adjacency layers, splits it into directional sectors, sorts members by
distance and truncates them, fetches the geometry of members owned by other
partitions, and finally integrates reference-space moments and assembles the
least-squares and oscillation operators.

Stencil members are ``(global id, shift)`` pairs: ``shift`` is the offset of a
periodic image from the cell's true position, so a cell can appear through
different periodic interfaces at different places. All discrete decisions
(layer membership, distance order, sector membership) are made on data that
is identical on every decomposition of a mesh, which keeps the result
independent of the partitioning.

Exchanges (each one collective call):
1. ``exchange_topology``: allgather of the cells near partition interfaces
2. ``distribute_stencils``: request/response of remote member geometry
"""

from __future__ import annotations

import itertools
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from weno_fv.config.core import StencilConfig
from weno_fv.geometry.reference_space import CellGeometry, Jacobian, cell_geometry
from weno_fv.operators.basis import (
    active_basis_mask,
    basis_exponents,
    face_moments,
    oscillation_matrix,
    volume_moments,
)
from weno_fv.parallel.communicator import SerialCommunicator
from weno_fv.parallel.halo_exchange import HaloExchange
from weno_fv.utils.exceptions import (
    DimensionalityError,
    SingularStencilError,
    StencilConstructionError,
    WENOError,
)
from weno_fv.utils.logging import LoggedOperation, get_logger, log_stencil_statistics

from .geometry_cache import WENOGeometry, config_digest, pack_map
from .least_squares import LeastSquaresFit, fit_stencil, stencil_dims

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray

    from weno_fv.geometry.poly_mesh import PolyMesh
    from weno_fv.parallel.communicator import Communicator

logger = get_logger(__name__)

ZERO_SHIFT = (0.0, 0.0, 0.0)

# Half-width of the band around a reference axis in which a cell belongs to both sectors
SECTOR_TOLERANCE = 1e-8

# Significant digits of distances compared when ordering stencil members
DISTANCE_DIGITS = 10

Node = tuple[int, tuple[float, float, float]]


def _add_shift(a, b) -> tuple[float, float, float]:
    return tuple(round(x + y, 12) + 0.0 for x, y in zip(a, b))


@dataclass
class TopologyEntry:
    """Connectivity of one cell as seen by the stencil growth."""

    rank: int
    centre: NDArray
    extents: NDArray
    adjacency: list[tuple[int, tuple[float, float, float], tuple[int, int] | None]]

    def jacobian(self) -> Jacobian:
        return Jacobian(matrix=np.diag(self.extents), ref_point=self.centre)


@dataclass
class _TargetStencils:
    gid: int
    jacobian: Jacobian
    stencils: list[list[Node]]
    dims: list[NDArray]
    fits: list[LeastSquaresFit]
    vias: dict[Node, tuple[int, int] | None]


class StencilBuilder:
    """
    Build the stencil geometry of one mesh partition.

    Parameters
    ----------
    mesh : PolyMesh
        Local partition
    polynomial_order : int
        Degree of the reconstruction polynomial
    config : StencilConfig, optional
        Stencil growth and conditioning settings
    comm : Communicator, optional
        Partition communicator (default: serial)

    Notes
    -----
    A build synchronises the partitions at two points: the topology
    allgather of :meth:`exchange_topology`, and the geometry exchange of
    :meth:`distribute_stencils`. The latter is one request/response pair on
    a :class:`HaloExchange`; its two alltoalls carry the request and the
    answer of a single logical exchange.

    Examples
    --------
    >>> builder = StencilBuilder(mesh, polynomial_order=2)
    >>> geometry = builder.build()
    >>> geometry.stencil_size(geometry.central_stencil(0))
    11
    """

    def __init__(
        self,
        mesh: PolyMesh,
        polynomial_order: int,
        config: StencilConfig | None = None,
        comm: Communicator | None = None,
    ):
        self.mesh = mesh
        self.order = int(polynomial_order)
        self.config = config if config is not None else StencilConfig()
        self.comm = comm if comm is not None else SerialCommunicator()
        self.exchange = HaloExchange(self.comm)

        self.topology: dict[int, TopologyEntry] = {}
        self.directions = np.zeros(3, dtype=bool)
        self.exponents = np.empty((0, 3), dtype=np.int64)

        self._local_geometry: dict[int, CellGeometry] = {}
        self._remote_geometry: dict[int, CellGeometry] = {}
        self.n_dropped_sectors = 0

    # Sizes

    @property
    def n_basis(self) -> int:
        return len(self.exponents)

    @property
    def min_size(self) -> int:
        return math.ceil(self.config.size_factor * self.n_basis) + 1

    @property
    def max_size(self) -> int:
        return math.ceil(self.config.max_size_factor * self.n_basis) + 1

    # Pipeline

    def build(self) -> WENOGeometry:
        """Run the full pipeline and return the partition's geometry."""
        with LoggedOperation(logger, f"stencil build (order {self.order}, rank {self.comm.rank})"):
            self.exchange_topology()

            targets = self._targets()
            built = [self._build_target(gid) for gid in targets]

            halos = self.distribute_stencils(built, targets)
            halos.update(self.distribute_local_stencils(built))

            for target in built:
                self.calc_matrix(target)

            geometry = self._assemble(targets, built, halos)

        sizes = [len(t.stencils[0]) for t in built[: self.mesh.n_cells]]
        n_sectorial = sum(len(t.stencils) - 1 for t in built[: self.mesh.n_cells])
        log_stencil_statistics(
            logger, self.comm.rank, sizes, n_sectorial, self.n_dropped_sectors, geometry.max_condition_number
        )
        return geometry

    def exchange_topology(self) -> None:
        """
        Share the connectivity of cells near coupled interfaces (exchange 1).

        Every rank contributes the cells within ``max_layers + 1`` face hops of
        its coupled faces, which covers every cell a stencil can reach on it.
        """
        mesh = self.mesh
        gids = mesh.cell_global_ids
        centres = mesh.cell_centres

        adjacency: list[list] = [[] for _ in range(mesh.n_cells)]
        local_neighbours: list[list[int]] = [[] for _ in range(mesh.n_cells)]
        for f in range(mesh.n_internal_faces):
            o, n = int(mesh.owner[f]), int(mesh.neighbour[f])
            adjacency[o].append((int(gids[n]), ZERO_SHIFT, None))
            adjacency[n].append((int(gids[o]), ZERO_SHIFT, None))
            local_neighbours[o].append(n)
            local_neighbours[n].append(o)

        origins = set()
        for patch_index, k, f, neighbour_gid, translation in mesh.coupled_faces():
            o = int(mesh.owner[f])
            shift = _add_shift(ZERO_SHIFT, translation)
            adjacency[o].append((neighbour_gid, shift, (patch_index, k)))
            origins.add(o)

        local = {}
        for cell in range(mesh.n_cells):
            jac = Jacobian.from_vertices(mesh.points[mesh.cell_points[cell]], centres[cell])
            local[int(gids[cell])] = TopologyEntry(
                rank=mesh.rank, centre=centres[cell].copy(), extents=np.diag(jac.matrix).copy(), adjacency=adjacency[cell]
            )

        band = set(origins)
        frontier = sorted(origins)
        for _ in range(self.config.max_layers + 1):
            nxt = []
            for cell in frontier:
                for nb in local_neighbours[cell]:
                    if nb not in band:
                        band.add(nb)
                        nxt.append(nb)
            frontier = nxt

        payload = {}
        for cell in sorted(band):
            entry = local[int(gids[cell])]
            payload[int(gids[cell])] = (
                entry.rank,
                entry.centre,
                entry.extents,
                [(nb, shift) for nb, shift, _ in entry.adjacency],
            )

        gathered = self.exchange.share_topology(
            (mesh.geometric_directions(self.config.dimension_tolerance), payload)
        )

        directions = np.zeros(3, dtype=bool)
        for rank, (rank_directions, rank_payload) in enumerate(gathered):
            directions |= np.asarray(rank_directions, dtype=bool)
            if rank == self.comm.rank:
                continue
            for gid, (owner, centre, extents, adj) in rank_payload.items():
                self.topology[gid] = TopologyEntry(
                    rank=owner,
                    centre=np.asarray(centre),
                    extents=np.asarray(extents),
                    adjacency=[(nb, tuple(shift), None) for nb, shift in adj],
                )
        self.topology.update(local)

        self.directions = directions
        self.exponents = basis_exponents(self.order, directions)
        logger.debug(
            f"Rank {self.comm.rank}: shared {len(payload)} band cells, "
            f"directions {directions.astype(int).tolist()}, {self.n_basis} basis functions"
        )

    def initial_stencil(self, gid: int, accept: Callable[[Node], bool] | None = None):
        """
        Breadth-first layers around a target.

        Returns the layer of every node reachable within ``max_layers`` hops
        (restricted to nodes accepted by ``accept``) and the face through which
        each node was first reached from this partition.
        """
        start = (gid, ZERO_SHIFT)
        levels: dict[Node, int] = {start: 0}
        vias: dict[Node, tuple[int, int] | None] = {start: None}
        frontier = [start]

        for depth in range(1, self.config.max_layers + 1):
            nxt = []
            for node in frontier:
                entry = self.topology.get(node[0])
                if entry is None:
                    raise WENOError(
                        f"Connectivity of cell {node[0]} is not available on rank {self.comm.rank}",
                        component="StencilBuilder",
                        suggested_action="Check that coupled patches name existing global cell ids",
                        error_code="MISSING_TOPOLOGY",
                    )
                for nb, shift, via in entry.adjacency:
                    candidate = (nb, _add_shift(node[1], shift))
                    if candidate in levels:
                        continue
                    if accept is not None and not accept(candidate):
                        continue
                    levels[candidate] = depth
                    vias[candidate] = vias[node] if vias[node] is not None else via
                    nxt.append(candidate)
            frontier = nxt

        return levels, vias

    def extend_stencils(self, levels: dict[Node, int], required: int) -> tuple[list[Node], int] | None:
        """
        Smallest layer count, starting at ``initial_layers``, giving ``required`` members.

        Returns the members and the layer count, or None if ``max_layers``
        layers are not enough.
        """
        for depth in range(self.config.initial_layers, self.config.max_layers + 1):
            members = [node for node, level in levels.items() if level <= depth]
            if len(members) >= required:
                return members, depth
        return None

    def sort_stencil(self, gid: int, members: list[Node], max_size: int) -> list[Node]:
        """Order members by distance from the target (ties by id, then shift) and truncate."""
        origin = self.topology[gid].centre

        def key(node: Node):
            distance = float(np.linalg.norm(self._centre(node) - origin))
            return (float(f"{distance:.{DISTANCE_DIGITS - 1}e}"), node[0], node[1])

        return sorted(members, key=key)[:max_size]

    def split_stencil(self, gid: int, jacobian: Jacobian, dims: NDArray) -> list[list[Node]]:
        """
        Sectorial stencils: one per orthant of the active reference directions.

        Each sector grows by layers restricted to its orthant; sectors that
        cannot reach the minimum size are dropped.
        """
        active = np.flatnonzero(dims)
        sectors = []
        for signs in itertools.product((1.0, -1.0), repeat=len(active)):
            signs = np.array(signs)

            def in_orthant(node: Node, signs=signs) -> bool:
                xi = jacobian.to_reference(self._centre(node))[active]
                return bool(np.all(signs * xi >= -SECTOR_TOLERANCE))

            levels, _ = self.initial_stencil(gid, accept=in_orthant)
            found = self.extend_stencils(levels, self.min_size)
            if found is None:
                self.n_dropped_sectors += 1
                logger.debug(f"Dropped sector {signs.astype(int).tolist()} of cell {gid}: {len(levels)} candidates")
                continue

            members = self.sort_stencil(gid, found[0], self.min_size)
            sector_dims = stencil_dims(self._reference(jacobian, members), self.directions, self.config.dimension_tolerance)
            if self.order > 0 and not sector_dims.any():
                self.n_dropped_sectors += 1
                continue
            sectors.append(members)
        return sectors

    def distribute_stencils(self, built: list[_TargetStencils], targets: list[int]) -> dict[Node, tuple]:
        """
        Fetch the geometry of members owned by other ranks (exchange 2).

        Returns halo records ``node -> (rank, via)`` of the remote members.
        """
        rank = self.comm.rank
        needed: dict[int, set[int]] = {}
        for gid in targets:
            owner = self.topology[gid].rank
            if owner != rank:
                needed.setdefault(owner, set()).add(gid)
        for target in built:
            for stencil in target.stencils:
                for gid, _ in stencil:
                    owner = self.topology[gid].rank
                    if owner != rank:
                        needed.setdefault(owner, set()).add(gid)

        self.exchange.request({owner: np.array(sorted(g), dtype=np.int64) for owner, g in needed.items()})
        received, _ = self.exchange.respond(lambda _, gids: [self._local_cell_geometry(int(g)) for g in gids])

        for owner, payloads in received.items():
            for gid, payload in zip(self.exchange.requests[owner], payloads):
                self._remote_geometry[int(gid)] = payload

        return self._halo_records(built, lambda node: self.topology[node[0]].rank != rank)

    def distribute_local_stencils(self, built: list[_TargetStencils]) -> dict[Node, tuple]:
        """Halo records of local members reached through periodic interfaces (no communication)."""
        rank = self.comm.rank
        return self._halo_records(
            built, lambda node: self.topology[node[0]].rank == rank and node[1] != ZERO_SHIFT
        )

    def calc_geom(self, gid: int, jacobian: Jacobian, nodes: list[Node], cache: dict[Node, NDArray]) -> NDArray:
        """Volume moments ``(len(nodes), n_basis)`` of stencil members in the target's reference frame."""
        rows = []
        for node in nodes:
            if node not in cache:
                geometry = self._cell_geometry(node[0]).translated(np.array(node[1]))
                cache[node] = volume_moments(geometry.tetrahedra, jacobian, self.exponents)
            rows.append(cache[node])
        return np.array(rows).reshape(len(nodes), self.n_basis)

    def calc_matrix(self, target: _TargetStencils) -> None:
        """Least-squares operators of every stencil of a target; drops singular sectors."""
        cache: dict[Node, NDArray] = {}
        stencils, dims, fits = [], [], []
        for position, (members, stencil_dim) in enumerate(zip(target.stencils, target.dims)):
            moments = self.calc_geom(target.gid, target.jacobian, members, cache)
            fit = fit_stencil(moments, self.exponents, stencil_dim)
            if fit.is_singular(self.config.singular_tolerance):
                if position == 0:
                    raise SingularStencilError(
                        cell_id=target.gid,
                        rank=fit.rank,
                        n_basis=fit.n_unknowns,
                        condition_number=fit.condition_number,
                    )
                self.n_dropped_sectors += 1
                logger.debug(f"Dropped singular sector of cell {target.gid} (cond {fit.condition_number:.3e})")
                continue
            stencils.append(members)
            dims.append(stencil_dim)
            fits.append(fit)
        target.stencils, target.dims, target.fits = stencils, dims, fits

    # Internals

    def _targets(self) -> list[int]:
        local = [int(g) for g in self.mesh.cell_global_ids]
        known = self.mesh.global_to_local
        remote = sorted({gid for _, _, _, gid, _ in self.mesh.coupled_faces() if gid not in known})
        return local + remote

    def _build_target(self, gid: int) -> _TargetStencils:
        levels, vias = self.initial_stencil(gid)
        found = self.extend_stencils(levels, self.min_size)
        if found is None:
            raise StencilConstructionError(
                cell_id=gid,
                stencil_size=len(levels),
                required_size=self.min_size,
                layers_used=self.config.max_layers,
                polynomial_order=self.order,
            )

        central = self.sort_stencil(gid, found[0], self.max_size)
        jacobian = self.topology[gid].jacobian()
        dims = stencil_dims(self._reference(jacobian, central), self.directions, self.config.dimension_tolerance)
        if self.order > 0 and not dims.any():
            raise DimensionalityError(gid, self.order, tuple(int(d) for d in dims))

        stencils = [central]
        if self.config.sectorial and self.order > 0:
            stencils.extend(self.split_stencil(gid, jacobian, dims))

        all_dims = [
            stencil_dims(self._reference(jacobian, s), self.directions, self.config.dimension_tolerance)
            for s in stencils
        ]
        return _TargetStencils(gid=gid, jacobian=jacobian, stencils=stencils, dims=all_dims, fits=[], vias=vias)

    def _centre(self, node: Node) -> NDArray:
        return self.topology[node[0]].centre + np.array(node[1])

    def _reference(self, jacobian: Jacobian, nodes: list[Node]) -> NDArray:
        return jacobian.to_reference(np.array([self._centre(n) for n in nodes]).reshape(-1, 3))

    def _local_cell_geometry(self, gid: int) -> CellGeometry:
        if gid not in self._local_geometry:
            self._local_geometry[gid] = cell_geometry(self.mesh, self.mesh.global_to_local[gid])
        return self._local_geometry[gid]

    def _cell_geometry(self, gid: int) -> CellGeometry:
        if gid in self.mesh.global_to_local:
            return self._local_cell_geometry(gid)
        return self._remote_geometry[gid]

    def _halo_records(self, built: list[_TargetStencils], select: Callable[[Node], bool]) -> dict[Node, tuple]:
        records: dict[Node, tuple] = {}
        for target in built:
            for stencil in target.stencils:
                for node in stencil:
                    if node not in records and select(node):
                        records[node] = (self.topology[node[0]].rank, target.vias.get(node))
        return records

    def _assemble(self, targets: list[int], built: list[_TargetStencils], halos: dict[Node, tuple]) -> WENOGeometry:
        mesh = self.mesh
        exps = self.exponents
        n_basis = self.n_basis
        n_targets = len(targets)
        index_of = {gid: i for i, gid in enumerate(targets)}

        target_stencil_ptr = [0]
        stencil_member_ptr = [0]
        member_gids, member_shifts, member_centres = [], [], []
        dims_rows, ls_rows = [], []
        conditions = [1.0]

        extents = np.zeros((n_targets, 3))
        ref_points = np.zeros((n_targets, 3))
        vol_moments = np.zeros((n_targets, n_basis))
        oscillation = np.zeros((n_targets, n_basis, n_basis))
        limiter_ptr = [0]
        limiter_rows = []

        for t, target in enumerate(built):
            for members, dims, fit in zip(target.stencils, target.dims, target.fits):
                for node in members:
                    member_gids.append(node[0])
                    member_shifts.append(node[1])
                    member_centres.append(self._centre(node))
                stencil_member_ptr.append(stencil_member_ptr[-1] + len(members))
                dims_rows.append(dims)
                ls_rows.append(fit.operator.T)
            target_stencil_ptr.append(target_stencil_ptr[-1] + len(target.stencils))
            conditions.append(target.fits[0].condition_number)

            jac = target.jacobian
            geometry = self._cell_geometry(target.gid)
            extents[t] = np.diag(jac.matrix)
            ref_points[t] = jac.ref_point
            vol_moments[t] = volume_moments(geometry.tetrahedra, jac, exps)
            B = oscillation_matrix(geometry.tetrahedra, jac, exps, self.order)
            active = active_basis_mask(exps, target.dims[0])
            oscillation[t] = B * np.outer(active, active)

            for tris, physical in zip(geometry.face_triangles, geometry.face_physical):
                if not physical:
                    limiter_rows.append(face_moments(tris, jac, exps) - vol_moments[t])
            limiter_ptr.append(len(limiter_rows))

        # Face evaluation rows
        face_owner_target = np.full(mesh.n_faces, -1, dtype=np.int64)
        face_neighbour_target = np.full(mesh.n_faces, -1, dtype=np.int64)
        face_owner_moments = np.zeros((mesh.n_faces, n_basis))
        face_neighbour_moments = np.zeros((mesh.n_faces, n_basis))

        def row(tris, t):
            return face_moments(tris, built[t].jacobian, exps) - vol_moments[t]

        for f in range(mesh.n_internal_faces):
            o, n = int(mesh.owner[f]), int(mesh.neighbour[f])
            tris = mesh.face_triangles(f)
            face_owner_target[f], face_owner_moments[f] = o, row(tris, o)
            face_neighbour_target[f], face_neighbour_moments[f] = n, row(tris, n)

        for _, _, f, neighbour_gid, translation in mesh.coupled_faces():
            o = int(mesh.owner[f])
            n = index_of[neighbour_gid]
            tris = mesh.face_triangles(f)
            face_owner_target[f], face_owner_moments[f] = o, row(tris, o)
            face_neighbour_target[f], face_neighbour_moments[f] = n, row(tris - translation, n)

        halo_nodes = sorted(halos)
        request_ranks, request_ptr, request_gids = pack_map(self.exchange.requests)
        send_ranks, send_ptr, send_gids = pack_map(self.exchange.sends)

        def via_of(node, position):
            via = halos[node][1]
            return -1 if via is None else via[position]

        return WENOGeometry(
            order=self.order,
            rank=mesh.rank,
            n_ranks=mesh.n_ranks,
            fingerprint=mesh.fingerprint(),
            config_digest=config_digest(self.config),
            n_cells=mesh.n_cells,
            n_dropped_sectors=self.n_dropped_sectors,
            max_condition_number=float(max(conditions)),
            exponents=exps,
            target_gids=np.array(targets, dtype=np.int64),
            target_stencil_ptr=np.array(target_stencil_ptr, dtype=np.int64),
            stencil_member_ptr=np.array(stencil_member_ptr, dtype=np.int64),
            member_gids=np.array(member_gids, dtype=np.int64),
            member_shifts=np.array(member_shifts, dtype=float).reshape(-1, 3),
            member_centres=np.array(member_centres, dtype=float).reshape(-1, 3),
            stencil_dims=np.array(dims_rows, dtype=np.int8).reshape(-1, 3),
            ls_coefficients=np.concatenate(ls_rows) if ls_rows else np.empty((0, n_basis)),
            jacobian_extents=extents,
            ref_points=ref_points,
            volume_moments=vol_moments,
            oscillation=oscillation,
            face_owner_target=face_owner_target,
            face_neighbour_target=face_neighbour_target,
            face_owner_moments=face_owner_moments,
            face_neighbour_moments=face_neighbour_moments,
            limiter_ptr=np.array(limiter_ptr, dtype=np.int64),
            limiter_moments=np.array(limiter_rows, dtype=float).reshape(len(limiter_rows), n_basis),
            halo_gids=np.array([n[0] for n in halo_nodes], dtype=np.int64),
            halo_ranks=np.array([halos[n][0] for n in halo_nodes], dtype=np.int64),
            halo_shifts=np.array([n[1] for n in halo_nodes], dtype=float).reshape(-1, 3),
            halo_centres=np.array([self._centre(n) for n in halo_nodes], dtype=float).reshape(-1, 3),
            halo_patches=np.array([via_of(n, 0) for n in halo_nodes], dtype=np.int64),
            halo_faces=np.array([via_of(n, 1) for n in halo_nodes], dtype=np.int64),
            request_ranks=request_ranks,
            request_ptr=request_ptr,
            request_gids=request_gids,
            send_ranks=send_ranks,
            send_ptr=send_ptr,
            send_gids=send_gids,
        )

"""
Two-phase halo exchange between partitions.

Phase 1 (``request``) tells every owning rank which of its cells this rank
needs and learns, in turn, which local cells every other rank needs. Phase 2
(``respond``) ships one payload per requesting rank, built by a caller-supplied
provider, optionally together with a small object broadcast to all ranks.
Each phase is a single ``alltoall`` and therefore a single synchronisation
point; nothing is consumed before it completes.

The request/send maps are plain arrays, so a stencil build can persist them
and later reconstructions rebuild the exchange with :meth:`HaloExchange.from_maps`
and only run the response phase.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np

from weno_fv.utils.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from numpy.typing import NDArray

    from .communicator import Communicator

logger = get_logger(__name__)


class HaloExchange:
    """
    Request/response exchange of per-cell data keyed by global cell id.

    Attributes
    ----------
    requests : dict[int, NDArray]
        Global ids this rank receives from each owning rank, in arrival order
    sends : dict[int, NDArray]
        Global ids of local cells this rank ships to each requesting rank
    """

    def __init__(self, comm: Communicator):
        self.comm = comm
        self.requests: dict[int, NDArray] = {}
        self.sends: dict[int, NDArray] = {}

    @classmethod
    def from_maps(
        cls,
        comm: Communicator,
        requests: Mapping[int, NDArray],
        sends: Mapping[int, NDArray],
    ) -> HaloExchange:
        """Rebuild an exchange whose request phase has already run."""
        exchange = cls(comm)
        exchange.requests = {int(r): np.asarray(g, dtype=np.int64) for r, g in requests.items()}
        exchange.sends = {int(r): np.asarray(g, dtype=np.int64) for r, g in sends.items()}
        return exchange

    def share_topology(self, obj: Any) -> list[Any]:
        """Allgather used to share partition-boundary topology at build time."""
        return self.comm.allgather(obj)

    def request(self, needed_by_owner: Mapping[int, NDArray]) -> dict[int, NDArray]:
        """
        Phase 1: announce which global ids are needed from which owner.

        Parameters
        ----------
        needed_by_owner : mapping rank -> array of global ids
            Ids owned by other ranks that this rank needs

        Returns
        -------
        dict[int, NDArray]
            Send map: local global ids each other rank needs from this rank
        """
        size = self.comm.size
        outgoing: list[NDArray] = [np.empty(0, dtype=np.int64) for _ in range(size)]
        for owner, gids in needed_by_owner.items():
            if owner == self.comm.rank:
                raise ValueError(f"Rank {owner} cannot request its own cells")
            outgoing[owner] = np.asarray(gids, dtype=np.int64)

        incoming = self.comm.alltoall(outgoing)

        self.requests = {r: outgoing[r] for r in range(size) if len(outgoing[r])}
        self.sends = {r: np.asarray(incoming[r], dtype=np.int64) for r in range(size) if len(incoming[r])}
        logger.debug(
            f"Rank {self.comm.rank}: halo request to {sorted(self.requests)}, "
            f"serving {sum(len(g) for g in self.sends.values())} cells to {sorted(self.sends)}"
        )
        return self.sends

    def respond(
        self,
        provider: Callable[[int, NDArray], Any],
        broadcast: Any = None,
    ) -> tuple[dict[int, Any], list[Any]]:
        """
        Phase 2: ship the requested data.

        Parameters
        ----------
        provider : callable (rank, gids) -> payload
            Builds the payload for the ids ``rank`` requested from this rank
        broadcast : object, optional
            Small object delivered to every rank alongside the payloads

        Returns
        -------
        received : dict[int, object]
            Payload from every rank this rank requested data from, aligned
            with ``requests[rank]``
        broadcasts : list
            The broadcast object of every rank, in rank order
        """
        size = self.comm.size
        outgoing = [(provider(r, self.sends[r]) if r in self.sends else None, broadcast) for r in range(size)]

        incoming = self.comm.alltoall(outgoing)

        received = {r: incoming[r][0] for r in self.requests}
        broadcasts = [incoming[r][1] for r in range(size)]
        return received, broadcasts

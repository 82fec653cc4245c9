"""
Collective communication between mesh partitions.

The reconstruction code only needs three collectives: ``alltoall`` of one
Python object per destination rank, ``allgather`` of one object per rank, and
``barrier``. Three transports implement them:

- ``SerialCommunicator``: a single partition, no communication
- ``InProcessCommunicator``: partitions on threads of one process, used for
  testing decomposed runs without MPI
- ``MPICommunicator``: mpi4py (optional dependency)
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from weno_fv.utils.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger(__name__)


class Communicator(ABC):
    """Minimal collective-communication interface."""

    @property
    @abstractmethod
    def rank(self) -> int: ...

    @property
    @abstractmethod
    def size(self) -> int: ...

    @abstractmethod
    def alltoall(self, send: list[Any]) -> list[Any]:
        """Send ``send[r]`` to rank ``r``; return the object received from every rank."""

    @abstractmethod
    def allgather(self, obj: Any) -> list[Any]:
        """Return the object contributed by every rank, in rank order."""

    @abstractmethod
    def barrier(self) -> None: ...

    def _check_send(self, send: list[Any]) -> None:
        if len(send) != self.size:
            raise ValueError(f"alltoall needs one entry per rank ({self.size}), got {len(send)}")


class SerialCommunicator(Communicator):
    """Communicator of a single, undecomposed partition."""

    @property
    def rank(self) -> int:
        return 0

    @property
    def size(self) -> int:
        return 1

    def alltoall(self, send: list[Any]) -> list[Any]:
        self._check_send(send)
        return list(send)

    def allgather(self, obj: Any) -> list[Any]:
        return [obj]

    def barrier(self) -> None:
        return None


class InProcessGroup:
    """
    Shared state of ``size`` thread-based partitions.

    Objects are exchanged by reference through a slot table guarded by a
    ``threading.Barrier``. Aborting the group breaks the barrier, so ranks
    blocked in a collective fail fast when another rank has raised.
    """

    def __init__(self, size: int):
        if size < 1:
            raise ValueError(f"Group size must be positive, got {size}")
        self.size = size
        self._barrier = threading.Barrier(size)
        self._slots: list[Any] = [None] * size

    def communicator(self, rank: int) -> InProcessCommunicator:
        return InProcessCommunicator(self, rank)

    def abort(self) -> None:
        self._barrier.abort()

    def _exchange(self, rank: int, obj: Any) -> list[Any]:
        self._slots[rank] = obj
        self._barrier.wait()
        gathered = list(self._slots)
        # second phase keeps slots stable until every rank has read them
        self._barrier.wait()
        return gathered


class InProcessCommunicator(Communicator):
    """One rank of an :class:`InProcessGroup`."""

    def __init__(self, group: InProcessGroup, rank: int):
        self._group = group
        self._rank = rank

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def size(self) -> int:
        return self._group.size

    def alltoall(self, send: list[Any]) -> list[Any]:
        self._check_send(send)
        table = self._group._exchange(self._rank, list(send))
        return [table[source][self._rank] for source in range(self.size)]

    def allgather(self, obj: Any) -> list[Any]:
        return self._group._exchange(self._rank, obj)

    def barrier(self) -> None:
        self._group._barrier.wait()


class MPICommunicator(Communicator):
    """
    Communicator backed by mpi4py.

    Parameters
    ----------
    comm : mpi4py.MPI.Comm, optional
        Defaults to ``MPI.COMM_WORLD``
    """

    def __init__(self, comm=None):
        try:
            from mpi4py import MPI
        except ImportError as e:
            raise ImportError("mpi4py is required for MPI runs. Install with: pip install weno-fv[mpi]") from e

        self._comm = comm if comm is not None else MPI.COMM_WORLD

    @property
    def rank(self) -> int:
        return self._comm.Get_rank()

    @property
    def size(self) -> int:
        return self._comm.Get_size()

    def alltoall(self, send: list[Any]) -> list[Any]:
        self._check_send(send)
        return self._comm.alltoall(send)

    def allgather(self, obj: Any) -> list[Any]:
        return self._comm.allgather(obj)

    def barrier(self) -> None:
        self._comm.Barrier()


def run_partitioned(fn: Callable[[Communicator], Any], size: int) -> list[Any]:
    """
    Run ``fn(comm)`` on ``size`` thread-based partitions.

    Parameters
    ----------
    fn : callable
        Per-rank work; receives the rank's communicator
    size : int
        Number of partitions

    Returns
    -------
    list
        Return value of every rank, in rank order

    Raises
    ------
    Exception
        The first exception raised by any rank (ranks that only failed
        because the group was aborted are not reported)
    """
    group = InProcessGroup(size)
    results: list[Any] = [None] * size
    errors: list[BaseException | None] = [None] * size

    def worker(rank: int):
        try:
            results[rank] = fn(group.communicator(rank))
        except BaseException as e:
            errors[rank] = e
            group.abort()

    threads = [threading.Thread(target=worker, args=(rank,), name=f"weno-rank-{rank}") for rank in range(size)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    primary = [e for e in errors if e is not None and not isinstance(e, threading.BrokenBarrierError)]
    if primary:
        logger.error(f"Partitioned run failed on {len(primary)} of {size} ranks")
        raise primary[0]
    broken = [e for e in errors if e is not None]
    if broken:
        raise broken[0]
    return results

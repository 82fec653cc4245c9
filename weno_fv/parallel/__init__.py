"""Partition communication: communicators and the two-phase halo exchange."""

from __future__ import annotations

from .communicator import (
    Communicator,
    InProcessCommunicator,
    InProcessGroup,
    MPICommunicator,
    SerialCommunicator,
    run_partitioned,
)
from .halo_exchange import HaloExchange

__all__ = [
    "Communicator",
    "HaloExchange",
    "InProcessCommunicator",
    "InProcessGroup",
    "MPICommunicator",
    "SerialCommunicator",
    "run_partitioned",
]

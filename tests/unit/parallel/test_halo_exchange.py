"""
Unit tests for weno_fv/parallel (communicators and the two-phase halo exchange).
"""

import threading

import pytest

import numpy as np

from weno_fv.parallel import HaloExchange, InProcessGroup, SerialCommunicator, run_partitioned


class TestCommunicators:
    """Test the serial and thread-based communicators."""

    def test_serial(self):
        comm = SerialCommunicator()
        assert comm.rank == 0
        assert comm.size == 1
        assert comm.allgather("x") == ["x"]
        assert comm.alltoall(["y"]) == ["y"]

    def test_alltoall_needs_one_entry_per_rank(self):
        with pytest.raises(ValueError, match="one entry per rank"):
            SerialCommunicator().alltoall([1, 2])

    def test_invalid_group_size(self):
        with pytest.raises(ValueError):
            InProcessGroup(0)

    def test_allgather(self):
        results = run_partitioned(lambda comm: comm.allgather(comm.rank * 10), 3)
        assert results == [[0, 10, 20]] * 3

    def test_alltoall(self):
        def work(comm):
            return comm.alltoall([(comm.rank, dest) for dest in range(comm.size)])

        results = run_partitioned(work, 3)
        for rank, received in enumerate(results):
            assert received == [(source, rank) for source in range(3)]

    def test_repeated_collectives(self):
        def work(comm):
            total = 0
            for step in range(5):
                total += sum(comm.allgather(step + comm.rank))
            return total

        assert run_partitioned(work, 2) == [sum(2 * s + 1 for s in range(5))] * 2

    def test_failure_propagates(self):
        def work(comm):
            if comm.rank == 1:
                raise RuntimeError("rank 1 failed")
            comm.allgather(comm.rank)

        with pytest.raises(RuntimeError, match="rank 1 failed"):
            run_partitioned(work, 3)

    def test_abort_breaks_barrier(self):
        group = InProcessGroup(2)
        group.abort()
        with pytest.raises(threading.BrokenBarrierError):
            group.communicator(0).allgather(0)


class TestHaloExchange:
    """Test the request/response exchange."""

    def test_request_and_respond(self):
        """Each rank owns gids 10 * rank + (0..4) and needs one cell of every other rank."""

        def work(comm):
            exchange = HaloExchange(comm)
            needed = {r: np.array([10 * r + comm.rank]) for r in range(comm.size) if r != comm.rank}
            sends = exchange.request(needed)
            received, broadcasts = exchange.respond(
                lambda rank, gids: [f"cell{g}" for g in gids], broadcast=("rank", comm.rank)
            )
            return sends, received, broadcasts

        results = run_partitioned(work, 3)
        for rank, (sends, received, broadcasts) in enumerate(results):
            assert sorted(sends) == [r for r in range(3) if r != rank]
            for requester, gids in sends.items():
                np.testing.assert_array_equal(gids, [10 * rank + requester])
            for owner, payload in received.items():
                assert payload == [f"cell{10 * owner + rank}"]
            assert broadcasts == [("rank", r) for r in range(3)]

    def test_requests_are_optional(self):
        def work(comm):
            exchange = HaloExchange(comm)
            needed = {0: np.array([1, 2])} if comm.rank == 1 else {}
            exchange.request(needed)
            received, _ = exchange.respond(lambda rank, gids: gids * 2)
            return exchange.sends, received

        (sends0, received0), (sends1, received1) = run_partitioned(work, 2)
        np.testing.assert_array_equal(sends0[1], [1, 2])
        assert received0 == {}
        assert sends1 == {}
        np.testing.assert_array_equal(received1[0], [2, 4])

    def test_own_cells_rejected(self):
        with pytest.raises(ValueError, match="own cells"):
            HaloExchange(SerialCommunicator()).request({0: np.array([1])})

    def test_from_maps_skips_request_phase(self):
        def work(comm):
            other = 1 - comm.rank
            exchange = HaloExchange.from_maps(comm, {other: [other]}, {other: [comm.rank]})
            received, _ = exchange.respond(lambda rank, gids: float(gids[0]) + 0.5)
            return received

        assert run_partitioned(work, 2) == [{1: 1.5}, {0: 0.5}]

    def test_share_topology(self):
        results = run_partitioned(lambda comm: HaloExchange(comm).share_topology({comm.rank: "band"}), 2)
        assert results[0] == [{0: "band"}, {1: "band"}]

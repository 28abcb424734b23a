"""
Tests for the block-scanning loop and the cursor.
"""

import threading

import pytest

from permablob.cancellation import CancellationToken
from permablob.cursor import MonitorCursor
from permablob.errors import MalformedResponseError, PersistenceError, TransientNetworkError
from permablob.monitor import LoopState, ScanLoop, ScanSettings, compute_range, partition

from helpers import (
    INBOX,
    BarrierChain,
    CancellingChain,
    FakeChain,
    MemoryCursorStore,
    blob_tx,
    make_block,
)


def make_loop(chain, store, cursor_value=0, **overrides):
    settings = ScanSettings(**{
        "contract_allow_list": (INBOX,),
        "l2_source": "base",
        "confirmations": 3,
        "batch_size": 4,
        "scan_window": 10,
        "poll_interval": 0.01,
        "error_backoff": 0.01,
        **overrides,
    })
    emitted = []
    loop = ScanLoop(chain, MonitorCursor(store, cursor_value), emitted.append, settings)
    return loop, emitted


class TestRangeMath:
    """Test range selection and partitioning."""

    def test_caught_up(self):
        assert compute_range(197, 200, 3, 50) is None
        assert compute_range(198, 200, 3, 50) is None

    def test_window_bounds_range(self):
        assert compute_range(0, 1_000, 3, 100) == (1, 100)

    def test_target_bounds_range(self):
        assert compute_range(90, 100, 3, 100) == (91, 97)

    def test_partition(self):
        assert partition(1, 10, 4) == [(1, 4), (5, 8), (9, 10)]
        assert partition(5, 5, 4) == [(5, 5)]


class TestScanLoopIteration:
    """Test a single iteration of the scan loop."""

    def test_emits_jobs_and_advances(self):
        chain = FakeChain(head=13, blocks={
            2: make_block(2, [blob_tx("0x02")]),
            7: make_block(7, [blob_tx("0x07a"), blob_tx("0x07b")]),
        })
        store = MemoryCursorStore()
        loop, emitted = make_loop(chain, store)

        outcome = loop.run_once()

        assert (outcome.from_block, outcome.to_block) == (1, 10)
        assert outcome.advanced is True
        assert outcome.jobs_emitted == 3
        assert [j.transaction_hash for j in emitted] == ["0x02", "0x07a", "0x07b"]
        assert loop.cursor.value == 10
        assert store.value == 10
        assert sorted(set(chain.get_block_calls)) == list(range(1, 11))

    def test_caught_up_does_nothing(self):
        chain = FakeChain(head=13)
        store = MemoryCursorStore(10)
        loop, emitted = make_loop(chain, store, cursor_value=10)

        outcome = loop.run_once()

        assert outcome.caught_up is True
        assert outcome.advanced is False
        assert chain.get_block_calls == []
        assert emitted == []

    def test_block_failure_keeps_cursor(self):
        chain = FakeChain(head=13, blocks={2: make_block(2, [blob_tx("0x02")])})
        chain.failures[6] = 1
        store = MemoryCursorStore()
        loop, emitted = make_loop(chain, store)

        with pytest.raises(TransientNetworkError):
            loop.run_once()

        assert loop.cursor.value == 0
        assert store.writes == []
        assert emitted == []

    def test_retry_after_failure_reprocesses_same_range(self):
        chain = FakeChain(head=13, blocks={2: make_block(2, [blob_tx("0x02")])})
        chain.failures[6] = 1
        store = MemoryCursorStore()
        loop, emitted = make_loop(chain, store)

        with pytest.raises(TransientNetworkError):
            loop.run_once()
        outcome = loop.run_once()

        assert (outcome.from_block, outcome.to_block) == (1, 10)
        assert [j.transaction_hash for j in emitted] == ["0x02"]
        assert store.value == 10

    def test_persistence_failure_keeps_cursor(self):
        chain = FakeChain(head=13)
        store = MemoryCursorStore()
        store.fail = True
        loop, _ = make_loop(chain, store)

        with pytest.raises(PersistenceError):
            loop.run_once()
        assert loop.cursor.value == 0

    def test_head_failure_propagates(self):
        chain = FakeChain(head=TransientNetworkError("rpc down"))
        loop, _ = make_loop(chain, MemoryCursorStore())
        with pytest.raises(TransientNetworkError):
            loop.run_once()

    def test_sub_batch_blocks_fetched_concurrently(self):
        """All blocks of a sub-batch are in flight together."""
        chain = BarrierChain(head=100, parties=4)
        store = MemoryCursorStore()
        loop, _ = make_loop(chain, store, batch_size=4, scan_window=8)

        outcome = loop.run_once()

        assert (outcome.from_block, outcome.to_block) == (1, 8)
        assert chain.max_in_flight == 4
        assert store.writes == [8]

    def test_unhydrated_block_refetched(self):
        chain = FakeChain(head=5)
        chain.responses[1] = [
            make_block(1, ["0x" + "11" * 32]),
            make_block(1, [blob_tx("0x01")]),
        ]
        loop, emitted = make_loop(chain, MemoryCursorStore(), scan_window=1)

        loop.run_once()

        assert chain.get_block_calls == [1, 1]
        assert [j.transaction_hash for j in emitted] == ["0x01"]

    def test_persistently_unhydrated_block_fails_range(self):
        chain = FakeChain(head=5)
        stub = make_block(1, ["0x" + "11" * 32])
        chain.responses[1] = [stub, stub]
        store = MemoryCursorStore()
        loop, _ = make_loop(chain, store, scan_window=1)

        with pytest.raises(MalformedResponseError):
            loop.run_once()
        assert store.writes == []


class TestScanLoopRun:
    """Test the long-running loop."""

    def test_cursor_never_regresses(self):
        chain = FakeChain(head=30)
        store = MemoryCursorStore()
        loop, _ = make_loop(chain, store)

        values = []
        for head in (30, 25, 40):
            chain.head = head
            loop.run_once()
            values.append(loop.cursor.value)

        assert values == sorted(values)
        assert store.writes == sorted(store.writes)

    def test_cancellation_stops_loop(self):
        chain = FakeChain(head=3)
        token = CancellationToken()
        settings = ScanSettings(contract_allow_list=(INBOX,), l2_source="base", poll_interval=5.0)
        loop = ScanLoop(chain, MonitorCursor(MemoryCursorStore(), 0), lambda job: None, settings, token)

        thread = threading.Thread(target=loop.run)
        thread.start()
        token.cancel()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert loop.state == LoopState.CANCELLED

    def test_errors_are_retried_after_backoff(self):
        chain = FakeChain(head=13)
        chain.failures[3] = 2
        token = CancellationToken()

        class StopAfterCommit(MemoryCursorStore):
            def set(self, block_number):
                super().set(block_number)
                token.cancel()

        store = StopAfterCommit()
        settings = ScanSettings(
            contract_allow_list=(INBOX,), l2_source="base", batch_size=4,
            scan_window=10, poll_interval=0.01, error_backoff=0.01,
        )
        loop = ScanLoop(chain, MonitorCursor(store, 0), lambda job: None, settings, token)
        loop.run()

        assert store.writes == [10]

    def test_cancellation_lets_in_flight_range_commit(self):
        """A cancel arriving mid-range still emits the range and persists the cursor."""
        token = CancellationToken()
        chain = CancellingChain(head=13, token=token)
        chain.blocks[4] = make_block(4, [blob_tx("0x04")])
        store = MemoryCursorStore()
        emitted = []
        settings = ScanSettings(
            contract_allow_list=(INBOX,), l2_source="base", batch_size=4,
            scan_window=10, poll_interval=5.0, error_backoff=5.0,
        )
        loop = ScanLoop(chain, MonitorCursor(store, 0), emitted.append, settings, token)

        loop.run()

        assert store.writes == [10]
        assert [j.transaction_hash for j in emitted] == ["0x04"]
        assert sorted(set(chain.get_block_calls)) == list(range(1, 11))
        assert loop.state == LoopState.CANCELLED


class TestMonitorCursor:
    """Test cursor initialization and advancement."""

    def test_resumes_persisted_value(self):
        chain = FakeChain(head=1_000)
        cursor = MonitorCursor.initialize(MemoryCursorStore(500), chain, lookback=10)
        assert cursor.value == 500
        assert chain.head_calls == 0

    def test_lookback_from_head(self):
        store = MemoryCursorStore()
        cursor = MonitorCursor.initialize(store, FakeChain(head=1_000), lookback=10)
        assert cursor.value == 990
        assert store.writes == [990]

    def test_lookback_larger_than_chain(self):
        cursor = MonitorCursor.initialize(MemoryCursorStore(), FakeChain(head=5), lookback=10)
        assert cursor.value == 0

    def test_no_lookback_starts_at_zero(self):
        chain = FakeChain(head=1_000)
        cursor = MonitorCursor.initialize(MemoryCursorStore(), chain)
        assert cursor.value == 0
        assert chain.head_calls == 0

    def test_advance_persists_first(self):
        store = MemoryCursorStore()
        cursor = MonitorCursor(store, 5)
        cursor.advance(8)
        assert store.writes == [8]
        assert cursor.value == 8

    def test_advance_rejects_regression(self):
        cursor = MonitorCursor(MemoryCursorStore(), 5)
        with pytest.raises(ValueError):
            cursor.advance(4)
        assert cursor.value == 5

    def test_advance_to_same_value_is_noop(self):
        store = MemoryCursorStore()
        MonitorCursor(store, 5).advance(5)
        assert store.writes == []

    def test_failed_write_leaves_value(self):
        store = MemoryCursorStore()
        store.fail = True
        cursor = MonitorCursor(store, 5)
        with pytest.raises(PersistenceError):
            cursor.advance(9)
        assert cursor.value == 5

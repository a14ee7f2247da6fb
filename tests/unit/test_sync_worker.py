"""
Unit tests for SyncWorker.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from studyflow.errors import RemoteStoreError
from studyflow.persistence.state_store import StateStore
from studyflow.sync.outbound_queue import OutboundQueue, RemoteWrite
from studyflow.sync.remote_store import InMemoryRemoteStore
from studyflow.sync.sync_worker import SyncStats, SyncWorker


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue(clock):
    store = StateStore(":memory:")
    yield OutboundQueue(store, max_retries=3, backoff_base_seconds=1.0, clock=clock)
    store.close()


@pytest.fixture
def remote():
    return InMemoryRemoteStore()


class TestDrain:
    @pytest.mark.asyncio
    async def test_delivers_in_order(self, queue, remote):
        queue.enqueue(RemoteWrite.upsert("subjects", "math", {"name": "v1"}))
        queue.enqueue(RemoteWrite.upsert("subjects", "math", {"name": "v2"}))
        queue.enqueue(RemoteWrite.upsert("logs", "l1", {"duration": 10}))
        worker = SyncWorker(queue, remote)

        first = await worker.drain()
        second = await worker.drain()

        assert first.delivered == 2
        assert second.delivered == 1
        assert remote.get("subjects", "math") == {"name": "v2"}
        assert remote.get("logs", "l1") == {"duration": 10}
        assert queue.pending_count() == 0

    @pytest.mark.asyncio
    async def test_delete_is_delivered(self, queue, remote):
        await remote.upsert("logs", "l1", {"duration": 10})
        queue.enqueue(RemoteWrite.delete("logs", "l1"))

        await SyncWorker(queue, remote).drain()

        assert remote.get("logs", "l1") is None

    @pytest.mark.asyncio
    async def test_retryable_failure_is_retried_later(self, queue, remote, clock):
        queue.enqueue(RemoteWrite.upsert("subjects", "math", {"name": "v1"}))
        remote.upsert = AsyncMock(side_effect=[RemoteStoreError("timeout"), None])
        worker = SyncWorker(queue, remote)

        stats = await worker.drain()
        assert stats.retried == 1
        assert stats.error_details == ["subjects/math: timeout"]

        assert (await worker.drain()).delivered == 0
        clock.now += 1.0
        assert (await worker.drain()).delivered == 1
        assert queue.pending_count() == 0

    @pytest.mark.asyncio
    async def test_non_retryable_failure_is_parked(self, queue, remote):
        queue.enqueue(RemoteWrite.upsert("subjects", "math", {}))
        remote.upsert = AsyncMock(side_effect=RemoteStoreError("rejected", retryable=False))

        stats = await SyncWorker(queue, remote).drain()

        assert stats.failed == 1
        assert len(queue.get_failed()) == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_counts_as_retry(self, queue, remote):
        queue.enqueue(RemoteWrite.upsert("subjects", "math", {}))
        remote.upsert = AsyncMock(side_effect=KeyError("bad"))

        stats = await SyncWorker(queue, remote).drain()

        assert stats.retried == 1
        assert queue.pending_count() == 1

    @pytest.mark.asyncio
    async def test_retries_exhaust_into_failed(self, queue, remote, clock):
        queue.enqueue(RemoteWrite.upsert("subjects", "math", {}))
        remote.upsert = AsyncMock(side_effect=RemoteStoreError("timeout"))
        worker = SyncWorker(queue, remote)

        results = []
        for _ in range(3):
            results.append(await worker.drain())
            clock.now += 100

        assert [(s.retried, s.failed) for s in results] == [(1, 0), (1, 0), (0, 1)]


class TestBackgroundLoop:
    @pytest.mark.asyncio
    async def test_notify_wakes_loop(self, queue, remote):
        worker = SyncWorker(queue, remote, poll_interval_seconds=60)
        worker.start()
        await asyncio.sleep(0)

        queue.enqueue(RemoteWrite.upsert("subjects", "math", {"name": "x"}))
        worker.notify()
        for _ in range(100):
            if remote.get("subjects", "math") is not None:
                break
            await asyncio.sleep(0)

        assert remote.get("subjects", "math") == {"name": "x"}
        await worker.stop(flush=False)
        assert not worker.running

    @pytest.mark.asyncio
    async def test_stop_flushes(self, queue, remote):
        worker = SyncWorker(queue, remote, poll_interval_seconds=60)
        queue.enqueue(RemoteWrite.upsert("logs", "l1", {}))
        queue.enqueue(RemoteWrite.upsert("logs", "l1", {"duration": 5}))

        await worker.stop()

        assert remote.get("logs", "l1") == {"duration": 5}
        assert queue.pending_count() == 0


class TestSyncStats:
    def test_to_dict(self):
        stats = SyncStats()
        stats.delivered = 3
        stats.error_details = [f"e{i}" for i in range(12)]
        stats.finish()

        data = stats.to_dict()

        assert data["delivered"] == 3
        assert len(data["error_details"]) == 10
        assert data["duration_seconds"] >= 0


class TestRequeueAfterNewerWrite:
    @pytest.mark.asyncio
    async def test_requeue_does_not_overwrite_newer_document(self, queue, remote):
        queue.enqueue(RemoteWrite.upsert("subjects", "math", {"name": "v1"}))
        original_upsert = remote.upsert
        remote.upsert = AsyncMock(side_effect=RemoteStoreError("rejected", retryable=False))
        worker = SyncWorker(queue, remote)
        await worker.drain()

        remote.upsert = original_upsert
        queue.enqueue(RemoteWrite.upsert("subjects", "math", {"name": "v2"}))
        await worker.drain()
        queue.requeue_failed()
        await worker.drain()

        assert remote.get("subjects", "math") == {"name": "v2"}
        assert queue.pending_count() == 0


class HangingRemote(InMemoryRemoteStore):
    """A remote whose writes never complete."""

    def __init__(self):
        super().__init__()
        self.never = asyncio.Event()

    async def upsert(self, collection, doc_id, data):
        await self.never.wait()


class TestBoundedFlush:
    @pytest.mark.asyncio
    async def test_stop_returns_when_flush_times_out(self, queue):
        queue.enqueue(RemoteWrite.upsert("subjects", "math", {"name": "x"}))
        worker = SyncWorker(queue, HangingRemote(), poll_interval_seconds=60)

        await asyncio.wait_for(worker.stop(flush_timeout_seconds=0.05), timeout=2)

        assert queue.pending_count() == 1
        assert not worker.running

"""
Sync Worker - drains the outbound queue into the remote store.

Runs as a single background asyncio task. Delivery failures never reach
the caller that produced the write; they are logged, retried with
backoff, and finally parked as failed.
"""

from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime
from typing import Any

from loguru import logger

from studyflow.errors import RemoteStoreError
from studyflow.sync.outbound_queue import OutboundQueue, QueuedWrite, WriteOperation
from studyflow.sync.remote_store import RemoteStore


class SyncStats:
    """Statistics for one drain pass."""

    def __init__(self) -> None:
        self.delivered = 0
        self.retried = 0
        self.failed = 0
        self.start_time = datetime.now()
        self.end_time: datetime | None = None
        self.error_details: list[str] = []

    def finish(self) -> None:
        self.end_time = datetime.now()

    def duration_seconds(self) -> float:
        end = self.end_time or datetime.now()
        return (end - self.start_time).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/CLI output."""
        return {
            "delivered": self.delivered,
            "retried": self.retried,
            "failed": self.failed,
            "duration_seconds": round(self.duration_seconds(), 2),
            "error_details": self.error_details[:10],
        }


class SyncWorker:
    """
    Delivers queued writes to a RemoteStore.

    Args:
        queue: Outbound queue to drain
        remote: Destination store
        poll_interval_seconds: Pause between drain passes in the background loop
    """

    def __init__(
        self,
        queue: OutboundQueue,
        remote: RemoteStore,
        poll_interval_seconds: float = 1.0,
    ):
        self.queue = queue
        self.remote = remote
        self.poll_interval_seconds = poll_interval_seconds
        self._task: asyncio.Task | None = None
        self._wakeup = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def drain(self, limit: int = 50) -> SyncStats:
        """Deliver every write that is currently due, once."""
        stats = SyncStats()

        for item in self.queue.get_due(limit=limit):
            try:
                await self._deliver(item)
            except RemoteStoreError as e:
                if self.queue.mark_failed(item.id, str(e), retryable=e.retryable):
                    stats.retried += 1
                else:
                    stats.failed += 1
                stats.error_details.append(f"{item.write.collection}/{item.write.doc_id}: {e}")
            except Exception as e:
                logger.exception("Unexpected error delivering queue item {}", item.id)
                if self.queue.mark_failed(item.id, str(e), retryable=True):
                    stats.retried += 1
                else:
                    stats.failed += 1
                stats.error_details.append(f"{item.write.collection}/{item.write.doc_id}: {e}")
            else:
                self.queue.mark_complete(item.id)
                stats.delivered += 1

        stats.finish()
        if stats.delivered or stats.retried or stats.failed:
            logger.debug("Sync pass: {}", stats.to_dict())
        return stats

    async def _deliver(self, item: QueuedWrite) -> None:
        write = item.write
        if write.operation == WriteOperation.UPSERT:
            await self.remote.upsert(write.collection, write.doc_id, write.data or {})
        else:
            await self.remote.delete(write.collection, write.doc_id)

    def notify(self) -> None:
        """Wake the background loop early; called after new writes are queued."""
        self._wakeup.set()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.debug("Sync worker started")

    async def _run(self) -> None:
        while True:
            self._wakeup.clear()
            await self.drain()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval_seconds)

    async def stop(self, flush: bool = True, flush_timeout_seconds: float | None = None) -> None:
        """
        Stop the background loop.

        Args:
            flush: Drain until nothing due is left so queued writes get a final attempt
            flush_timeout_seconds: Upper bound on the flush; writes still queued
                when it expires stay in the durable queue for the next run
        """
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if not flush:
            return
        try:
            await asyncio.wait_for(self._flush(), timeout=flush_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "Sync flush timed out after {}s; {} write(s) left queued",
                flush_timeout_seconds,
                self.queue.pending_count(),
            )

    async def _flush(self) -> None:
        # Each pass delivers one write per document; stop once a pass delivers nothing
        while (await self.drain()).delivered:
            pass

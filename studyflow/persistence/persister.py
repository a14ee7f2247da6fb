"""
Dirty-flag persister.

Coalesces state saves: every change marks the state dirty, and the
snapshot is written once the state has been quiet for the configured
period, or immediately on flush(). A failed save leaves the flag set so
the next attempt retries.
"""

from __future__ import annotations

import asyncio
import contextlib
import sqlite3
import time
from collections.abc import Callable

from loguru import logger

from studyflow.persistence.state_store import StateStore
from studyflow.study.models import StudyData
from studyflow.study.serialization import state_to_document


class DirtyFlagPersister:
    """
    Save study state to a StateStore after a quiet period.

    Args:
        store: Snapshot destination
        get_state: Returns the state to save
        quiet_period_seconds: Time without changes before a save happens
        clock: Monotonic clock, replaced in tests
    """

    def __init__(
        self,
        store: StateStore,
        get_state: Callable[[], StudyData],
        quiet_period_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self._get_state = get_state
        self.quiet_period_seconds = quiet_period_seconds
        self._clock = clock
        self._dirty = False
        self._last_change = 0.0
        self._task: asyncio.Task | None = None

    @property
    def dirty(self) -> bool:
        return self._dirty

    def mark_dirty(self, *_: object) -> None:
        """Record a change; usable directly as a store subscriber."""
        self._dirty = True
        self._last_change = self._clock()

    def maybe_flush(self) -> bool:
        """Save if dirty and quiet long enough. Returns True if a save happened."""
        if not self._dirty:
            return False
        if self._clock() - self._last_change < self.quiet_period_seconds:
            return False
        return self.flush()

    def flush(self) -> bool:
        """Save now if dirty. Returns True on a successful save."""
        if not self._dirty:
            return False
        try:
            self.store.save_snapshot(state_to_document(self._get_state()))
        except (sqlite3.Error, OSError) as e:
            logger.error("Failed to persist study state, will retry: {}", e)
            return False
        self._dirty = False
        logger.debug("Study state persisted")
        return True

    def start(self, check_interval_seconds: float | None = None) -> None:
        """Run maybe_flush periodically on the event loop."""
        if self._task is not None and not self._task.done():
            return
        interval = check_interval_seconds or max(self.quiet_period_seconds / 4, 0.05)
        self._task = asyncio.create_task(self._run(interval))

    async def _run(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.maybe_flush()

    async def stop(self) -> None:
        """Stop the periodic check and flush whatever is pending."""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self.flush()

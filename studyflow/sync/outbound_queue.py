"""Durable write-behind queue for remote document writes."""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from loguru import logger

from studyflow.persistence.state_store import StateStore


class WriteOperation(str, Enum):
    UPSERT = "upsert"
    DELETE = "delete"


@dataclass(frozen=True)
class RemoteWrite:
    """One document write produced by the sync dispatcher."""

    operation: WriteOperation
    collection: str
    doc_id: str
    data: dict[str, Any] | None = field(default=None, compare=False)

    @classmethod
    def upsert(cls, collection: str, doc_id: str, data: dict[str, Any]) -> RemoteWrite:
        return cls(WriteOperation.UPSERT, collection, doc_id, data)

    @classmethod
    def delete(cls, collection: str, doc_id: str) -> RemoteWrite:
        return cls(WriteOperation.DELETE, collection, doc_id)


@dataclass
class QueuedWrite:
    """Queued remote write record."""

    id: int
    write: RemoteWrite
    status: str
    retry_count: int
    max_retries: int
    next_attempt_at: float
    error_message: str | None


class OutboundQueue:
    """
    Manage the outbound write queue.

    Writes to the same document are delivered in the order they were
    queued: only the oldest pending write of each document is ever due.
    A failed write is re-queued with exponential backoff until
    max_retries is reached, then parked with status 'failed'.
    """

    def __init__(
        self,
        store: StateStore,
        max_retries: int = 5,
        backoff_base_seconds: float = 2.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.max_retries = max_retries
        self.backoff_base_seconds = backoff_base_seconds
        self._clock = clock

    def enqueue(self, write: RemoteWrite) -> int:
        """
        Add a write to the queue.

        Returns:
            Queue record id
        """
        # A newer write supersedes parked ones for the same document
        superseded = self.store.conn.execute(
            """
            DELETE FROM outbound_writes
            WHERE status = 'failed' AND collection = ? AND doc_id = ?
            """,
            (write.collection, write.doc_id),
        ).rowcount
        if superseded:
            logger.debug(
                "Dropped {} failed write(s) for {}/{} superseded by a new write",
                superseded,
                write.collection,
                write.doc_id,
            )
        cursor = self.store.conn.execute(
            """
            INSERT INTO outbound_writes (
                operation, collection, doc_id, payload, status,
                max_retries, next_attempt_at, queued_at
            ) VALUES (?, ?, ?, ?, 'pending', ?, ?, ?)
            """,
            (
                write.operation.value,
                write.collection,
                write.doc_id,
                json.dumps(write.data) if write.data is not None else None,
                self.max_retries,
                self._clock(),
                datetime.now().isoformat(),
            ),
        )
        self.store.conn.commit()
        logger.debug(
            "Queued {} {}/{}: queue_id={}",
            write.operation.value,
            write.collection,
            write.doc_id,
            cursor.lastrowid,
        )
        return cursor.lastrowid

    def get_due(self, limit: int = 50) -> list[QueuedWrite]:
        """Oldest pending write per document whose backoff has elapsed."""
        rows = self.store.conn.execute(
            """
            SELECT * FROM outbound_writes w
            WHERE w.status = 'pending'
              AND w.next_attempt_at <= ?
              AND w.id = (
                  SELECT MIN(o.id) FROM outbound_writes o
                  WHERE o.status = 'pending'
                    AND o.collection = w.collection
                    AND o.doc_id = w.doc_id
              )
            ORDER BY w.id ASC
            LIMIT ?
            """,
            (self._clock(), limit),
        ).fetchall()
        return [self._row_to_queued_write(row) for row in rows]

    def mark_complete(self, queue_id: int) -> None:
        """Drop a delivered write."""
        self.store.conn.execute("DELETE FROM outbound_writes WHERE id = ?", (queue_id,))
        self.store.conn.commit()

    def mark_failed(self, queue_id: int, error_message: str, retryable: bool = True) -> bool:
        """
        Record a delivery failure.

        Returns:
            True if the write was re-queued for retry, False if permanently failed.
        """
        row = self.store.conn.execute(
            "SELECT retry_count, max_retries, collection, doc_id FROM outbound_writes WHERE id = ?",
            (queue_id,),
        ).fetchone()
        if row is None:
            logger.warning("Queue item {} not found for failure update", queue_id)
            return False

        retry_count = row["retry_count"] + 1
        if retryable and retry_count < row["max_retries"]:
            delay = self.backoff_base_seconds * (2 ** (retry_count - 1))
            self.store.conn.execute(
                """
                UPDATE outbound_writes
                SET retry_count = ?, error_message = ?, next_attempt_at = ?
                WHERE id = ?
                """,
                (retry_count, error_message, self._clock() + delay, queue_id),
            )
            self.store.conn.commit()
            logger.warning(
                "Write {}/{} failed (attempt {}/{}), retrying in {}s",
                row["collection"],
                row["doc_id"],
                retry_count,
                row["max_retries"],
                delay,
            )
            return True

        self.store.conn.execute(
            """
            UPDATE outbound_writes
            SET status = 'failed', retry_count = ?, error_message = ?
            WHERE id = ?
            """,
            (retry_count, error_message, queue_id),
        )
        self.store.conn.commit()
        logger.error(
            "Write {}/{} failed permanently after {} attempts: {}",
            row["collection"],
            row["doc_id"],
            retry_count,
            error_message,
        )
        return False

    def pending_count(self) -> int:
        row = self.store.conn.execute(
            "SELECT COUNT(*) AS n FROM outbound_writes WHERE status = 'pending'"
        ).fetchone()
        return row["n"]

    def get_failed(self) -> list[QueuedWrite]:
        rows = self.store.conn.execute(
            "SELECT * FROM outbound_writes WHERE status = 'failed' ORDER BY id ASC"
        ).fetchall()
        return [self._row_to_queued_write(row) for row in rows]

    def requeue_failed(self) -> int:
        """Give permanently failed writes a fresh set of retries."""
        cursor = self.store.conn.execute(
            """
            UPDATE outbound_writes
            SET status = 'pending', retry_count = 0, next_attempt_at = ?
            WHERE status = 'failed'
            """,
            (self._clock(),),
        )
        self.store.conn.commit()
        return cursor.rowcount

    def _row_to_queued_write(self, row: Any) -> QueuedWrite:
        payload = row["payload"]
        return QueuedWrite(
            id=row["id"],
            write=RemoteWrite(
                operation=WriteOperation(row["operation"]),
                collection=row["collection"],
                doc_id=row["doc_id"],
                data=json.loads(payload) if payload is not None else None,
            ),
            status=row["status"],
            retry_count=row["retry_count"],
            max_retries=row["max_retries"],
            next_attempt_at=row["next_attempt_at"],
            error_message=row["error_message"],
        )

"""
SQLite State Store for studyflow.

Provides local persistence for:
- The latest StudyData snapshot (one JSON document)
- The outbound write-behind queue drained by the sync worker

Database location: ~/.studyflow/state.db
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger


class StateStore:
    """
    SQLite-backed local persistence.

    Handles:
    - Snapshot of the whole study state (single row, replaced on save)
    - Outbound remote writes with retry bookkeeping
    """

    DEFAULT_DB_PATH = Path.home() / ".studyflow" / "state.db"

    def __init__(self, db_path: Path | str | None = None):
        """
        Initialize the state store.

        Args:
            db_path: Custom database path (defaults to ~/.studyflow/state.db);
                ":memory:" keeps everything in memory
        """
        if db_path == ":memory:":
            self.db_path: Path | None = None
        else:
            self.db_path = Path(db_path).expanduser() if db_path else self.DEFAULT_DB_PATH
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn: sqlite3.Connection | None = None
        self._init_schema()

        logger.debug("StateStore initialized at {}", self.db_path or ":memory:")

    @property
    def conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            target = str(self.db_path) if self.db_path else ":memory:"
            self._conn = sqlite3.connect(target)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_schema(self) -> None:
        """Initialize database schema."""
        cursor = self.conn.cursor()

        # Latest state snapshot
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS state_snapshot (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                document TEXT NOT NULL,
                saved_at TIMESTAMP NOT NULL
            )
        """)

        # Pending remote writes
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS outbound_writes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                operation TEXT NOT NULL,
                collection TEXT NOT NULL,
                doc_id TEXT NOT NULL,
                payload TEXT,
                status TEXT NOT NULL DEFAULT 'pending',
                retry_count INTEGER NOT NULL DEFAULT 0,
                max_retries INTEGER NOT NULL,
                next_attempt_at REAL NOT NULL DEFAULT 0,
                error_message TEXT,
                queued_at TIMESTAMP NOT NULL
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_outbound_status
            ON outbound_writes(status, next_attempt_at)
        """)

        self.conn.commit()

    # =========================================================================
    # Snapshot
    # =========================================================================

    def save_snapshot(self, document: dict[str, Any]) -> None:
        """Replace the stored snapshot."""
        self.conn.execute(
            """
            INSERT INTO state_snapshot (id, document, saved_at) VALUES (1, ?, ?)
            ON CONFLICT(id) DO UPDATE SET document = excluded.document, saved_at = excluded.saved_at
            """,
            (json.dumps(document), datetime.now().isoformat()),
        )
        self.conn.commit()

    def load_snapshot(self) -> dict[str, Any] | None:
        """The stored snapshot, or None if nothing was saved yet."""
        row = self.conn.execute("SELECT document FROM state_snapshot WHERE id = 1").fetchone()
        if row is None:
            return None
        try:
            return json.loads(row["document"])
        except json.JSONDecodeError as e:
            logger.error("Stored snapshot is corrupt, ignoring it: {}", e)
            return None

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

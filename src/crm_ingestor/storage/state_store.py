"""SQLite-backed key-value state and run audit for the ingestion pipeline."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class StateStore:
    """Small persistent key -> JSON blob mapping.

    Tables:
    - kv_state: ledger (``PROC_IDS``) and cursors (``THREAD_CURSOR::<query>``)
    - ingest_runs: audit log of ingestion runs
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Open database connection and ensure schema exists."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> StateStore:
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    def _create_tables(self) -> None:
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS kv_state (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS ingest_runs (
                run_id INTEGER PRIMARY KEY AUTOINCREMENT,
                mode TEXT NOT NULL,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                threads_seen INTEGER DEFAULT 0,
                messages_written INTEGER DEFAULT 0,
                messages_skipped INTEGER DEFAULT 0,
                messages_unparseable INTEGER DEFAULT 0,
                messages_failed INTEGER DEFAULT 0,
                categories_aborted INTEGER DEFAULT 0
            );
        """)

    def get_json(self, key: str, default: Any = None) -> Any:
        """Load the JSON value stored under ``key``; corrupt values read as ``default``."""
        row = self.conn.execute(
            "SELECT value FROM kv_state WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable state for %s", key)
            return default

    def set_json(self, key: str, value: Any) -> None:
        now = datetime.now(UTC).isoformat()
        self.conn.execute(
            """INSERT INTO kv_state (key, value, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET
                   value = excluded.value,
                   updated_at = excluded.updated_at""",
            (key, json.dumps(value), now),
        )
        self.conn.commit()

    def delete(self, key: str) -> bool:
        cursor = self.conn.execute("DELETE FROM kv_state WHERE key = ?", (key,))
        self.conn.commit()
        return cursor.rowcount > 0

    def keys(self, prefix: str = "") -> list[str]:
        """Stored keys starting with ``prefix``, sorted."""
        rows = self.conn.execute(
            "SELECT key FROM kv_state WHERE substr(key, 1, ?) = ? ORDER BY key",
            (len(prefix), prefix),
        ).fetchall()
        return [row["key"] for row in rows]

    def start_run(self, mode: str) -> int:
        """Record the start of an ingestion run. Returns the run_id."""
        now = datetime.now(UTC).isoformat()
        cursor = self.conn.execute(
            "INSERT INTO ingest_runs (mode, started_at) VALUES (?, ?)",
            (mode, now),
        )
        self.conn.commit()
        return cursor.lastrowid or 0

    def complete_run(
        self,
        run_id: int,
        threads_seen: int = 0,
        messages_written: int = 0,
        messages_skipped: int = 0,
        messages_unparseable: int = 0,
        messages_failed: int = 0,
        categories_aborted: int = 0,
    ) -> None:
        """Record the completion of an ingestion run."""
        now = datetime.now(UTC).isoformat()
        self.conn.execute(
            """UPDATE ingest_runs SET
               completed_at = ?, threads_seen = ?, messages_written = ?,
               messages_skipped = ?, messages_unparseable = ?,
               messages_failed = ?, categories_aborted = ?
               WHERE run_id = ?""",
            (
                now, threads_seen, messages_written, messages_skipped,
                messages_unparseable, messages_failed, categories_aborted, run_id,
            ),
        )
        self.conn.commit()

    def recent_runs(self, limit: int = 5) -> list[dict[str, Any]]:
        rows = self.conn.execute(
            "SELECT * FROM ingest_runs ORDER BY run_id DESC LIMIT ?", (limit,)
        ).fetchall()
        return [dict(row) for row in rows]

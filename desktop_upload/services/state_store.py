"""SQLite key-value store for locally persisted upload state."""

import json
import logging
import sqlite3
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class StateStore:
    """JSON key-value store with thread-safe SQLite access.

    Both the submission records (``submission:<id>``) and the resume bookkeeping
    (``resume:<id>``) live in the single ``kv`` table, so the upload worker and
    the background reconciler always read and write the same rows.
    """

    def __init__(self, db_path: str | Path) -> None:
        """Initialize the state database."""
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._write_lock = threading.Lock()
        self._init_db()

    @property
    def db_path(self) -> Path:
        """Path to the backing SQLite file."""
        return self._db_path

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "connection") or self._local.connection is None:
            self._local.connection = sqlite3.connect(
                str(self._db_path),
                check_same_thread=False,
                timeout=30.0,
            )
            self._local.connection.row_factory = sqlite3.Row
        conn: sqlite3.Connection = self._local.connection
        return conn

    def _init_db(self) -> None:
        """Initialize the database schema."""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        conn.commit()

    def get_json(self, key: str) -> Any | None:
        """Read and decode a JSON value.

        Args:
            key: Storage key

        Returns:
            The decoded value, or None if the key is missing or not valid JSON
        """
        conn = self._get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT value FROM kv WHERE key = ?", (key,))
        row = cursor.fetchone()
        if row is None:
            return None

        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            logger.warning("Discarding undecodable value for key %s", key)
            return None

    def put_json(self, key: str, value: Any) -> None:
        """Encode and write a JSON value, replacing any previous one.

        Args:
            key: Storage key
            value: JSON-serializable value
        """
        encoded = json.dumps(value, default=str)
        now = datetime.now(UTC).isoformat()

        with self._write_lock:
            conn = self._get_connection()
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO kv (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, encoded, now),
            )
            conn.commit()

    def delete(self, key: str) -> bool:
        """Delete a key.

        Returns:
            True if a row was removed
        """
        with self._write_lock:
            conn = self._get_connection()
            cursor = conn.cursor()
            cursor.execute("DELETE FROM kv WHERE key = ?", (key,))
            deleted = cursor.rowcount
            conn.commit()
        return deleted > 0

    def keys(self, prefix: str = "") -> list[str]:
        """List keys starting with ``prefix``, sorted."""
        conn = self._get_connection()
        cursor = conn.cursor()
        cursor.execute(
            "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
            (len(prefix), prefix),
        )
        return [row["key"] for row in cursor.fetchall()]

    def close(self) -> None:
        """Close the database connection for the current thread."""
        if hasattr(self._local, "connection") and self._local.connection is not None:
            self._local.connection.close()
            self._local.connection = None


# Global state store instance
_state_store: StateStore | None = None


def get_state_store() -> StateStore:
    """Get the global state store instance."""
    global _state_store
    if _state_store is None:
        from desktop_upload.config import get_settings

        _state_store = StateStore(get_settings().state_db_path)
    return _state_store

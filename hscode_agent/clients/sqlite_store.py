"""SQLite-backed key-value store for the durable projections of the core stores."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Optional

from hscode_agent.core.errors import PersistenceError

logger = logging.getLogger(__name__)


class SQLiteStore:
    """Opaque JSON documents keyed by string, surviving process restarts."""

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        # Writers from different request handlers must not interleave.
        self._write_lock = threading.Lock()
        try:
            if self._db_path.parent and not self._db_path.parent.exists():
                self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._ensure_schema()
        except (OSError, sqlite3.Error) as exc:
            raise PersistenceError(
                f"Unable to open store at {self._db_path}: {exc}"
            ) from exc

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_documents (
                    key TEXT PRIMARY KEY,
                    data TEXT NOT NULL
                )
                """
            )

    def put(self, key: str, value: Any) -> None:
        if not key:
            raise ValueError("Document key must be a non-empty string")
        try:
            data_json = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"Value for '{key}' is not serializable: {exc}") from exc

        with self._write_lock:
            try:
                with self._connect() as conn:
                    conn.execute(
                        """
                        INSERT INTO kv_documents (key, data)
                        VALUES (?, ?)
                        ON CONFLICT(key) DO UPDATE SET data = excluded.data
                        """,
                        (key, data_json),
                    )
            except sqlite3.Error as exc:
                logger.error("Failed to write document '%s': %s", key, exc)
                raise PersistenceError(f"Failed to write '{key}': {exc}") from exc

    def get(self, key: str) -> Optional[Any]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT data FROM kv_documents WHERE key = ?",
                    (key,),
                ).fetchone()
        except sqlite3.Error as exc:
            logger.error("Failed to read document '%s': %s", key, exc)
            raise PersistenceError(f"Failed to read '{key}': {exc}") from exc
        if not row:
            return None
        try:
            return json.loads(row["data"])
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Document '{key}' is corrupt: {exc}") from exc

    def delete(self, key: str) -> None:
        with self._write_lock:
            try:
                with self._connect() as conn:
                    conn.execute("DELETE FROM kv_documents WHERE key = ?", (key,))
            except sqlite3.Error as exc:
                logger.error("Failed to delete document '%s': %s", key, exc)
                raise PersistenceError(f"Failed to delete '{key}': {exc}") from exc

    def keys(self, prefix: str = "") -> list[str]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT key FROM kv_documents WHERE key LIKE ? ORDER BY key",
                    (f"{prefix}%",),
                ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to list keys: {exc}") from exc
        return [row["key"] for row in rows]


__all__ = ["SQLiteStore"]

"""SQLite-backed scratch store, one row per (instance, key)."""
from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Final

__all__ = ["SQLiteScratchStore"]


class SQLiteScratchStore:
    """Durable scratch store scoped to a single subscription instance."""

    _SCHEMA: Final[str] = """
    PRAGMA journal_mode=WAL;

    CREATE TABLE IF NOT EXISTS scratch (
        instance_id TEXT NOT NULL,
        key TEXT NOT NULL,
        value BLOB NOT NULL,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (instance_id, key)
    );
    """

    def __init__(self, path: Path | str, *, instance_id: str = "default") -> None:
        self._path = Path(path)
        self._instance_id = instance_id
        self._lock = threading.Lock()
        if str(path) != ":memory:":
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.executescript(self._SCHEMA)
        self._conn.commit()

    @property
    def instance_id(self) -> str:
        return self._instance_id

    def get(self, key: str) -> bytes | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM scratch WHERE instance_id = ? AND key = ?",
                (self._instance_id, key),
            ).fetchone()
        return bytes(row[0]) if row is not None else None

    def set(self, key: str, value: bytes) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO scratch(instance_id, key, value, updated_at)
                VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(instance_id, key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (self._instance_id, key, sqlite3.Binary(bytes(value))),
            )

    def delete(self, key: str) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "DELETE FROM scratch WHERE instance_id = ? AND key = ?",
                (self._instance_id, key),
            )

    def keys(self) -> list[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT key FROM scratch WHERE instance_id = ? ORDER BY key",
                (self._instance_id,),
            ).fetchall()
        return [r[0] for r in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()

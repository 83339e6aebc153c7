"""
Key/value persistence for on-device state.

Every local record (stats, sessions, bookmarks, queue, cache envelopes, settings)
is a JSON string stored under a string key. SQLiteStorage is the durable
implementation; MemoryStorage has the same contract for tests and scratch use.
"""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Generator, List, Optional

from theoryprep.errors import StorageError

logger = logging.getLogger(__name__)


class KeyValueStorage:
    """Plain read/write-by-key contract; any UI layer can call it directly."""

    def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError

    def keys(self, prefix: str = "") -> List[str]:
        raise NotImplementedError


class MemoryStorage(KeyValueStorage):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(key for key in self._items if key.startswith(prefix))


class SQLiteStorage(KeyValueStorage):
    """Single-table SQLite store. One connection, serialized by a lock."""

    SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS kv_store (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """

    def __init__(self, path: str):
        self.path = path
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(path, check_same_thread=False)
            self._conn.execute(self.SCHEMA_SQL)
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Could not open local store at {path}: {e}") from e
        logger.debug(f"Opened local store {path}")

    @contextmanager
    def _cursor(self) -> Generator[sqlite3.Cursor, None, None]:
        with self._lock:
            try:
                cursor = self._conn.cursor()
                yield cursor
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise StorageError(f"Local store error: {e}") from e

    def get_item(self, key: str) -> Optional[str]:
        with self._cursor() as cur:
            row = cur.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
                (key, value),
            )

    def remove_item(self, key: str) -> None:
        with self._cursor() as cur:
            cur.execute("DELETE FROM kv_store WHERE key = ?", (key,))

    def keys(self, prefix: str = "") -> List[str]:
        with self._cursor() as cur:
            rows = cur.execute(
                "SELECT key FROM kv_store WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
        return [row[0] for row in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()

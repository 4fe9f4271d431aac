"""Key-value store protocol and reference adapters.

The indexing core talks to its backends only through :class:`KeyValueStore`.
Network clients for remote services live outside this package; two adapters
ship here so the core works without one:

* ``MemoryKeyValueStore`` - a lock-guarded dict for tests and embedding.
* ``SqliteKeyValueStore`` - a single-table SQLite file tuned with WAL pragmas.

Keys are strings and values are opaque bytes. Every single-key operation is
atomic; ``increment`` in particular must be atomic at the store.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
import logging
from pathlib import Path
import sqlite3
import threading
from typing import Protocol, runtime_checkable

from kvindex.errors import StoreUnavailable


logger = logging.getLogger(__name__)

_SQLITE_CHUNK = 500


@runtime_checkable
class KeyValueStore(Protocol):
    """Protocol implemented by backing stores."""

    def get(self, key: str) -> bytes | None:  # pragma: no cover - interface definition
        ...

    def get_bulk(self, keys: Iterable[str]) -> dict[str, bytes]:  # pragma: no cover - interface definition
        """Return present keys only; absent keys are silently omitted."""
        ...

    def set(self, key: str, value: bytes) -> None:  # pragma: no cover - interface definition
        ...

    def set_bulk(self, items: Mapping[str, bytes]) -> None:  # pragma: no cover - interface definition
        ...

    def increment(self, key: str) -> int:  # pragma: no cover - interface definition
        """Atomically add one to an integer counter and return the new value."""
        ...

    def remove(self, key: str) -> None:  # pragma: no cover - interface definition
        ...

    def close(self) -> None:  # pragma: no cover - interface definition
        ...


def _as_bytes(value: bytes | str | int) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


class MemoryKeyValueStore:
    """In-process store backed by a dict."""

    def __init__(self, initial: Mapping[str, bytes] | None = None) -> None:
        self._data: dict[str, bytes] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> bytes | None:
        with self._lock:
            return self._data.get(key)

    def get_bulk(self, keys: Iterable[str]) -> dict[str, bytes]:
        with self._lock:
            return {key: self._data[key] for key in keys if key in self._data}

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = _as_bytes(value)

    def set_bulk(self, items: Mapping[str, bytes]) -> None:
        with self._lock:
            self._data.update({key: _as_bytes(value) for key, value in items.items()})

    def increment(self, key: str) -> int:
        with self._lock:
            current = int(self._data.get(key, b"0"))
            current += 1
            self._data[key] = str(current).encode("ascii")
            return current

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(key for key in self._data if key.startswith(prefix))

    def __len__(self) -> int:
        return len(self._data)

    def close(self) -> None:
        pass


def apply_store_pragmas(conn: sqlite3.Connection, *, busy_timeout_ms: int = 30000) -> None:
    """Apply WAL and durability PRAGMAs shared by every store connection."""
    conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms}")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute("PRAGMA temp_store = MEMORY")


class SqliteKeyValueStore:
    """Key-value store persisted in one SQLite table.

    Each thread gets its own connection; SQLite serializes writers, which
    makes ``increment`` atomic across threads and processes.
    """

    _SCHEMA = "CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value BLOB NOT NULL) WITHOUT ROWID"

    def __init__(self, db_path: str | Path, *, name: str = "sqlite") -> None:
        self.db_path = Path(db_path)
        self.name = name
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        with self._connection("open") as conn:
            conn.execute(self._SCHEMA)
        logger.debug("SQLite key-value store ready at %s", self.db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = getattr(self._local, "connection", None)
        if conn is None:
            conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30.0, isolation_level=None)
            apply_store_pragmas(conn)
            self._local.connection = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    @contextmanager
    def _connection(self, operation: str) -> Iterator[sqlite3.Connection]:
        try:
            yield self._connect()
        except sqlite3.Error as exc:
            raise StoreUnavailable(self.name, operation, str(exc)) from exc

    def get(self, key: str) -> bytes | None:
        with self._connection("get") as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return _as_bytes(row[0]) if row else None

    def get_bulk(self, keys: Iterable[str]) -> dict[str, bytes]:
        unique = list(dict.fromkeys(keys))
        found: dict[str, bytes] = {}
        with self._connection("get_bulk") as conn:
            for offset in range(0, len(unique), _SQLITE_CHUNK):
                chunk = unique[offset : offset + _SQLITE_CHUNK]
                placeholders = ", ".join("?" * len(chunk))
                cursor = conn.execute(f"SELECT key, value FROM kv WHERE key IN ({placeholders})", chunk)
                found.update((key, _as_bytes(value)) for key, value in cursor)
        return found

    def set(self, key: str, value: bytes) -> None:
        with self._connection("set") as conn:
            conn.execute("INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)", (key, _as_bytes(value)))

    def set_bulk(self, items: Mapping[str, bytes]) -> None:
        if not items:
            return
        with self._connection("set_bulk") as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.executemany(
                    "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                    [(key, _as_bytes(value)) for key, value in items.items()],
                )
                conn.execute("COMMIT")
            except sqlite3.Error:
                # a failed COMMIT can leave the transaction open on this thread's connection
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    def increment(self, key: str) -> int:
        with self._connection("increment") as conn:
            rows = conn.execute(
                "INSERT INTO kv (key, value) VALUES (?, 1) "
                "ON CONFLICT(key) DO UPDATE SET value = CAST(value AS INTEGER) + 1 "
                "RETURNING value",
                (key,),
            ).fetchall()
        return int(rows[0][0])

    def remove(self, key: str) -> None:
        with self._connection("remove") as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    def close(self) -> None:
        with self._connections_lock:
            for conn in self._connections:
                try:
                    conn.close()
                except sqlite3.Error:
                    logger.debug("Ignoring error while closing SQLite connection", exc_info=True)
            self._connections.clear()
        self._local = threading.local()

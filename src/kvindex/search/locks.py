"""Per-key writer locks.

Read-modify-write sequences on a shared key (posting merges, term-id
creation) hold the lock for that key, so inside one process each key has a
single writer at a time. Locks are striped over a fixed pool and always
acquired in ascending stripe order, which rules out lock-order deadlocks
between callers touching overlapping key sets.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
import threading
import zlib


class KeyLockTable:
    """Striped lock table keyed by store key."""

    def __init__(self, stripes: int = 256) -> None:
        if stripes < 1:
            raise ValueError("stripes must be >= 1")
        self._locks = [threading.Lock() for _ in range(stripes)]

    def _stripe(self, key: str) -> int:
        return zlib.crc32(key.encode("utf-8")) % len(self._locks)

    @contextmanager
    def hold(self, keys: Iterable[str]) -> Iterator[None]:
        """Hold the locks covering ``keys`` for the duration of the block."""
        stripes = sorted({self._stripe(key) for key in keys})
        acquired: list[threading.Lock] = []
        try:
            for stripe in stripes:
                lock = self._locks[stripe]
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

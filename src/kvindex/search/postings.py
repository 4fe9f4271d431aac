"""Posting store: the inverted index held in the key-value stores.

One entry per ``(namespace, field, term key)`` maps document ids to their
normalized frequency. Writes are merges: the existing posting is read, the
document's entry is set or removed, and the posting is written back, so
entries of other documents sharing the key survive.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
import logging

from kvindex.search.codec import decode_posting, encode_posting
from kvindex.search.locks import KeyLockTable
from kvindex.search.models import Posting
from kvindex.search.router import StoreRouter


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PostingEntry:
    """One ``doc_id -> frequency`` contribution to the posting at ``key``."""

    key: str
    doc_id: str
    frequency: float

    def __post_init__(self) -> None:
        if not self.frequency > 0:
            raise ValueError(f"Posting frequency must be > 0 (got {self.frequency} for {self.key})")


class PostingStore:
    """Bulk reads and merging writes of postings through the router.

    Each read-modify-write holds the writer locks of the keys it touches, so
    within one process a posting key has one writer at a time. Writers in
    other processes are not coordinated: two processes updating the same key
    concurrently can still lose one update.
    """

    def __init__(self, router: StoreRouter, *, locks: KeyLockTable | None = None) -> None:
        self.router = router
        self.locks = locks or KeyLockTable()

    def fetch(self, keys: Iterable[str], store_name: str) -> dict[str, Posting]:
        """Return postings of the present keys; missing keys are simply absent."""
        raw = self.router.get_bulk(store_name, keys)
        return {key: decode_posting(value) for key, value in raw.items()}

    def upsert(self, entries: Iterable[PostingEntry], store_name: str) -> int:
        """Merge entries into their postings with one bulk read and one bulk write.

        Returns the number of posting keys written.
        """
        pending = list(entries)
        if not pending:
            return 0
        keys = list(dict.fromkeys(entry.key for entry in pending))
        with self.locks.hold(keys):
            postings = self.fetch(keys, store_name)
            for entry in pending:
                postings.setdefault(entry.key, {})[entry.doc_id] = entry.frequency
            self.router.set_bulk(store_name, {key: encode_posting(postings[key]) for key in keys})
        return len(keys)

    def strip(self, keys: Iterable[str], doc_id: str, store_name: str) -> tuple[int, int]:
        """Remove ``doc_id`` from the postings at ``keys``.

        Postings left empty are deleted. Returns ``(updated, deleted)`` counts.
        """
        wanted = list(dict.fromkeys(keys))
        if not wanted:
            return 0, 0
        with self.locks.hold(wanted):
            postings = self.fetch(wanted, store_name)
            updated: dict[str, bytes] = {}
            emptied: list[str] = []
            for key, posting in postings.items():
                if doc_id not in posting:
                    continue
                del posting[doc_id]
                if posting:
                    updated[key] = encode_posting(posting)
                else:
                    emptied.append(key)
            self.router.set_bulk(store_name, updated)
            for key in emptied:
                self.router.remove(store_name, key)
        return len(updated), len(emptied)

"""Term dictionary: compact integer ids for normalized terms.

Ids only shorten posting keys. They are allocated lazily from a
namespace-scoped counter that the store increments atomically, and are
never reassigned or deleted.
"""

from __future__ import annotations

from collections.abc import Iterable
import logging

from kvindex.search.codec import decode_term_id, encode_term_id
from kvindex.search.keys import term_counter_key, term_id_key
from kvindex.search.locks import KeyLockTable
from kvindex.search.router import StoreRouter


logger = logging.getLogger(__name__)


class TermDictionary:
    """Maps terms to stable ids within one namespace.

    The counter increment is atomic at the store, but the lookup-then-create
    path is not atomic across processes: two processes missing the same term
    can each allocate an id and the last write wins, leaving an unused id.
    Inside one process the miss path holds the term's writer lock and re-reads
    the mapping, so concurrent callers always agree on the id.
    """

    def __init__(
        self,
        router: StoreRouter,
        namespace: str,
        *,
        store_name: str,
        locks: KeyLockTable | None = None,
    ) -> None:
        self.router = router
        self.namespace = namespace
        self.store_name = store_name
        self.locks = locks or KeyLockTable()
        router.store(store_name)

    def lookup(self, terms: Iterable[str]) -> dict[str, int]:
        """Return ids of the terms already in the dictionary (read-only)."""
        keys = {term_id_key(self.namespace, term): term for term in terms}
        if not keys:
            return {}
        found = self.router.get_bulk(self.store_name, keys)
        return {keys[key]: decode_term_id(raw) for key, raw in found.items()}

    def term_id(self, term: str) -> int:
        """Return the id for ``term``, allocating one on first occurrence."""
        return self.term_ids([term])[term]

    def term_ids(self, terms: Iterable[str]) -> dict[str, int]:
        """Resolve many terms with one bulk read, allocating ids for the misses."""
        wanted = list(dict.fromkeys(terms))
        ids = self.lookup(wanted)
        missing = [term for term in wanted if term not in ids]
        if not missing:
            return ids

        missing_keys = {term_id_key(self.namespace, term): term for term in missing}
        with self.locks.hold(missing_keys):
            # another thread may have created some of them while we waited
            for key, raw in self.router.get_bulk(self.store_name, missing_keys).items():
                ids[missing_keys.pop(key)] = decode_term_id(raw)
            created: dict[str, bytes] = {}
            for key, term in missing_keys.items():
                new_id = self.router.increment(self.store_name, term_counter_key(self.namespace))
                ids[term] = new_id
                created[key] = encode_term_id(new_id)
            self.router.set_bulk(self.store_name, created)

        if created:
            logger.debug("Allocated %d term ids in namespace %s", len(created), self.namespace)
        return ids

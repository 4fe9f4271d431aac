"""Document summary store.

A summary records, per document, the total token count and the per-field
frequency of every term key it contributed. It drives informational ranking
and is the only source of the posting keys to strip on removal.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable

from kvindex.search.codec import decode_summary, encode_summary
from kvindex.search.keys import posting_key, summary_key
from kvindex.search.models import DocumentSummary
from kvindex.search.router import StoreRouter


class DocumentSummaryStore:
    def __init__(self, router: StoreRouter, namespace: str, *, store_name: str) -> None:
        self.router = router
        self.namespace = namespace
        self.store_name = store_name
        router.store(store_name)

    def write(self, summary: DocumentSummary) -> None:
        """Replace the stored summary wholesale."""
        self.router.set(self.store_name, summary_key(self.namespace, summary.doc_id), encode_summary(summary))

    def read(self, doc_id: str) -> DocumentSummary | None:
        raw = self.router.get(self.store_name, summary_key(self.namespace, doc_id))
        if raw is None:
            return None
        return decode_summary(raw)

    def read_many(self, doc_ids: Iterable[str]) -> dict[str, DocumentSummary]:
        keys = {summary_key(self.namespace, doc_id): doc_id for doc_id in doc_ids}
        found = self.router.get_bulk(self.store_name, keys)
        return {keys[key]: decode_summary(raw) for key, raw in found.items()}

    def delete(self, doc_id: str) -> None:
        self.router.remove(self.store_name, summary_key(self.namespace, doc_id))

    def posting_keys(self, summary: DocumentSummary) -> dict[str, list[str]]:
        """Derive ``{store name: [posting keys]}`` referencing the summarized document."""
        grouped: dict[str, list[str]] = defaultdict(list)
        for term_key, fields in summary.terms.items():
            for field_name in fields:
                store_name = self.router.store_name_for(field_name)
                grouped[store_name].append(posting_key(self.namespace, field_name, term_key))
        return dict(grouped)

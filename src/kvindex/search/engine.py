"""Search engine facade: indexing, removal and querying for one record type.

The engine binds an :class:`IndexSpec` (what to index), a set of named
key-value stores (where to keep it) and a :class:`DocumentAdapter` (how to
read host records). It owns no records itself: searches return document
ids, and :meth:`SearchEngine.resolve` hands them to a host lookup.

Indexing is not transactional across stores. If a store fails partway
through ``index()``, stores already written keep their updates; the error
is logged with the stores that were updated and re-raised. Re-running
``index()`` for the same record converges the postings again.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
import logging
import time
from typing import Any

from kvindex.config import Settings
from kvindex.errors import ConfigurationError, StoreUnavailable
from kvindex.observability.metrics import (
    DOCUMENTS_INDEXED,
    DOCUMENTS_REMOVED,
    SEARCH_LATENCY,
    SEARCH_OUTCOMES,
)
from kvindex.observability.tracing import create_span
from kvindex.search.analyzers import FieldTerms, NGramGenerator
from kvindex.search.dictionary import TermDictionary
from kvindex.search.documents import DocumentAdapter, RecordLookup, mapping_adapter
from kvindex.search.keys import posting_key
from kvindex.search.locks import KeyLockTable
from kvindex.search.models import DocumentSummary, Matches, NoResults, SearchResult
from kvindex.search.postings import PostingEntry, PostingStore
from kvindex.search.query import QueryEngine
from kvindex.search.router import StoreRouter
from kvindex.search.schema import IndexSpec
from kvindex.search.stores import KeyValueStore
from kvindex.search.summaries import DocumentSummaryStore


logger = logging.getLogger(__name__)


class SearchEngine:
    """Indexes host records into key-value stores and answers boolean queries."""

    def __init__(
        self,
        spec: IndexSpec,
        stores: Mapping[str, KeyValueStore],
        *,
        adapter: DocumentAdapter | None = None,
        settings: Settings | None = None,
    ) -> None:
        if len(spec) == 0:
            raise ConfigurationError(f"No fields are indexed for namespace '{spec.namespace}'")
        self.spec = spec
        self.settings = settings or Settings()
        self.adapter = adapter or mapping_adapter()
        self.namespace = spec.namespace
        self.router = StoreRouter(stores, spec, default_store=self.settings.default_store)
        self.locks = KeyLockTable()
        self.dictionary = (
            TermDictionary(
                self.router,
                self.namespace,
                store_name=self.settings.resolved_dictionary_store(),
                locks=self.locks,
            )
            if self.settings.use_term_ids
            else None
        )
        self.postings = PostingStore(self.router, locks=self.locks)
        self.summaries = DocumentSummaryStore(
            self.router, self.namespace, store_name=self.settings.resolved_summary_store()
        )
        self.generator = NGramGenerator(spec)
        self.queries = QueryEngine(spec, self.router, self.postings, self.summaries, self.dictionary)

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def _term_keys_for_indexing(self, terms: Iterable[str]) -> dict[str, str]:
        if self.dictionary is None:
            return {term: term for term in dict.fromkeys(terms)}
        return {term: str(term_id) for term, term_id in self.dictionary.term_ids(terms).items()}

    def _frequency_basis(self, field_terms: FieldTerms, total_tokens: int) -> int:
        if self.settings.frequency_basis == "document":
            return total_tokens
        return field_terms.token_count

    def analyze(self, record: Any) -> tuple[str, list[FieldTerms]]:
        """Return the record id and the n-gram counts of every indexed field."""
        doc_id = self.adapter.doc_id(record)
        analyzed = [
            self.generator.generate(field_name, self.adapter.value(record, field_name)) for field_name in self.spec
        ]
        return doc_id, analyzed

    def index(self, record: Any) -> DocumentSummary:
        """Index every registered field of ``record`` and write its summary.

        Postings of other documents sharing a key are preserved. Postings this
        document contributed on a previous ``index()`` call that no longer
        apply are stripped before the new summary replaces the old one.
        """
        doc_id, analyzed = self.analyze(record)
        with create_span("kvindex.index", attributes={"kvindex.namespace": self.namespace, "kvindex.doc_id": doc_id}):
            total_tokens = sum(field_terms.token_count for field_terms in analyzed)
            term_keys = self._term_keys_for_indexing(
                term for field_terms in analyzed for term in field_terms.counts
            )

            grouped: dict[str, list[PostingEntry]] = defaultdict(list)
            summary_terms: dict[str, dict[str, float]] = {}
            for field_terms in analyzed:
                basis = self._frequency_basis(field_terms, total_tokens)
                store_name = self.router.store_name_for(field_terms.field_name)
                for term in field_terms.counts:
                    term_key = term_keys[term]
                    frequency = field_terms.frequency(term, basis)
                    grouped[store_name].append(
                        PostingEntry(posting_key(self.namespace, field_terms.field_name, term_key), doc_id, frequency)
                    )
                    summary_terms.setdefault(term_key, {})[field_terms.field_name] = frequency

            summary = DocumentSummary(doc_id=doc_id, token_count=total_tokens, terms=summary_terms)
            previous = self.summaries.read(doc_id)
            written: list[str] = []
            try:
                for store_name, entries in grouped.items():
                    self.postings.upsert(entries, store_name)
                    written.append(store_name)
                if previous is not None:
                    self._strip_stale(doc_id, previous, grouped)
                self.summaries.write(summary)
            except StoreUnavailable as exc:
                logger.error(
                    "Indexing stopped partway; updated stores keep their changes",
                    extra={
                        "namespace": self.namespace,
                        "doc_id": doc_id,
                        "failed_store": exc.store,
                        "updated_stores": written,
                    },
                )
                raise

        DOCUMENTS_INDEXED.labels(namespace=self.namespace).inc()
        logger.debug(
            "Indexed document %s: %d terms over %d stores", doc_id, len(summary_terms), len(grouped)
        )
        return summary

    def _strip_stale(
        self,
        doc_id: str,
        previous: DocumentSummary,
        current: Mapping[str, Sequence[PostingEntry]],
    ) -> None:
        for store_name, keys in self.summaries.posting_keys(previous).items():
            fresh = {entry.key for entry in current.get(store_name, ())}
            stale = [key for key in keys if key not in fresh]
            if stale:
                self.postings.strip(stale, doc_id, store_name)

    def index_all(self, records: Iterable[Any]) -> int:
        """Index records one by one; returns the number indexed."""
        count = 0
        for record in records:
            self.index(record)
            count += 1
        return count

    def reindex(self, record: Any) -> DocumentSummary:
        """Re-index a record whose field values changed."""
        return self.index(record)

    def remove(self, record_or_id: Any) -> bool:
        """Remove a document from every posting that references it.

        The summary is read first to find the postings, the document id is
        stripped from each (emptied postings are deleted), and the summary is
        deleted last. Returns False when the document was not indexed.
        """
        doc_id = str(record_or_id) if isinstance(record_or_id, (str, int)) else self.adapter.doc_id(record_or_id)
        with create_span("kvindex.remove", attributes={"kvindex.namespace": self.namespace, "kvindex.doc_id": doc_id}):
            summary = self.summaries.read(doc_id)
            if summary is None:
                logger.debug("Document %s is not indexed; nothing to remove", doc_id)
                return False
            deleted = 0
            for store_name, keys in self.summaries.posting_keys(summary).items():
                _, emptied = self.postings.strip(keys, doc_id, store_name)
                deleted += emptied
            self.summaries.delete(doc_id)

        DOCUMENTS_REMOVED.labels(namespace=self.namespace).inc()
        logger.debug("Removed document %s (%d postings deleted)", doc_id, deleted)
        return True

    def summary(self, doc_id: Any) -> DocumentSummary | None:
        return self.summaries.read(str(doc_id))

    # ------------------------------------------------------------------
    # Querying
    # ------------------------------------------------------------------

    def _observe(self, mode: str, result: SearchResult) -> SearchResult:
        outcome = "matches" if isinstance(result, Matches) else "no_results"
        SEARCH_OUTCOMES.labels(namespace=self.namespace, mode=mode, outcome=outcome).inc()
        return result

    def search_any(self, terms: Sequence[str], fields: str | Sequence[str] | None = None) -> SearchResult:
        """All ``terms`` must be found, each in any of ``fields`` (default: all indexed fields)."""
        start = time.perf_counter()
        with create_span("kvindex.search", attributes={"kvindex.namespace": self.namespace, "kvindex.mode": "any"}):
            result = self.queries.find_in_any_field(terms, fields)
        SEARCH_LATENCY.labels(namespace=self.namespace, mode="any").observe(time.perf_counter() - start)
        return self._observe("any", result)

    def search_fields(self, query: Mapping[str, Sequence[str]]) -> SearchResult:
        """Every term must be found in its own field, or the query yields NoResults."""
        start = time.perf_counter()
        with create_span("kvindex.search", attributes={"kvindex.namespace": self.namespace, "kvindex.mode": "fields"}):
            result = self.queries.find_in_fields(query)
        SEARCH_LATENCY.labels(namespace=self.namespace, mode="fields").observe(time.perf_counter() - start)
        return self._observe("fields", result)

    def search(self, *terms: Any, fields: str | Sequence[str] | None = None) -> SearchResult:
        """Dispatch on call shape.

        ``search("social networks", "machine learning", fields=["title"])``
        runs a free-text query; ``search({"title": ["machine learning"]})``
        runs a per-field query. A list or tuple of terms is accepted in place
        of separate arguments: ``search(["cats", "dogs"])``.
        """
        if len(terms) == 1 and isinstance(terms[0], Mapping):
            if fields is not None:
                raise ConfigurationError("fields= applies to free-text queries only")
            return self.search_fields(terms[0])
        flattened: list[str] = []
        for term in terms:
            if isinstance(term, Mapping):
                raise ConfigurationError("A per-field query mapping must be the only argument to search()")
            if isinstance(term, (list, tuple)):
                flattened.extend(str(item) for item in term)
            else:
                flattened.append(str(term))
        return self.search_any(flattened, fields)

    def rank(
        self,
        result: SearchResult,
        terms: Sequence[str],
        fields: str | Sequence[str] | None = None,
    ) -> list[tuple[str, float]]:
        """Order a match set by weighted term frequency (informational)."""
        return self.queries.rank(result, terms, fields)

    def resolve(self, result: SearchResult, lookup: RecordLookup) -> list[Any]:
        """Materialize matched records through the host lookup."""
        if isinstance(result, NoResults) or not result.doc_ids:
            return []
        return list(lookup.find(sorted(result.doc_ids)))

    def close(self) -> None:
        self.router.close()

"""Query engine: boolean multi-term, multi-field lookups over the posting store.

Two query shapes are supported:

* ``find_in_any_field(terms, fields)`` - every term must be found, but each
  term may be found in any of the candidate fields (AND across terms, OR
  across fields per term).
* ``find_in_fields({field: [terms]})`` - every term must be found in its own
  field; a single missing (field, term) pair aborts the query.

Both return identifiers only, as ``NoResults`` or ``Matches``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
import logging

from kvindex.search.analyzers import Normalizer
from kvindex.search.dictionary import TermDictionary
from kvindex.search.keys import posting_key
from kvindex.search.models import Matches, NoResults, SearchResult
from kvindex.search.postings import PostingStore
from kvindex.search.router import StoreRouter
from kvindex.search.schema import IndexSpec
from kvindex.search.summaries import DocumentSummaryStore


logger = logging.getLogger(__name__)


def _as_list(value: str | Iterable[str] | None) -> list[str] | None:
    """Treat a bare string as one item rather than a sequence of characters."""
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    return list(value)


class QueryEngine:
    """Resolves raw query terms to document-id sets."""

    def __init__(
        self,
        spec: IndexSpec,
        router: StoreRouter,
        postings: PostingStore,
        summaries: DocumentSummaryStore,
        dictionary: TermDictionary | None = None,
    ) -> None:
        self.spec = spec
        self.router = router
        self.postings = postings
        self.summaries = summaries
        self.dictionary = dictionary
        self.normalizer = Normalizer(spec)

    def term_keys(self, terms: Iterable[str]) -> dict[str, str]:
        """Map normalized terms to their posting-key suffix without allocating ids.

        Empty terms and terms without a dictionary id are left out: nothing
        can be indexed under them.
        """
        wanted = [term for term in dict.fromkeys(terms) if term]
        if self.dictionary is None:
            return {term: term for term in wanted}
        return {term: str(term_id) for term, term_id in self.dictionary.lookup(wanted).items()}

    def find_in_any_field(self, raw_terms: Sequence[str], fields: str | Sequence[str] | None = None) -> SearchResult:
        """AND across ``raw_terms``; each term may match in any of ``fields``."""
        raw_terms = _as_list(raw_terms) or []
        fields = _as_list(fields)
        candidate_fields = list(dict.fromkeys(self.spec.fields if fields is None else fields))
        prepared = {field_name: self.normalizer.prepare_terms(field_name, raw_terms) for field_name in candidate_fields}
        if not raw_terms or not candidate_fields:
            return NoResults("empty query")

        keys_by_term = self.term_keys(term for terms in prepared.values() for term in terms)
        found_per_term: list[set[str]] = [set() for _ in raw_terms]

        for store_name, store_fields in self.router.group_fields(candidate_fields).items():
            requests: list[tuple[int, str]] = []
            for field_name in store_fields:
                for index, term in enumerate(prepared[field_name]):
                    term_key = keys_by_term.get(term)
                    if term_key is not None:
                        requests.append((index, posting_key(self.spec.namespace, field_name, term_key)))
            if not requests:
                continue
            fetched = self.postings.fetch([key for _, key in requests], store_name)
            for index, key in requests:
                posting = fetched.get(key)
                if posting:
                    found_per_term[index].update(posting)

        matched = set.intersection(*found_per_term)
        logger.debug("Free-text query over %s matched %d documents", candidate_fields, len(matched))
        return Matches(frozenset(matched))

    def find_in_fields(self, query: Mapping[str, Sequence[str]]) -> SearchResult:
        """Strict AND over every ``(field, term)`` pair of ``query``."""
        prepared = {
            field_name: self.normalizer.prepare_terms(field_name, _as_list(terms) or [])
            for field_name, terms in query.items()
        }
        if not any(prepared.values()):
            return NoResults("empty query")

        keys_by_term = self.term_keys(term for terms in prepared.values() for term in terms)
        doc_sets: list[set[str]] = []

        for store_name, store_fields in self.router.group_fields(prepared).items():
            keys: list[str] = []
            for field_name in store_fields:
                for term in prepared[field_name]:
                    term_key = keys_by_term.get(term)
                    if term_key is None:
                        return NoResults(f"term {term!r} is not indexed in field '{field_name}'")
                    keys.append(posting_key(self.spec.namespace, field_name, term_key))
            keys = list(dict.fromkeys(keys))
            if not keys:
                continue
            fetched = self.postings.fetch(keys, store_name)
            if len(fetched) < len(keys):
                missing = [key for key in keys if key not in fetched]
                return NoResults(f"no postings for {missing[0]}")
            doc_sets.extend(set(posting) for posting in fetched.values())

        matched = set.intersection(*doc_sets)
        logger.debug("Field query over %s matched %d documents", list(prepared), len(matched))
        return Matches(frozenset(matched))

    def rank(
        self,
        result: SearchResult,
        raw_terms: Sequence[str],
        fields: str | Sequence[str] | None = None,
    ) -> list[tuple[str, float]]:
        """Order matched ids by summed ``weight * frequency`` of the query terms.

        Scores come from document summaries and are informational only; ties
        are broken by document id.
        """
        if not isinstance(result, Matches) or not result.doc_ids:
            return []
        raw_terms = _as_list(raw_terms) or []
        fields = _as_list(fields)
        candidate_fields = list(dict.fromkeys(self.spec.fields if fields is None else fields))
        wanted: list[tuple[str, str]] = []
        for field_name in candidate_fields:
            wanted.extend((field_name, term) for term in self.normalizer.prepare_terms(field_name, raw_terms))
        wanted = list(dict.fromkeys(wanted))
        keys_by_term = self.term_keys(term for _, term in wanted)
        summaries = self.summaries.read_many(result.doc_ids)

        scored: list[tuple[str, float]] = []
        for doc_id in result.doc_ids:
            summary = summaries.get(doc_id)
            score = 0.0
            if summary is not None:
                for field_name, term in wanted:
                    term_key = keys_by_term.get(term)
                    if term_key is None:
                        continue
                    score += self.spec.get_weight(field_name) * summary.fields_for(term_key).get(field_name, 0.0)
            scored.append((doc_id, score))
        scored.sort(key=lambda item: (-item[1], item[0]))
        return scored

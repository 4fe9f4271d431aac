"""Search data models."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeAlias


# doc id -> normalized frequency in (0, 1]
Posting: TypeAlias = dict[str, float]


@dataclass(frozen=True)
class DocumentSummary:
    """Per-document bookkeeping written on every index() call.

    ``terms`` maps a term key (term id, or the term itself when ids are
    disabled) to ``{field: frequency}``. It is the authoritative record of the
    posting keys that reference this document.
    """

    doc_id: str
    token_count: int
    terms: dict[str, dict[str, float]] = field(default_factory=dict)

    def fields_for(self, term_key: str) -> dict[str, float]:
        return self.terms.get(term_key, {})

    def to_dict(self) -> dict[str, Any]:
        """Serialize with short keys: i=id, n=token count, t=terms."""
        return {"i": self.doc_id, "n": self.token_count, "t": self.terms}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DocumentSummary:
        terms = {
            str(term_key): {str(name): float(freq) for name, freq in fields.items()}
            for term_key, fields in (data.get("t") or {}).items()
        }
        return cls(doc_id=str(data["i"]), token_count=int(data.get("n", 0)), terms=terms)


@dataclass(frozen=True)
class NoResults:
    """Degenerate or unsatisfiable query (empty input, or a required term missing)."""

    reason: str = ""

    def __bool__(self) -> bool:
        return False

    def __len__(self) -> int:
        return 0

    def __iter__(self) -> Iterator[str]:
        return iter(())


@dataclass(frozen=True)
class Matches:
    """Valid match set; may be empty when the intersection of postings is empty."""

    doc_ids: frozenset[str] = frozenset()

    def __len__(self) -> int:
        return len(self.doc_ids)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.doc_ids))

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self.doc_ids


SearchResult: TypeAlias = NoResults | Matches

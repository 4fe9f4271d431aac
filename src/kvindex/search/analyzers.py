"""Text normalization and n-gram expansion for indexed fields.

Indexing and querying share the same normalization so that a query term and
the n-gram it should match land on the same posting key. Text is split by the
field's split rule, every piece is cleaned (lowercased, punctuation stripped,
whitespace collapsed), and boundary stopwords are trimmed.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
import re

from kvindex.search.schema import IndexConfig, IndexSpec


_NON_WORD = re.compile(r"[^\w\s]+", re.UNICODE)
_WHITESPACE = re.compile(r"\s+", re.UNICODE)


def clean(text: str) -> str:
    """Lowercase, drop characters outside word/whitespace classes and collapse whitespace."""
    stripped = _NON_WORD.sub("", text.lower())
    return _WHITESPACE.sub(" ", stripped).strip()


def tokenize(text: str, config: IndexConfig) -> list[str]:
    """Split ``text`` with the field's split rule and clean each piece, dropping empty tokens."""
    pieces = (clean(piece) for piece in config.split_pattern.split(text))
    return [piece for piece in pieces if piece]


def trim_stopwords(tokens: Sequence[str], stopwords: frozenset[str]) -> list[str]:
    """Drop leading and trailing stopwords; interior stopwords are kept."""
    start = 0
    end = len(tokens)
    while start < end and tokens[start] in stopwords:
        start += 1
    while end > start and tokens[end - 1] in stopwords:
        end -= 1
    return list(tokens[start:end])


class Normalizer:
    """Per-field term normalization bound to an index spec."""

    def __init__(self, spec: IndexSpec) -> None:
        self.spec = spec

    def prepare_term(self, field_name: str, term: str) -> str:
        """Normalize a raw term under ``field_name``'s rules.

        Raises ConfigurationError for unregistered fields. The result may be
        empty when the term consists only of stopwords or punctuation.
        """
        config = self.spec.config_for(field_name)
        return " ".join(trim_stopwords(tokenize(term, config), config.stopwords))

    def prepare_terms(self, field_name: str, terms: Iterable[str]) -> list[str]:
        return [self.prepare_term(field_name, term) for term in terms]


@dataclass
class FieldTerms:
    """N-gram counts and token total for one field of one document."""

    field_name: str
    counts: Counter[str] = field(default_factory=Counter)
    token_count: int = 0

    def frequency(self, term: str, total: int | None = None) -> float:
        """Occurrences of ``term`` divided by ``total`` (defaults to the field's token count)."""
        denominator = total if total is not None else self.token_count
        if denominator <= 0:
            return 0.0
        return self.counts[term] / denominator


class NGramGenerator:
    """Expands field values into candidate index terms."""

    def __init__(self, spec: IndexSpec) -> None:
        self.spec = spec

    def sentences(self, value: str | Sequence[str], config: IndexConfig) -> Iterator[list[str]]:
        """Yield the token list of every sentence in a string or list of strings."""
        values = [value] if isinstance(value, str) else value
        for item in values:
            if item is None:
                continue
            text = str(item)
            pieces = config.sentence_pattern.split(text) if config.sentence_pattern is not None else [text]
            for piece in pieces:
                tokens = tokenize(piece, config)
                if tokens:
                    yield tokens

    def ngrams(self, tokens: Sequence[str], config: IndexConfig) -> Iterator[str]:
        """Yield every retained window of 1..ngram tokens.

        A window is dropped if its first or last token is a stopword (the
        non-stopword part was already emitted for a shorter length) or if its
        joined form is shorter than ``minlength``.
        """
        for size in range(1, config.ngram + 1):
            for start in range(len(tokens) - size + 1):
                window = tokens[start : start + size]
                if window[0] in config.stopwords or window[-1] in config.stopwords:
                    continue
                gram = " ".join(window)
                if len(gram) < config.minlength:
                    continue
                yield gram

    def generate(self, field_name: str, value: str | Sequence[str] | None) -> FieldTerms:
        config = self.spec.config_for(field_name)
        result = FieldTerms(field_name=field_name)
        if value is None:
            return result
        for tokens in self.sentences(value, config):
            result.token_count += len(tokens)
            result.counts.update(self.ngrams(tokens, config))
        return result

"""
Index specification for searchable record types.

An :class:`IndexSpec` names the namespace of one record type and owns the
per-field :class:`IndexConfig` values registered for it. The spec is an
ordinary object handed to the engine at construction; nothing is attached
to host classes and there is no process-wide registry.

Each field config controls:
- ngram: maximum number of consecutive tokens indexed as one term
- minlength: minimum length of a normalized term
- split / sentence_split: token and sentence boundaries (regular expressions)
- stopwords: words that may not start or end a term
- store: name of the key-value store holding this field's postings
- weight: relevance weight used when ranking matches
"""

from __future__ import annotations

from collections.abc import Iterator
import re
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kvindex.errors import ConfigurationError


DEFAULT_STOPWORDS: frozenset[str] = frozenset(
    """
    & a able about across after all almost also am among an and any are as at be because been but by can
    cannot could dear did do does either else ever every for from get got had has have he her hers him his
    how however i if in into is it its just least let like likely may me might most must my neither no nor
    not of off often on only or other our own rather said say says she should since so some than that the
    their them then there these they this tis to too twas us wants was we were what when where which while
    who whom why will with would yet you your
    """.split()
)

DEFAULT_SPLIT = r"\s+"
DEFAULT_SENTENCE_SPLIT = r"[.!?\n]+"


class IndexConfig(BaseModel):
    """Immutable indexing options for one field."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    ngram: Annotated[
        int,
        Field(ge=1, le=16, description="Maximum length of sequential words to index", examples=[1, 3]),
    ] = 1

    minlength: Annotated[
        int,
        Field(ge=1, description="Minimum length of a normalized term"),
    ] = 2

    split: Annotated[
        str,
        Field(min_length=1, description="Regular expression separating tokens"),
    ] = DEFAULT_SPLIT

    sentence_split: Annotated[
        str | None,
        Field(description="Regular expression separating sentences; n-grams never cross it. None disables."),
    ] = DEFAULT_SENTENCE_SPLIT

    stopwords: Annotated[
        frozenset[str],
        Field(description="Words that may not start or end an indexed term"),
    ] = DEFAULT_STOPWORDS

    store: Annotated[
        str | None,
        Field(description="Named key-value store for this field's postings (None = engine default store)"),
    ] = None

    weight: Annotated[
        float,
        Field(ge=0.0, description="Relevance weight applied when ranking matches"),
    ] = 1.0

    @field_validator("split", "sentence_split")
    @classmethod
    def _validate_pattern(cls, value: str | None) -> str | None:
        if value is None:
            return value
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"Invalid regular expression {value!r}: {exc}") from exc
        return value

    @field_validator("stopwords", mode="before")
    @classmethod
    def _lowercase_stopwords(cls, value: Any) -> Any:
        if isinstance(value, str):
            raise ValueError("stopwords must be a collection of words, not a string")
        if value is None:
            return DEFAULT_STOPWORDS
        return frozenset(str(word).lower() for word in value)

    @property
    def split_pattern(self) -> re.Pattern[str]:
        return re.compile(self.split)

    @property
    def sentence_pattern(self) -> re.Pattern[str] | None:
        if self.sentence_split is None:
            return None
        return re.compile(self.sentence_split)


class IndexSpec:
    """
    Registry of indexed fields for one record type.

    Example:
        spec = IndexSpec("Article")
        spec.add_index("title", ngram=3)
        spec.add_index("body", ngram=2, store="bodies")
        spec.add_index("tags", stopwords=())
    """

    def __init__(self, namespace: str, fields: dict[str, IndexConfig] | None = None) -> None:
        if not namespace or ":" in namespace:
            raise ConfigurationError(f"Namespace must be a non-empty string without ':' (got {namespace!r})")
        self.namespace = namespace
        self._fields: dict[str, IndexConfig] = {}
        for name, config in (fields or {}).items():
            self.register(name, config)

    def add_index(self, *fields: str, **options: Any) -> IndexSpec:
        """Register one or more fields sharing the same options."""
        try:
            config = IndexConfig(**options)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid index options for {list(fields)}: {exc}") from exc
        for name in fields:
            self.register(name, config)
        return self

    def register(self, name: str, config: IndexConfig) -> None:
        if not name or ":" in name:
            raise ConfigurationError(f"Field name must be a non-empty string without ':' (got {name!r})")
        if name in self._fields:
            raise ConfigurationError(f"Field '{name}' is already registered for namespace '{self.namespace}'")
        self._fields[name] = config

    def config_for(self, field: str) -> IndexConfig:
        try:
            return self._fields[field]
        except KeyError:
            raise ConfigurationError(
                f"Field '{field}' is not indexed for namespace '{self.namespace}'. Indexed: {self.fields}"
            ) from None

    @property
    def fields(self) -> list[str]:
        """Registered field names, in registration order."""
        return list(self._fields)

    def __contains__(self, field: str) -> bool:
        return field in self._fields

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def get_weight(self, field: str) -> float:
        """Relevance weight for a field (1.0 for unknown fields)."""
        if field in self._fields:
            return self._fields[field].weight
        return 1.0

    def to_dict(self) -> dict[str, Any]:
        """Serialize the spec to a dict."""
        return {
            "namespace": self.namespace,
            "fields": {
                name: {**config.model_dump(), "stopwords": sorted(config.stopwords)}
                for name, config in self._fields.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IndexSpec:
        """Deserialize a spec from a dict."""
        fields = {name: IndexConfig(**options) for name, options in data.get("fields", {}).items()}
        return cls(data["namespace"], fields)

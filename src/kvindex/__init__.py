"""kvindex - full-text n-gram indexing over sharded key-value stores."""

from kvindex.config import Settings
from kvindex.errors import CodecError, ConfigurationError, KvIndexError, StoreUnavailable
from kvindex.search.documents import DocumentAdapter, RecordLookup, attribute_adapter, mapping_adapter
from kvindex.search.engine import SearchEngine
from kvindex.search.models import DocumentSummary, Matches, NoResults, SearchResult
from kvindex.search.schema import DEFAULT_STOPWORDS, IndexConfig, IndexSpec
from kvindex.search.stores import KeyValueStore, MemoryKeyValueStore, SqliteKeyValueStore


__version__ = "0.1.0"

__all__ = [
    "DEFAULT_STOPWORDS",
    "CodecError",
    "ConfigurationError",
    "DocumentAdapter",
    "DocumentSummary",
    "IndexConfig",
    "IndexSpec",
    "KeyValueStore",
    "KvIndexError",
    "Matches",
    "MemoryKeyValueStore",
    "NoResults",
    "RecordLookup",
    "SearchEngine",
    "SearchResult",
    "Settings",
    "SqliteKeyValueStore",
    "StoreUnavailable",
    "__version__",
    "attribute_adapter",
    "mapping_adapter",
]

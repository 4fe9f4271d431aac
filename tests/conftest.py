"""Shared test fixtures and configuration."""

import os

import pytest

from kvindex.config import Settings
from kvindex.search.documents import mapping_adapter
from kvindex.search.engine import SearchEngine
from kvindex.search.schema import IndexSpec
from kvindex.search.stores import MemoryKeyValueStore


# Deterministic engine settings regardless of the developer's environment
TEST_ENV = {
    "KVINDEX_DEFAULT_STORE": "default",
    "KVINDEX_USE_TERM_IDS": "true",
    "KVINDEX_FREQUENCY_BASIS": "field",
    "KVINDEX_LOG_LEVEL": "info",
    "KVINDEX_JSON_LOGS": "true",
}

_UNSET_ENV = ("KVINDEX_SUMMARY_STORE", "KVINDEX_DICTIONARY_STORE")


for key, value in TEST_ENV.items():
    os.environ[key] = value
for key in _UNSET_ENV:
    os.environ.pop(key, None)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Reset KVINDEX_* variables before each test."""
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)
    for key in _UNSET_ENV:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def article_spec() -> IndexSpec:
    """Two text fields: a short title indexed up to bigrams and a body."""
    spec = IndexSpec("Article")
    spec.add_index("title", ngram=2, weight=2.0)
    spec.add_index("body", ngram=2)
    return spec


@pytest.fixture
def memory_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def engine(article_spec, memory_store) -> SearchEngine:
    return SearchEngine(article_spec, {"default": memory_store}, adapter=mapping_adapter(), settings=Settings())

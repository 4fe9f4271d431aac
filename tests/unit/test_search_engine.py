"""End-to-end tests for indexing, removal and boolean search."""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import logging

import pytest

from kvindex.config import Settings
from kvindex.errors import ConfigurationError, StoreUnavailable
from kvindex.search.documents import attribute_adapter
from kvindex.search.engine import SearchEngine
from kvindex.search.models import Matches, NoResults
from kvindex.search.schema import IndexSpec
from kvindex.search.stores import MemoryKeyValueStore, SqliteKeyValueStore


def _matches(*doc_ids: str) -> Matches:
    return Matches(frozenset(doc_ids))


class _DownOnWrite(MemoryKeyValueStore):
    """Store that accepts reads but refuses writes."""

    def set_bulk(self, items):
        raise ConnectionError("write refused")


class _RecordingStore(MemoryKeyValueStore):
    """Memory store that records the name of every call it receives."""

    def __init__(self):
        super().__init__()
        self.calls: list[str] = []

    def get(self, key):
        self.calls.append("get")
        return super().get(key)

    def get_bulk(self, keys):
        self.calls.append("get_bulk")
        return super().get_bulk(keys)

    def set(self, key, value):
        self.calls.append("set")
        super().set(key, value)

    def set_bulk(self, items):
        self.calls.append("set_bulk")
        super().set_bulk(items)

    def increment(self, key):
        self.calls.append("increment")
        return super().increment(key)

    def remove(self, key):
        self.calls.append("remove")
        super().remove(key)


class _FakeLookup:
    def __init__(self, records):
        self.records = {str(record["id"]): record for record in records}
        self.requested: list[list[str]] = []

    def find(self, ids):
        ids = list(ids)
        self.requested.append(ids)
        return [self.records[doc_id] for doc_id in ids]


@dataclass
class Article:
    id: int
    title: str
    body: str | None = None


@pytest.mark.unit
class TestFieldQueries:
    """Strict per-field AND queries."""

    def test_bigram_in_title(self, engine):
        engine.index({"id": "D1", "title": "Machine Learning for social networks", "body": "Graphs."})
        engine.index({"id": "D2", "title": "Machine translation"})

        assert engine.search_fields({"title": ["machine learning"]}) == _matches("D1")
        assert engine.search_fields({"title": ["Machine"]}) == _matches("D1", "D2")

    def test_terms_across_fields_intersect(self, engine):
        engine.index({"id": "D1", "title": "cats", "body": "dogs"})
        engine.index({"id": "D2", "title": "cats", "body": "birds"})

        assert engine.search_fields({"title": ["cats"], "body": ["dogs"]}) == _matches("D1")

    def test_missing_term_gives_no_results(self, engine):
        engine.index({"id": "D1", "title": "cats"})

        result = engine.search_fields({"title": ["cats", "deep learning"]})

        assert isinstance(result, NoResults)
        assert not result
        assert list(result) == []

    def test_term_indexed_only_in_another_field(self, engine):
        engine.index({"id": "D1", "title": "cats", "body": "dogs"})

        assert isinstance(engine.search_fields({"body": ["cats"]}), NoResults)

    def test_empty_intersection_is_a_valid_empty_match(self, engine):
        engine.index({"id": "D1", "title": "cats"})
        engine.index({"id": "D2", "title": "dogs"})

        assert engine.search_fields({"title": ["cats", "dogs"]}) == Matches(frozenset())

    @pytest.mark.parametrize("query", [{}, {"title": []}, {"title": ["the", "?!"]}])
    def test_empty_queries(self, engine, query):
        engine.index({"id": "D1", "title": "cats"})

        assert isinstance(engine.search_fields(query), NoResults)

    def test_unknown_field_raises(self, engine):
        with pytest.raises(ConfigurationError):
            engine.search_fields({"author": ["smith"]})


@pytest.mark.unit
class TestFreeTextQueries:
    """AND across terms, OR across candidate fields."""

    def test_all_terms_required(self, engine):
        engine.index({"id": "D1", "title": "cats dogs"})
        engine.index({"id": "D2", "title": "cats"})

        assert engine.search_any(["cats", "dogs"], ["title"]) == _matches("D1")
        assert engine.search_any(["cats"], ["title"]) == _matches("D1", "D2")

    def test_term_may_match_any_field(self, engine):
        engine.index({"id": "D1", "title": "alpha"})
        engine.index({"id": "D2", "body": "beta"})
        engine.index({"id": "D3", "body": "alpha"})

        assert engine.search_any(["alpha"], ["title", "body"]) == _matches("D1", "D3")
        assert engine.search_any(["alpha"]) == _matches("D1", "D3")
        assert engine.search_any(["alpha"], ["body"]) == _matches("D3")

    def test_unindexed_term_gives_empty_match(self, engine):
        engine.index({"id": "D1", "title": "cats"})

        assert engine.search_any(["cats", "zebras"]) == Matches(frozenset())

    def test_empty_inputs(self, engine):
        engine.index({"id": "D1", "title": "cats"})

        assert isinstance(engine.search_any([]), NoResults)
        assert isinstance(engine.search_any(["cats"], []), NoResults)

    def test_unknown_field_raises(self, engine):
        with pytest.raises(ConfigurationError):
            engine.search_any(["cats"], ["author"])

    def test_matches_iterate_sorted(self, engine):
        engine.index_all([{"id": "b", "title": "cats"}, {"id": "a", "title": "cats"}])

        result = engine.search_any(["cats"])

        assert list(result) == ["a", "b"]
        assert "a" in result
        assert len(result) == 2

    def test_search_dispatches_on_call_shape(self, engine):
        engine.index({"id": "D1", "title": "machine learning", "body": "social networks"})

        assert engine.search("machine learning", "social networks") == _matches("D1")
        assert engine.search("social networks", fields=["title"]) == Matches(frozenset())
        assert engine.search({"body": ["social networks"]}) == _matches("D1")
        with pytest.raises(ConfigurationError):
            engine.search({"body": ["social"]}, fields=["body"])

    def test_term_lists_and_bare_strings_keep_their_meaning(self, engine):
        engine.index({"id": "D1", "title": "cats", "body": "dogs"})
        engine.index({"id": "D2", "title": "cats"})

        assert engine.search(["cats", "dogs"]) == _matches("D1")
        assert engine.search(("cats",), fields="title") == _matches("D1", "D2")
        assert engine.search_any(["cats"], fields="title") == _matches("D1", "D2")
        assert engine.search_any("dogs") == _matches("D1")
        assert engine.search_fields({"title": "cats", "body": "dogs"}) == _matches("D1")
        assert engine.rank(_matches("D1", "D2"), "cats", fields="title") == [("D1", 2.0), ("D2", 2.0)]

    def test_mapping_mixed_with_terms_is_rejected(self, engine):
        with pytest.raises(ConfigurationError):
            engine.search("cats", {"title": ["cats"]})


@pytest.mark.unit
class TestIndexMaintenance:
    """Removal and re-indexing keep postings consistent."""

    def test_remove_strips_document(self, engine, memory_store):
        engine.index({"id": "D1", "title": "cats dogs"})
        engine.index({"id": "D2", "title": "cats"})

        assert engine.remove("D1") is True

        assert engine.search_any(["cats"]) == _matches("D2")
        assert engine.search_any(["dogs"]) == Matches(frozenset())
        assert isinstance(engine.search_fields({"title": ["dogs"]}), NoResults)
        assert engine.summary("D1") is None

    def test_remove_deletes_emptied_postings(self, engine, memory_store):
        engine.index({"id": "D1", "title": "cats", "body": "cats"})

        engine.remove({"id": "D1"})

        assert memory_store.keys("Article:title:") == []
        assert memory_store.keys("Article:body:") == []

    def test_remove_unknown_document(self, engine):
        assert engine.remove("never-indexed") is False

    def test_reindex_drops_stale_terms(self, engine, memory_store):
        engine.index({"id": "D1", "title": "cats"})
        engine.index({"id": "D2", "title": "cats"})

        engine.reindex({"id": "D1", "title": "dogs"})

        assert engine.search_any(["cats"]) == _matches("D2")
        assert engine.search_any(["dogs"]) == _matches("D1")
        assert len(memory_store.keys("Article:title:")) == 2

    def test_reindex_same_record_is_stable(self, engine, memory_store):
        record = {"id": "D1", "title": "cats dogs", "body": "birds"}
        first = engine.index(record)
        keys = memory_store.keys()

        second = engine.index(record)

        assert first == second
        assert memory_store.keys() == keys

    def test_summary_records_per_field_frequencies(self, engine):
        summary = engine.index({"id": "D1", "title": "cats cats dogs", "body": "cats"})
        cats = str(engine.dictionary.lookup(["cats"])["cats"])

        assert summary.token_count == 4
        assert summary.terms[cats] == {"title": pytest.approx(2 / 3), "body": 1.0}
        assert engine.summary("D1") == summary

    def test_records_without_id_are_rejected(self, engine):
        with pytest.raises(ValueError, match="no id"):
            engine.index({"title": "cats"})

    def test_concurrent_indexing_keeps_every_document(self, engine):
        records = [{"id": f"D{i}", "title": "shared words", "body": f"unique{i}"} for i in range(40)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(engine.index, records))

        assert len(engine.search_any(["shared words"], ["title"])) == 40
        assert engine.search_fields({"body": ["unique7"]}) == _matches("D7")


@pytest.mark.unit
class TestRankingAndResolution:
    def test_rank_uses_field_weights(self, engine):
        engine.index({"id": "D1", "title": "cats", "body": "other things"})
        engine.index({"id": "D2", "body": "cats"})

        ranked = engine.rank(engine.search_any(["cats"]), ["cats"])

        assert ranked == [("D1", 2.0), ("D2", 1.0)]

    def test_rank_ties_break_by_id(self, engine):
        engine.index({"id": "b", "title": "cats"})
        engine.index({"id": "a", "title": "cats"})

        assert [doc_id for doc_id, _ in engine.rank(engine.search_any(["cats"]), ["cats"])] == ["a", "b"]

    def test_rank_no_results(self, engine):
        assert engine.rank(NoResults("empty query"), ["cats"]) == []

    def test_resolve_calls_lookup_with_sorted_ids(self, engine):
        records = [{"id": "D2", "title": "cats"}, {"id": "D1", "title": "cats"}]
        engine.index_all(records)
        lookup = _FakeLookup(records)

        resolved = engine.resolve(engine.search_any(["cats"]), lookup)

        assert [record["id"] for record in resolved] == ["D1", "D2"]
        assert lookup.requested == [["D1", "D2"]]

    def test_resolve_skips_lookup_for_empty_results(self, engine):
        lookup = _FakeLookup([])

        assert engine.resolve(NoResults(), lookup) == []
        assert engine.resolve(Matches(frozenset()), lookup) == []
        assert lookup.requested == []


@pytest.mark.unit
class TestStoreRouting:
    """Postings land only in the store configured for their field."""

    @pytest.fixture
    def stores(self):
        return {"default": MemoryKeyValueStore(), "titles": MemoryKeyValueStore(), "bodies": MemoryKeyValueStore()}

    @pytest.fixture
    def sharded_spec(self):
        spec = IndexSpec("Article")
        spec.add_index("title", ngram=2, store="titles")
        spec.add_index("body", store="bodies")
        return spec

    def test_postings_are_isolated_per_store(self, sharded_spec, stores):
        engine = SearchEngine(sharded_spec, stores, settings=Settings())
        engine.index({"id": "D1", "title": "machine learning", "body": "graphs"})

        assert stores["titles"].keys() == stores["titles"].keys("Article:title:")
        assert len(stores["titles"]) == 3
        assert stores["bodies"].keys() == stores["bodies"].keys("Article:body:")
        assert stores["default"].keys("Article:title:") == []
        assert stores["default"].get("Article::summary::D1") is not None
        assert stores["default"].get("Article::next_term_id") == b"4"
        assert engine.search_fields({"title": ["machine learning"], "body": ["graphs"]}) == _matches("D1")

    def test_summary_and_dictionary_stores_are_configurable(self, sharded_spec, stores):
        stores["meta"] = MemoryKeyValueStore()
        settings = Settings(summary_store="meta", dictionary_store="meta")
        engine = SearchEngine(sharded_spec, stores, settings=settings)

        engine.index({"id": "D1", "title": "cats"})

        assert stores["meta"].get("Article::summary::D1") is not None
        assert stores["meta"].get("Article::term_id::cats") == b"1"
        assert len(stores["default"]) == 0

    def test_missing_store_is_a_configuration_error(self, sharded_spec):
        with pytest.raises(ConfigurationError):
            SearchEngine(sharded_spec, {"default": MemoryKeyValueStore()})
        with pytest.raises(ConfigurationError):
            SearchEngine(
                IndexSpec("Article").add_index("title"),
                {"default": MemoryKeyValueStore()},
                settings=Settings(summary_store="meta"),
            )

    def test_spec_without_fields_is_rejected(self):
        with pytest.raises(ConfigurationError):
            SearchEngine(IndexSpec("Article"), {"default": MemoryKeyValueStore()})

    def test_partial_failure_is_logged_and_raised(self, sharded_spec, stores, caplog):
        stores["bodies"] = _DownOnWrite()
        engine = SearchEngine(sharded_spec, stores, settings=Settings())

        with caplog.at_level(logging.ERROR, logger="kvindex.search.engine"):
            with pytest.raises(StoreUnavailable) as excinfo:
                engine.index({"id": "D1", "title": "cats", "body": "dogs"})

        assert excinfo.value.store == "bodies"
        record = next(r for r in caplog.records if r.name == "kvindex.search.engine")
        assert record.failed_store == "bodies"
        assert record.updated_stores == ["titles"]
        assert stores["titles"].keys("Article:title:") != []
        assert engine.summary("D1") is None


@pytest.mark.unit
class TestStoreBatching:
    """Fields sharing a store are served by one bulk read and one bulk write."""

    @pytest.fixture
    def stores(self):
        return {"default": MemoryKeyValueStore(), "posts": _RecordingStore(), "labels": _RecordingStore()}

    @pytest.fixture
    def engine(self, stores):
        spec = IndexSpec("Article")
        spec.add_index("title", ngram=2, store="posts")
        spec.add_index("body", store="posts")
        spec.add_index("tags", store="labels")
        return SearchEngine(spec, stores, settings=Settings())

    def test_index_batches_per_store(self, engine, stores):
        engine.index({"id": "D1", "title": "machine learning", "body": "graphs", "tags": ["ml"]})

        assert stores["posts"].calls == ["get_bulk", "set_bulk"]
        assert stores["labels"].calls == ["get_bulk", "set_bulk"]
        assert all(key.startswith(("Article:title:", "Article:body:")) for key in stores["posts"].keys())
        assert all(key.startswith("Article:tags:") for key in stores["labels"].keys())
        assert len(stores["labels"]) == 1

    def test_field_query_reads_each_store_once(self, engine, stores):
        engine.index({"id": "D1", "title": "machine learning", "body": "graphs", "tags": ["ml"]})
        stores["posts"].calls.clear()
        stores["labels"].calls.clear()

        result = engine.search_fields({"title": ["machine learning", "machine"], "body": ["graphs"], "tags": ["ml"]})

        assert result == _matches("D1")
        assert stores["posts"].calls == ["get_bulk"]
        assert stores["labels"].calls == ["get_bulk"]

    def test_free_text_query_reads_each_store_once(self, engine, stores):
        engine.index({"id": "D1", "title": "machine learning", "body": "graphs", "tags": ["ml"]})
        stores["posts"].calls.clear()
        stores["labels"].calls.clear()

        assert engine.search_any(["graphs", "ml"]) == _matches("D1")
        assert stores["posts"].calls == ["get_bulk"]
        assert stores["labels"].calls == ["get_bulk"]


@pytest.mark.unit
class TestSettingsVariants:
    def test_raw_term_keys_without_dictionary(self, article_spec, memory_store):
        engine = SearchEngine(article_spec, {"default": memory_store}, settings=Settings(use_term_ids=False))

        engine.index({"id": "D1", "title": "machine learning"})

        assert engine.dictionary is None
        assert memory_store.get("Article:title:machine learning") is not None
        assert memory_store.keys("Article::term_id::") == []
        assert engine.search_fields({"title": ["Machine Learning"]}) == _matches("D1")

    def test_document_frequency_basis(self, article_spec, memory_store):
        settings = Settings(use_term_ids=False, frequency_basis="document")
        engine = SearchEngine(article_spec, {"default": memory_store}, settings=settings)

        summary = engine.index({"id": "D1", "title": "cats dogs", "body": "birds fly"})

        assert summary.token_count == 4
        assert summary.terms["cats"] == {"title": 0.25}

    def test_field_frequency_basis(self, article_spec, memory_store):
        engine = SearchEngine(article_spec, {"default": memory_store}, settings=Settings(use_term_ids=False))

        summary = engine.index({"id": "D1", "title": "cats dogs", "body": "birds fly"})

        assert summary.terms["cats"] == {"title": 0.5}

    def test_settings_come_from_environment(self, article_spec, memory_store, monkeypatch):
        monkeypatch.setenv("KVINDEX_USE_TERM_IDS", "false")

        engine = SearchEngine(article_spec, {"default": memory_store})

        assert engine.dictionary is None

    def test_attribute_adapter(self, article_spec, memory_store):
        engine = SearchEngine(article_spec, {"default": memory_store}, adapter=attribute_adapter())

        engine.index(Article(id=7, title="Cats and dogs"))

        assert engine.search_any(["dogs"]) == _matches("7")
        assert engine.remove(7) is True
        assert engine.search_any(["dogs"]) == Matches(frozenset())

    def test_sqlite_index_survives_restart(self, article_spec, tmp_path):
        path = tmp_path / "index.db"
        first = SearchEngine(article_spec, {"default": SqliteKeyValueStore(path)})
        first.index({"id": "D1", "title": "machine learning"})
        first.close()

        second = SearchEngine(article_spec, {"default": SqliteKeyValueStore(path)})
        try:
            second.index({"id": "D2", "title": "machine vision"})
            assert second.search_any(["machine"]) == _matches("D1", "D2")
            assert second.search_fields({"title": ["machine learning"]}) == _matches("D1")
        finally:
            second.close()

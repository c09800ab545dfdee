"""Tests for the read-through query cache.

WHAT: Key derivation, hit/miss behavior, soft store failures, administration
WHY: Two identical calls inside the TTL must return identical rows without a
     second trip to the analytical store

REFERENCES:
  - frontview/analytics/cache.py
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from frontview.analytics.cache import QueryCache, canonical_json, fingerprint, serialize_rows
from frontview.tests.conftest import FakeStore, RecordingExecutor


SQL = "SELECT sum(x) AS total FROM t WHERE d = :d"


def make_cache(rows=None, **kwargs):
    executor = RecordingExecutor(lambda query, params: [dict(r) for r in (rows or [])])
    store = FakeStore()
    return QueryCache(executor, store, **kwargs), executor, store


class TestKeys:

    def test_derived_key_ignores_param_order(self):
        cache, _, _ = make_cache()
        assert cache.make_key(SQL, {"a": 1, "b": 2}) == cache.make_key(SQL, {"b": 2, "a": 1})

    def test_derived_key_depends_on_params(self):
        cache, _, _ = make_cache()
        assert cache.make_key(SQL, {"d": "2024-03-01"}) != cache.make_key(SQL, {"d": "2024-02-01"})

    def test_explicit_key_is_namespaced_verbatim(self):
        cache, _, _ = make_cache()
        assert cache.make_key(SQL, {}, cache_key="distinct:t:c") == "ch:distinct:t:c"

    def test_canonical_json_and_fingerprint_are_stable(self):
        assert canonical_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'
        assert fingerprint({"b": 1, "a": 2}) == fingerprint({"a": 2, "b": 1})
        assert len(fingerprint([])) == 16


class TestReadThrough:

    def test_second_call_is_served_from_cache_byte_identical(self):
        rows = [{"total": Decimal("1.5"), "d": date(2024, 3, 1)}]
        cache, executor, _ = make_cache(rows)

        first = asyncio.run(cache.query(SQL, {"d": "2024-03-01"}))
        second = asyncio.run(cache.query(SQL, {"d": "2024-03-01"}))

        assert len(executor.calls) == 1
        assert serialize_rows(first) == serialize_rows(second)
        assert first == [{"total": 1.5, "d": "2024-03-01"}]

    def test_miss_writes_with_ttl(self):
        cache, _, store = make_cache([{"total": 1}])
        asyncio.run(cache.query(SQL, {"d": "x"}, cache_key="stats:t", ttl=60))
        assert store.writes == ["ch:stats:t"]
        assert 0 < asyncio.run(store.ttl("ch:stats:t")) <= 60

    def test_skip_cache_bypasses_store(self):
        cache, executor, store = make_cache([{"total": 1}])
        asyncio.run(cache.query(SQL, skip_cache=True))
        asyncio.run(cache.query(SQL, skip_cache=True))
        assert len(executor.calls) == 2
        assert store.writes == []

    def test_disabled_cache_always_executes(self):
        cache, executor, store = make_cache([{"total": 1}], enable_cache=False)
        asyncio.run(cache.query(SQL))
        asyncio.run(cache.query(SQL))
        assert len(executor.calls) == 2
        assert store.data == {}

    def test_store_read_failure_is_a_miss(self):
        cache, executor, store = make_cache([{"total": 1}])
        store.fail_reads = True
        assert asyncio.run(cache.query(SQL)) == [{"total": 1}]
        assert len(executor.calls) == 1

    def test_store_write_failure_still_returns_rows(self):
        cache, executor, store = make_cache([{"total": 1}])
        store.fail_writes = True
        assert asyncio.run(cache.query(SQL)) == [{"total": 1}]
        assert store.data == {}

    def test_unreadable_entry_is_discarded(self):
        cache, executor, store = make_cache([{"total": 1}])
        store.data["ch:bad"] = b"not json"
        store.expires["ch:bad"] = float("inf")
        assert asyncio.run(cache.query(SQL, cache_key="bad")) == [{"total": 1}]
        assert len(executor.calls) == 1

    def test_executor_failure_propagates_and_nothing_is_cached(self):
        def boom(query, params):
            raise RuntimeError("Code: 60. Table default.missing doesn't exist")

        store = FakeStore()
        cache = QueryCache(RecordingExecutor(boom), store)
        with pytest.raises(RuntimeError):
            asyncio.run(cache.query(SQL))
        assert store.data == {}


class TestAdministration:

    def test_invalidate_by_pattern(self):
        cache, _, store = make_cache([{"v": 1}])
        asyncio.run(cache.query(SQL, cache_key="grouped-stats:f_exposure:desk:a"))
        asyncio.run(cache.query(SQL, cache_key="grouped-stats:f_exposure:desk:b"))
        asyncio.run(cache.query(SQL, cache_key="stats:f_exposure:a"))

        deleted = asyncio.run(cache.invalidate("grouped-stats:*"))

        assert deleted == 2
        assert list(store.data) == ["ch:stats:f_exposure:a"]

    def test_invalidate_without_pattern_clears_namespace_only(self):
        cache, _, store = make_cache([{"v": 1}])
        store.data["other:key"] = b"[]"
        store.expires["other:key"] = float("inf")
        asyncio.run(cache.query(SQL, cache_key="a"))

        assert asyncio.run(cache.invalidate()) == 1
        assert "other:key" in store.data

    def test_flush_clears_everything(self):
        cache, _, store = make_cache([{"v": 1}])
        store.data["other:key"] = b"[]"
        asyncio.run(cache.flush())
        assert store.data == {}

    def test_entries_lists_key_ttl_and_size(self):
        cache, _, _ = make_cache([{"v": 1}])
        asyncio.run(cache.query(SQL, cache_key="b", ttl=100))
        asyncio.run(cache.query(SQL, cache_key="a", ttl=100))

        entries = asyncio.run(cache.entries())

        assert [e["key"] for e in entries] == ["ch:a", "ch:b"]
        assert entries[0]["size"] == len(b'[{"v":1}]')
        assert 0 < entries[0]["ttl"] <= 100

    def test_stats_reports_both_connections(self):
        cache, executor, store = make_cache()
        store.healthy = False
        stats = asyncio.run(cache.stats())
        assert stats == {"executor_connected": True, "store_connected": False, "cache_enabled": True}

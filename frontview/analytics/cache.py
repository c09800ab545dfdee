"""
Read-Through Query Cache
========================

Get-or-compute wrapper around the analytical query executor.

WHY THIS FILE EXISTS
--------------------
Dashboard cards re-issue the same aggregate queries constantly (every page
load, every tab switch). The analytical store answers them in hundreds of
milliseconds; Redis answers in about one. This module sits in front of the
executor and:

    1. Derives a deterministic key for every query
    2. Returns the cached rows when present (executor untouched)
    3. Otherwise executes, stores the rows with a TTL, and returns them

CACHE KEYS
----------
- Explicit: `cache_key` is used verbatim inside the namespace
  ("grouped-stats:...", "closest_date:...", "distinct:..."). Callers use
  these when they want readable, pattern-invalidatable keys.
- Derived: md5(query_text + canonical JSON(params)), e.g. "ch:9b2f...".

DETERMINISM
-----------
Rows are stored as JSON. A miss returns the rows AFTER one round of
serialization, exactly what a later hit will return, so two calls inside
the TTL window are byte-identical (dates as ISO strings, Decimals as floats).

FAILURE MODES
-------------
- Store read fails  -> treated as a miss, warning logged
- Store write fails -> warning logged, rows still returned
- Executor fails    -> propagates unchanged (no retry, nothing cached)

RELATED FILES
-------------
- frontview/analytics/store.py: KeyValueStore / RedisStore
- frontview/analytics/executor.py: QueryExecutor / SqlAlchemyExecutor
- frontview/routers/cache.py: Administration endpoints
"""

import asyncio
import hashlib
import json
import logging
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from frontview.analytics.executor import QueryExecutor
from frontview.analytics.store import KeyValueStore

logger = logging.getLogger(__name__)

Rows = List[Dict[str, Any]]


# =============================================================================
# SERIALIZATION
# =============================================================================

def _encode(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def serialize_rows(rows: Rows) -> bytes:
    return json.dumps(rows, default=_encode, separators=(",", ":")).encode("utf-8")


def deserialize_rows(payload: bytes) -> Rows:
    return json.loads(payload)


def canonical_json(obj: Any) -> str:
    """Key-stable JSON: sorted keys, no whitespace."""
    return json.dumps(obj, default=_encode, sort_keys=True, separators=(",", ":"))


def fingerprint(obj: Any) -> str:
    """Short stable hash of any JSON-able object (filters, measures)."""
    return hashlib.md5(canonical_json(obj).encode()).hexdigest()[:16]


# =============================================================================
# CACHE
# =============================================================================

class QueryCache:
    """
    Read-through cache over a QueryExecutor and a KeyValueStore.

    PARAMETERS:
        executor: Runs queries on a miss
        store: Holds serialized rows
        default_ttl: Seconds, used when query() gets no ttl
        key_prefix: Namespace for every key this cache writes
        enable_cache: False bypasses the store entirely

    USAGE:
        cache = QueryCache(executor, store)
        rows = await cache.query("SELECT ... WHERE d = :d", {"d": "2024-03-01"})
        rows = await cache.query(sql, params, cache_key="distinct:t:c", ttl=3600)
    """

    def __init__(
        self,
        executor: QueryExecutor,
        store: KeyValueStore,
        default_ttl: int = 300,
        key_prefix: str = "ch:",
        enable_cache: bool = True,
    ):
        self.executor = executor
        self.store = store
        self.default_ttl = default_ttl
        self.key_prefix = key_prefix
        self.enable_cache = enable_cache

    def make_key(
        self,
        query_text: str,
        params: Optional[Mapping[str, Any]] = None,
        cache_key: Optional[str] = None,
    ) -> str:
        """Namespaced key for a query; explicit keys are kept verbatim."""
        if cache_key:
            return f"{self.key_prefix}{cache_key}"
        digest = hashlib.md5((query_text + canonical_json(dict(params or {}))).encode()).hexdigest()
        return f"{self.key_prefix}{digest}"

    async def _read(self, key: str) -> Optional[Rows]:
        try:
            payload = await self.store.get(key)
        except Exception as e:
            logger.warning(f"[QUERY_CACHE] Cache read failed for {key}: {e}")
            return None
        if payload is None:
            return None
        try:
            return deserialize_rows(payload)
        except ValueError as e:
            logger.warning(f"[QUERY_CACHE] Discarding unreadable entry {key}: {e}")
            return None

    async def _write(self, key: str, payload: bytes, ttl: int) -> None:
        try:
            await self.store.set_with_expiry(key, payload, ttl)
            logger.info(f"[QUERY_CACHE] Cache WRITE for {key} (TTL: {ttl}s)")
        except Exception as e:
            # Don't fail the request if cache write fails
            logger.warning(f"[QUERY_CACHE] Cache write failed for {key}: {e}")

    async def query(
        self,
        query_text: str,
        params: Optional[Mapping[str, Any]] = None,
        cache_key: Optional[str] = None,
        ttl: Optional[int] = None,
        skip_cache: bool = False,
    ) -> Rows:
        """
        Return the rows for a query, from cache when possible.

        PARAMETERS:
            query_text: SQL with `:name` placeholders
            params: Bind values
            cache_key: Explicit key (namespaced, otherwise verbatim)
            ttl: Seconds; defaults to default_ttl
            skip_cache: Execute without reading or writing the store
        """
        use_store = self.enable_cache and not skip_cache
        key = self.make_key(query_text, params, cache_key)

        if use_store:
            cached = await self._read(key)
            if cached is not None:
                logger.info(f"[QUERY_CACHE] Cache HIT for {key}")
                return cached
            logger.info(f"[QUERY_CACHE] Cache MISS for {key}")

        rows = await self.executor.execute(query_text, dict(params or {}))
        payload = serialize_rows(rows)

        if use_store:
            await self._write(key, payload, ttl if ttl is not None else self.default_ttl)

        return deserialize_rows(payload)

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    async def invalidate(self, pattern: Optional[str] = None) -> int:
        """
        Delete entries whose key (inside the namespace) matches a glob.

        invalidate("grouped-stats:f_exposure:*") drops one table's grouped
        results; invalidate() drops the whole namespace.
        """
        full_pattern = f"{self.key_prefix}{pattern or '*'}"
        deleted = await self.store.delete_matching(full_pattern)
        logger.info(f"[QUERY_CACHE] Invalidated {deleted} entries matching {full_pattern}")
        return deleted

    async def flush(self) -> None:
        """Drop everything in the backing store, not just this namespace."""
        await self.store.delete_all()
        logger.info("[QUERY_CACHE] Store flushed")

    async def entries(self, pattern: Optional[str] = None) -> List[Dict[str, Any]]:
        """List {key, ttl, size} for entries matching a glob in the namespace."""
        keys = await self.store.keys(f"{self.key_prefix}{pattern or '*'}")
        result = []
        for key in sorted(keys):
            payload = await self.store.get(key)
            if payload is None:
                continue
            result.append({
                "key": key,
                "ttl": await self.store.ttl(key),
                "size": len(payload),
            })
        return result

    async def stats(self) -> Dict[str, Any]:
        executor_ok, store_ok = await asyncio.gather(self.executor.ping(), self.store.ping())
        return {
            "executor_connected": bool(executor_ok),
            "store_connected": bool(store_ok),
            "cache_enabled": self.enable_cache,
        }

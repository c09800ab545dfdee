"""
Application State
=================

Process-wide analytics components, built once and shared by every request.

WHY this exists:
- The Redis pool and the analytical engine pool should be shared to avoid
  connection overhead
- Every aggregator needs the same cache, resolver and dialect
- Tests need to swap the executor and the store without touching routers

WHAT it stores (AnalyticsState):
- executor: QueryExecutor over the analytical store
- store: KeyValueStore (Redis in production)
- cache: QueryCache shared by all aggregators
- resolver, grouped, stats, historical, future, tables: the aggregators

WHERE it's used:
- frontview/main.py: Built in the lifespan, closed on shutdown
- frontview/deps.py: get_analytics_state() hands it to routers

Design:
- Explicitly constructed, no module-level singletons
- Immutable after construction; components hold no per-request state
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from frontview.analytics.cache import QueryCache
from frontview.analytics.dialect import SqlDialect, get_dialect
from frontview.analytics.executor import QueryExecutor, SqlAlchemyExecutor, create_analytics_engine
from frontview.analytics.grouped import GroupedAggregationEngine
from frontview.analytics.model import TABLE_CONFIGS, TableConfig
from frontview.analytics.snapshots import SnapshotResolver
from frontview.analytics.stats import StatAggregator
from frontview.analytics.store import KeyValueStore, RedisStore
from frontview.analytics.tables import TableBrowser
from frontview.analytics.timeseries import FutureAggregator, HistoricalAggregator

logger = logging.getLogger(__name__)


@dataclass
class AnalyticsState:
    executor: QueryExecutor
    store: KeyValueStore
    dialect: SqlDialect
    cache: QueryCache
    resolver: SnapshotResolver
    grouped: GroupedAggregationEngine
    stats: StatAggregator
    historical: HistoricalAggregator
    future: FutureAggregator
    tables: TableBrowser

    async def close(self) -> None:
        """Release pooled connections (executor engine, Redis pool)."""
        dispose = getattr(self.executor, "dispose", None)
        if dispose is not None:
            await dispose()
        close = getattr(self.store, "close", None)
        if close is not None:
            await close()
        logger.info("[STATE] Analytics connections released")


def build_state(
    settings,
    executor: Optional[QueryExecutor] = None,
    store: Optional[KeyValueStore] = None,
    table_configs: Optional[Mapping[str, TableConfig]] = None,
) -> AnalyticsState:
    """
    Wire every analytics component from settings.

    PARAMETERS:
        settings: frontview.deps.Settings
        executor: Overrides the SQLAlchemy executor (tests)
        store: Overrides the Redis store (tests)
        table_configs: Overrides TABLE_CONFIGS
    """
    configs = TABLE_CONFIGS if table_configs is None else table_configs
    dialect = get_dialect(settings.ANALYTICS_DIALECT)

    if executor is None:
        executor = SqlAlchemyExecutor(create_analytics_engine(settings.ANALYTICS_DATABASE_URL))
        logger.info(f"[STATE] Analytical store engine initialized (dialect={dialect.name})")
    if store is None:
        store = RedisStore.from_url(settings.REDIS_URL, key_prefix=settings.REDIS_KEY_PREFIX)

    cache = QueryCache(
        executor,
        store,
        default_ttl=settings.CACHE_DEFAULT_TTL_SECONDS,
        key_prefix=settings.CACHE_KEY_PREFIX,
        enable_cache=settings.CACHE_ENABLED,
    )
    resolver = SnapshotResolver(cache, configs, ttl=settings.SNAPSHOT_TTL_SECONDS)

    return AnalyticsState(
        executor=executor,
        store=store,
        dialect=dialect,
        cache=cache,
        resolver=resolver,
        grouped=GroupedAggregationEngine(cache, resolver, dialect, configs),
        stats=StatAggregator(cache, resolver, dialect, configs),
        historical=HistoricalAggregator(cache, resolver, dialect, configs),
        future=FutureAggregator(cache, resolver, dialect, configs),
        tables=TableBrowser(cache, dialect, configs),
    )

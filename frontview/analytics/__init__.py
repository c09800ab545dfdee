"""
Analytics Core
==============

Cached, parameterized aggregate queries for the exposure dashboard.

WHY THIS EXISTS
---------------
Stat cards, grouped breakdowns, time series and the raw data grid all ask
the analytical store the same kinds of questions with the same filter bar.
Before this package each endpoint built its own SQL by string concatenation,
with its own date handling and its own caching. This package gives them one
set of semantics:

- one filter compiler (values always bound, fields always validated)
- one snapshot resolver (nearest snapshot backward/forward)
- one read-through cache (deterministic keys, TTLs, soft store failures)
- one grouped engine (two periods, top 11 + Others)

ARCHITECTURE OVERVIEW
---------------------
```
HTTP request (routers/)
    |
    v
Snapshot Resolver (snapshots.py)  -- "as of" date -> real snapshot
    |
    v
Predicate Compiler (predicates.py) -- filters -> WHERE fragment + params
    |
    v
Aggregators (grouped.py, stats.py, timeseries.py, tables.py)
    |
    v
Read-Through Cache (cache.py) --- Redis (store.py)
    |
    v
Query Executor (executor.py) --- ClickHouse / SQLite via SQLAlchemy
```

COMPONENTS
----------
- model.py: Per-table configuration (date column, encoding)
- query.py: Filter / MeasureSpec / GroupMeasureSpec
- security.py: Identifier and allow-list validation
- dialect.py: ClickHouse and SQLite expression rendering
- errors.py: Error taxonomy

USAGE
-----
```python
from frontview.analytics import GroupedAggregationEngine, GroupMeasureSpec, Filter

engine = GroupedAggregationEngine(cache, resolver, dialect)
report = await engine.compute_for_period(
    GroupMeasureSpec(field="fundingAmount", table_name="f_exposure"),
    group_by="desk",
    period="-1m",
    filters=[Filter.of("region", "is", ["EMEA"])],
)
```

RELATED FILES
-------------
- frontview/state.py: Builds every component once per process
- frontview/routers/: HTTP endpoints
"""

# Re-export main components for clean imports

from frontview.analytics.errors import (
    QueryError,
    ConfigurationError,
    ErrorCategory,
    ErrorSeverity,
    ErrorCode,
    classify_upstream_error,
)

from frontview.analytics.model import (
    DateEncoding,
    TableConfig,
    TABLE_CONFIGS,
    get_table_config,
)

from frontview.analytics.query import (
    Aggregation,
    Operator,
    Filter,
    ResultSlot,
    MeasureSpec,
    GroupMeasureSpec,
)

from frontview.analytics.dialect import (
    SqlDialect,
    ClickHouseDialect,
    SQLiteDialect,
    get_dialect,
)

from frontview.analytics.predicates import (
    Predicate,
    compile_filters,
)

from frontview.analytics.store import (
    KeyValueStore,
    RedisStore,
)

from frontview.analytics.executor import (
    QueryExecutor,
    SqlAlchemyExecutor,
    create_analytics_engine,
)

from frontview.analytics.cache import QueryCache

from frontview.analytics.snapshots import (
    SnapshotResolver,
    parse_relative_date,
)

from frontview.analytics.grouped import (
    GroupedAggregationEngine,
    GroupedResult,
    GroupedReport,
)

from frontview.analytics.stats import (
    StatAggregator,
    StatResult,
)

from frontview.analytics.timeseries import (
    HistoricalAggregator,
    FutureAggregator,
    SeriesResult,
)

from frontview.analytics.tables import TableBrowser

__all__ = [
    # Errors (errors.py)
    "QueryError",
    "ConfigurationError",
    "ErrorCategory",
    "ErrorSeverity",
    "ErrorCode",
    "classify_upstream_error",
    # Table configuration (model.py)
    "DateEncoding",
    "TableConfig",
    "TABLE_CONFIGS",
    "get_table_config",
    # Request types (query.py)
    "Aggregation",
    "Operator",
    "Filter",
    "ResultSlot",
    "MeasureSpec",
    "GroupMeasureSpec",
    # Dialects (dialect.py)
    "SqlDialect",
    "ClickHouseDialect",
    "SQLiteDialect",
    "get_dialect",
    # Predicates (predicates.py)
    "Predicate",
    "compile_filters",
    # Collaborators (store.py, executor.py)
    "KeyValueStore",
    "RedisStore",
    "QueryExecutor",
    "SqlAlchemyExecutor",
    "create_analytics_engine",
    # Cache (cache.py)
    "QueryCache",
    # Snapshots (snapshots.py)
    "SnapshotResolver",
    "parse_relative_date",
    # Aggregators
    "GroupedAggregationEngine",
    "GroupedResult",
    "GroupedReport",
    "StatAggregator",
    "StatResult",
    "HistoricalAggregator",
    "FutureAggregator",
    "SeriesResult",
    "TableBrowser",
]

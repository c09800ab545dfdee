"""Analytical query execution.

WHAT:
    Boundary between the analytics core and the analytical store.
    `QueryExecutor` is the protocol the cache and aggregators depend on;
    `SqlAlchemyExecutor` implements it over a SQLAlchemy AsyncEngine.

WHY:
    - The core only needs "run this text with these bind params, give me rows"
    - ClickHouse in production (clickhouse+asynch://), SQLite in dev/tests
      (sqlite+aiosqlite://), same code path for both
    - Retries and timeouts belong to the driver, not to this layer

ARCHITECTURE:
    ┌──────────────────┐     ┌───────────────────┐     ┌──────────────────┐
    │  QueryCache      │ ──► │ SqlAlchemyExecutor│ ──► │  AsyncEngine     │
    │  (read-through)  │     │ text() + params   │     │  (pooled)        │
    └──────────────────┘     └───────────────────┘     └──────────────────┘

USAGE:
    engine = create_analytics_engine(settings.ANALYTICS_DATABASE_URL)
    executor = SqlAlchemyExecutor(engine)
    rows = await executor.execute(
        "SELECT desk, sum(amount) AS total FROM f_exposure WHERE asOfDate = :d GROUP BY desk",
        {"d": "2024-03-01"},
    )

REFERENCES:
    - https://docs.sqlalchemy.org/en/20/orm/extensions/asyncio.html
    - frontview/analytics/cache.py (the main consumer)
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

logger = logging.getLogger(__name__)


class QueryExecutor(Protocol):
    """Runs a parameterized query and returns rows as dicts."""

    async def execute(self, query_text: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        ...

    async def ping(self) -> bool:
        ...


# =============================================================================
# ENGINE
# =============================================================================

def create_analytics_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine for the analytical store.

    WHAT:
        Pooled engine for network stores, NullPool for SQLite files.

    WHY:
        SQLite engines do not support pool_size/max_overflow, and a file
        database gains nothing from a pool.

    Args:
        url: SQLAlchemy async URL (clickhouse+asynch://..., sqlite+aiosqlite:///...)
        echo: Log every statement (debugging only)

    Returns:
        AsyncEngine
    """
    if url.startswith("sqlite"):
        return create_async_engine(url, poolclass=NullPool, echo=echo)

    return create_async_engine(
        url,
        pool_size=10,           # Base pool size
        max_overflow=20,        # Allow up to 30 total connections under load
        pool_recycle=3600,      # Recycle connections every hour
        pool_pre_ping=True,     # Validate connections before use
        echo=echo,
    )


# =============================================================================
# EXECUTOR
# =============================================================================

class SqlAlchemyExecutor:
    """QueryExecutor over a SQLAlchemy AsyncEngine.

    Every call checks a connection out of the pool, runs one statement and
    returns it. Errors from the driver propagate unchanged; the HTTP layer
    classifies them.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def execute(self, query_text: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        """Run one statement and return its rows as plain dicts.

        Args:
            query_text: SQL with `:name` bind placeholders
            params: Bind values

        Returns:
            List of {column: value} dicts in result order
        """
        async with self.engine.connect() as conn:
            result = await conn.execute(text(query_text), dict(params or {}))
            return [dict(row._mapping) for row in result]

    async def ping(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"[EXECUTOR] Analytical store ping failed: {e}")
            return False

    async def dispose(self) -> None:
        await self.engine.dispose()

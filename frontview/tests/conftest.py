"""Pytest configuration for analytics tests

WHAT: Shared fakes (key-value store, recording executor), a seeded SQLite
      analytical store and a TestClient wired to it
WHY: Core tests must count executor calls and inspect cache keys without a
     live Redis; integration tests need real SQL semantics (window
     functions, GROUP BY, PRAGMA) without ClickHouse
REFERENCES:
    - frontview/analytics/cache.py: QueryCache contract the fakes satisfy
    - frontview/state.py: build_state() accepts executor/store overrides
    - frontview/main.py: create_app(analytics=...) skips the lifespan wiring
"""

import fnmatch
import os
import time
from typing import Any, Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text

# Set test environment
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("ANALYTICS_DIALECT", "sqlite")

from frontview.analytics.cache import QueryCache
from frontview.analytics.dialect import SQLiteDialect
from frontview.analytics.executor import SqlAlchemyExecutor, create_analytics_engine
from frontview.deps import Settings
from frontview.main import create_app
from frontview.state import build_state


# ============================================================================
# Fakes
# ============================================================================

class FakeStore:
    """In-memory KeyValueStore honouring TTLs and glob patterns.

    fail_reads / fail_writes make get / set_with_expiry raise, to exercise
    the cache's soft-failure paths.
    """

    def __init__(self):
        self.data: Dict[str, bytes] = {}
        self.expires: Dict[str, float] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.healthy = True
        self.writes: List[str] = []

    def _expire(self):
        now = time.monotonic()
        for key in [k for k, at in self.expires.items() if at <= now]:
            self.data.pop(key, None)
            self.expires.pop(key, None)

    async def get(self, key: str) -> Optional[bytes]:
        if self.fail_reads:
            raise ConnectionError("store unavailable")
        self._expire()
        return self.data.get(key)

    async def set_with_expiry(self, key: str, value: bytes, ttl_seconds: int) -> None:
        if self.fail_writes:
            raise ConnectionError("store unavailable")
        self.data[key] = value
        self.expires[key] = time.monotonic() + ttl_seconds
        self.writes.append(key)

    async def delete_matching(self, pattern: str) -> int:
        matched = [k for k in self.data if fnmatch.fnmatchcase(k, pattern)]
        for key in matched:
            self.data.pop(key, None)
            self.expires.pop(key, None)
        return len(matched)

    async def delete_all(self) -> None:
        self.data.clear()
        self.expires.clear()

    async def ttl(self, key: str) -> int:
        self._expire()
        if key not in self.data:
            return -2
        return int(self.expires[key] - time.monotonic())

    async def keys(self, pattern: str = "*") -> List[str]:
        self._expire()
        return [k for k in self.data if fnmatch.fnmatchcase(k, pattern)]

    async def ping(self) -> bool:
        return self.healthy


class RecordingExecutor:
    """QueryExecutor that records every call.

    PARAMETERS:
        responder: Optional callable(query_text, params) -> rows. Defaults to
            returning no rows. Raising from it simulates a store failure.
    """

    def __init__(self, responder: Optional[Callable[[str, Dict[str, Any]], List[Dict[str, Any]]]] = None):
        self.responder = responder or (lambda query, params: [])
        self.calls: List[tuple] = []
        self.healthy = True

    async def execute(self, query_text: str, params=None) -> List[Dict[str, Any]]:
        params = dict(params or {})
        self.calls.append((query_text, params))
        return self.responder(query_text, params)

    async def ping(self) -> bool:
        return self.healthy

    def queries_containing(self, fragment: str) -> List[tuple]:
        return [call for call in self.calls if fragment in call[0]]


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def cache(executor, store) -> QueryCache:
    return QueryCache(executor, store)


@pytest.fixture
def dialect() -> SQLiteDialect:
    return SQLiteDialect()


# ============================================================================
# SQLite analytical store
# ============================================================================

EXPOSURE_ROWS = [
    # asOfDate, desk, counterparty, fundingAmount, underlyingAmount, maturityDt, notional
    ("2024-01-01", "EQ", "cp1", "60", 600, "2024-02-15", 10),
    ("2024-02-01", "EQ", "cp1", "80", 800, "2024-03-15", 10),
    ("2024-02-01", "FX", "cp1", "100", 1000, "2024-04-10", 20),
    ("2024-03-01", "EQ", "cp1", "100", 1000, "2024-04-15", 10),
    ("2024-03-01", "EQ", "cp2", "50", 500, "2024-05-20", 30),
    ("2024-03-01", "FX", "cp1", "200", 2000, "2024-04-30", 20),
    ("2024-03-01", "RATES", "cp3", "n/a", 0, "2024-06-10", 0),
]


@pytest.fixture
def analytics_db_path(tmp_path):
    """SQLite file with an f_exposure table over three monthly snapshots."""
    path = tmp_path / "analytics.db"
    engine = create_engine(f"sqlite:///{path}")
    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE f_exposure ("
            "asOfDate TEXT, desk TEXT, counterparty TEXT, fundingAmount TEXT, "
            "underlyingAmount REAL, maturityDt TEXT, notional REAL DEFAULT 0)"
        ))
        conn.execute(
            text(
                "INSERT INTO f_exposure VALUES "
                "(:d, :desk, :cp, :funding, :underlying, :maturity, :notional)"
            ),
            [
                {"d": d, "desk": desk, "cp": cp, "funding": funding,
                 "underlying": underlying, "maturity": maturity, "notional": notional}
                for d, desk, cp, funding, underlying, maturity, notional in EXPOSURE_ROWS
            ],
        )
    engine.dispose()
    return path


@pytest.fixture
def sqlite_executor(analytics_db_path) -> SqlAlchemyExecutor:
    engine = create_analytics_engine(f"sqlite+aiosqlite:///{analytics_db_path}")
    return SqlAlchemyExecutor(engine)


@pytest.fixture
def test_settings(analytics_db_path) -> Settings:
    return Settings(
        ANALYTICS_DATABASE_URL=f"sqlite+aiosqlite:///{analytics_db_path}",
        ANALYTICS_DIALECT="sqlite",
        CACHE_ENABLED=True,
    )


@pytest.fixture
def analytics_state(test_settings, sqlite_executor, store):
    """AnalyticsState over the seeded SQLite file and the in-memory store."""
    return build_state(test_settings, executor=sqlite_executor, store=store)


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def client(analytics_state) -> TestClient:
    """Test client; the lifespan is not entered so the state stays ours."""
    return TestClient(create_app(analytics=analytics_state))

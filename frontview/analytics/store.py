"""
Key-Value Store
===============

Byte-oriented key-value store behind the read-through cache.

WHY THIS FILE EXISTS
--------------------
The cache only needs six operations from its backing store. Expressing them
as a Protocol keeps QueryCache testable with an in-memory fake and keeps the
Redis specifics (connection pool, key namespace, SCAN-based deletion) in one
place.

WHAT IT PROVIDES
----------------
- KeyValueStore: the Protocol QueryCache depends on
- RedisStore: production implementation over redis.asyncio

KEY NAMESPACE
-------------
RedisStore prefixes every key with `key_prefix` (default "gdm:") so several
applications can share one Redis database. Callers never see the prefix:
keys() strips it and patterns are matched inside the namespace.

RELATED FILES
-------------
- frontview/analytics/cache.py: The only consumer
- frontview/state.py: Builds the RedisStore from settings
"""

import logging
from typing import List, Optional, Protocol

from redis.asyncio import ConnectionPool as AsyncConnectionPool, Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Operations the read-through cache needs from its store."""

    async def get(self, key: str) -> Optional[bytes]:
        ...

    async def set_with_expiry(self, key: str, value: bytes, ttl_seconds: int) -> None:
        ...

    async def delete_matching(self, pattern: str) -> int:
        ...

    async def delete_all(self) -> None:
        ...

    async def ttl(self, key: str) -> int:
        ...

    async def keys(self, pattern: str = "*") -> List[str]:
        ...

    async def ping(self) -> bool:
        ...


class RedisStore:
    """
    KeyValueStore over a redis.asyncio client.

    PARAMETERS:
        client: redis.asyncio.Redis (bytes mode, decode_responses=False)
        key_prefix: Namespace prepended to every key

    USAGE:
        store = RedisStore.from_url(settings.REDIS_URL)
        await store.set_with_expiry("k", b"v", 300)
        await store.get("k")  # b"v"
        await store.close()
    """

    def __init__(self, client: Redis, key_prefix: str = "gdm:"):
        self.client = client
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "gdm:", max_connections: int = 20) -> "RedisStore":
        pool = AsyncConnectionPool.from_url(
            url,
            max_connections=max_connections,  # Pool size for concurrent requests
            decode_responses=False,
        )
        logger.info(f"[STORE] Redis connection pool initialized (max_connections={max_connections})")
        return cls(Redis(connection_pool=pool), key_prefix=key_prefix)

    def _full(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _strip(self, key) -> str:
        if isinstance(key, bytes):
            key = key.decode("utf-8")
        if key.startswith(self.key_prefix):
            return key[len(self.key_prefix):]
        return key

    async def get(self, key: str) -> Optional[bytes]:
        return await self.client.get(self._full(key))

    async def set_with_expiry(self, key: str, value: bytes, ttl_seconds: int) -> None:
        await self.client.setex(self._full(key), ttl_seconds, value)

    async def delete_matching(self, pattern: str) -> int:
        """Delete keys matching a glob pattern; returns how many were removed."""
        deleted = 0
        batch: List = []
        async for key in self.client.scan_iter(match=self._full(pattern), count=500):
            batch.append(key)
            if len(batch) >= 500:
                deleted += await self.client.delete(*batch)
                batch = []
        if batch:
            deleted += await self.client.delete(*batch)
        return deleted

    async def delete_all(self) -> None:
        await self.client.flushdb()

    async def ttl(self, key: str) -> int:
        return await self.client.ttl(self._full(key))

    async def keys(self, pattern: str = "*") -> List[str]:
        return [self._strip(key) async for key in self.client.scan_iter(match=self._full(pattern))]

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except (RedisError, OSError) as e:
            logger.warning(f"[STORE] Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        await self.client.aclose()

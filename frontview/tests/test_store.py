"""Tests for the Redis-backed key-value store.

WHAT: Key prefixing, batched pattern deletes, ping failure handling
WHY: Every cache key goes through RedisStore; a missing prefix would collide
     with other services sharing the Redis database

REFERENCES:
  - frontview/analytics/store.py
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

from redis.exceptions import ConnectionError as RedisConnectionError

from frontview.analytics.store import RedisStore


def make_client(existing=()):
    client = MagicMock()
    client.get = AsyncMock(return_value=b"[]")
    client.setex = AsyncMock()
    client.ttl = AsyncMock(return_value=42)
    client.flushdb = AsyncMock()
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    client.delete = AsyncMock(side_effect=lambda *keys: len(keys))

    async def scan_iter(match=None, count=None):
        for key in existing:
            yield key

    client.scan_iter = MagicMock(side_effect=scan_iter)
    return client


def test_get_and_set_use_prefixed_keys():
    client = make_client()
    store = RedisStore(client)

    asyncio.run(store.set_with_expiry("ch:abc", b"[1]", 300))
    asyncio.run(store.get("ch:abc"))

    client.setex.assert_awaited_once_with("gdm:ch:abc", 300, b"[1]")
    client.get.assert_awaited_once_with("gdm:ch:abc")


def test_custom_prefix():
    client = make_client()
    asyncio.run(RedisStore(client, key_prefix="test:").ttl("k"))
    client.ttl.assert_awaited_once_with("test:k")


def test_delete_matching_batches_and_counts():
    keys = [f"gdm:ch:{i}".encode() for i in range(1203)]
    client = make_client(keys)

    deleted = asyncio.run(RedisStore(client).delete_matching("ch:*"))

    assert deleted == 1203
    assert client.delete.await_count == 3
    assert client.scan_iter.call_args.kwargs["match"] == "gdm:ch:*"


def test_delete_matching_nothing():
    client = make_client()
    assert asyncio.run(RedisStore(client).delete_matching("ch:*")) == 0
    client.delete.assert_not_awaited()


def test_keys_strip_prefix():
    client = make_client([b"gdm:ch:a", b"gdm:ch:b"])
    assert asyncio.run(RedisStore(client).keys("ch:*")) == ["ch:a", "ch:b"]


def test_delete_all_flushes_database():
    client = make_client()
    asyncio.run(RedisStore(client).delete_all())
    client.flushdb.assert_awaited_once()


def test_ping_failure_returns_false():
    client = make_client()
    client.ping = AsyncMock(side_effect=RedisConnectionError("Connection refused"))
    assert asyncio.run(RedisStore(client).ping()) is False


def test_close_releases_client():
    client = make_client()
    asyncio.run(RedisStore(client).close())
    client.aclose.assert_awaited_once()

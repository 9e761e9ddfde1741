"""Tests for the persistence backends and their factory."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from switcharr.infrastructure.cache import DiskcacheAdapter, RedisAdapter, create_cache


class TestCreateCache:
    def test_memory_means_no_backend(self) -> None:
        assert create_cache("memory") is None

    def test_diskcache(self, tmp_path: Path) -> None:
        cache = create_cache("diskcache", directory=str(tmp_path), ttl_seconds=60)
        assert isinstance(cache, DiskcacheAdapter)
        assert cache.directory == tmp_path
        assert cache.default_ttl == 60

    def test_redis(self) -> None:
        cache = create_cache("redis", redis_url="redis://cache:6379/2")
        assert isinstance(cache, RedisAdapter)
        assert cache.url == "redis://cache:6379/2"

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError, match="Unknown cache backend"):
            create_cache("memcached")  # type: ignore[arg-type]


class TestDiskcacheAdapter:
    async def test_set_get_delete(self, tmp_path: Path) -> None:
        async with DiskcacheAdapter(directory=tmp_path / "c") as cache:
            await cache.set("k", '{"a": 1}')
            assert await cache.get("k") == '{"a": 1}'
            assert await cache.exists("k") is True
            assert await cache.delete("k") is True
            assert await cache.get("k") is None

    async def test_survives_reopen(self, tmp_path: Path) -> None:
        async with DiskcacheAdapter(directory=tmp_path) as cache:
            await cache.set("k", "v")
        async with DiskcacheAdapter(directory=tmp_path) as cache:
            assert await cache.get("k") == "v"

    async def test_clear(self, tmp_path: Path) -> None:
        async with DiskcacheAdapter(directory=tmp_path) as cache:
            await cache.set("a", "1")
            await cache.set("b", "2")
            await cache.clear()
            assert await cache.exists("a") is False

    async def test_unopened_get_raises(self, tmp_path: Path) -> None:
        with pytest.raises(RuntimeError, match="not open"):
            await DiskcacheAdapter(directory=tmp_path).get("k")

    async def test_unopened_delete_is_noop(self, tmp_path: Path) -> None:
        assert await DiskcacheAdapter(directory=tmp_path).delete("k") is False


def _fake_redis() -> AsyncMock:
    client = AsyncMock()
    client.ping = AsyncMock(return_value=True)
    client.get = AsyncMock(return_value="v")
    client.set = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)
    client.exists = AsyncMock(return_value=0)
    client.aclose = AsyncMock()
    return client


class TestRedisAdapter:
    async def test_set_uses_expiry(self) -> None:
        client = _fake_redis()
        with patch("switcharr.infrastructure.cache.redis_adapter.Redis.from_url", return_value=client):
            async with RedisAdapter(ttl_seconds=99) as cache:
                await cache.set("k", "v")
                assert await cache.get("k") == "v"
                assert await cache.delete("k") is True
                assert await cache.exists("k") is False

        client.set.assert_awaited_once_with("k", "v", ex=99)
        client.aclose.assert_awaited_once()

    async def test_failed_ping_raises_and_closes(self) -> None:
        client = _fake_redis()
        client.ping.side_effect = RedisConnectionError("refused")
        with patch("switcharr.infrastructure.cache.redis_adapter.Redis.from_url", return_value=client):
            adapter = RedisAdapter()
            with pytest.raises(RedisConnectionError):
                await adapter.__aenter__()

        client.aclose.assert_awaited_once()

    async def test_read_errors_degrade_to_miss(self) -> None:
        client = _fake_redis()
        client.get.side_effect = RedisConnectionError("gone")
        with patch("switcharr.infrastructure.cache.redis_adapter.Redis.from_url", return_value=client):
            async with RedisAdapter() as cache:
                assert await cache.get("k") is None

"""Builds the configured persistence backend."""

from __future__ import annotations

from typing import Literal

import structlog

from switcharr.domain.ports.cache import CachePort
from switcharr.infrastructure.cache.diskcache_adapter import DiskcacheAdapter
from switcharr.infrastructure.cache.redis_adapter import RedisAdapter

log = structlog.get_logger(__name__)

CacheBackend = Literal["memory", "diskcache", "redis"]


def create_cache(
    backend: CacheBackend = "diskcache",
    *,
    directory: str = "./.switcharr-cache",
    redis_url: str = "redis://localhost:6379/0",
    ttl_seconds: int = 30 * 86400,
    max_concurrent: int = 4,
) -> CachePort | None:
    """Return an unopened adapter for *backend*.

    ``"memory"`` returns None: the store and the ledger then keep their
    state in-process only.

    Raises:
        ValueError: unknown backend name.
    """
    log.info("cache_factory_create", backend=backend, ttl=ttl_seconds)
    if backend == "memory":
        return None
    if backend == "diskcache":
        return DiskcacheAdapter(
            directory=directory,
            ttl_seconds=ttl_seconds,
            max_concurrent=max_concurrent,
        )
    if backend == "redis":
        return RedisAdapter(url=redis_url, ttl_seconds=ttl_seconds)
    raise ValueError(
        f"Unknown cache backend: {backend!r}. Must be 'memory', 'diskcache' or 'redis'."
    )

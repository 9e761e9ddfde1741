"""Per-URL performance history and blacklist, optionally persisted via CachePort."""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import structlog

from switcharr.domain.entities.sources import (
    CachedSourceInfo,
    QualityTier,
    SourceTestResult,
)
from switcharr.domain.ports.cache import CachePort
from switcharr.infrastructure.common.urls import url_key

log = structlog.get_logger(__name__)

# Cache key holding the whole store as one JSON map.
STORE_KEY: str = "switcharr:performance"

# Reason prefix used when a candidate is blacklisted for a bad URL.
VALIDATION_REASON_PREFIX: str = "url_validation_error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _running_average(previous: float, sample: float, n: int) -> float:
    """``avg' = (avg * (n - 1) + x) / n`` for the n-th sample."""
    if n <= 1:
        return sample
    return (previous * (n - 1) + sample) / n


def _serialize_test(test: SourceTestResult) -> dict:
    return {
        "tested_at": test.tested_at.isoformat(),
        "quality": test.quality,
        "ping_ms": test.ping_ms,
        "has_error": test.has_error,
        "success_rate": test.success_rate,
    }


def _deserialize_test(data: dict) -> SourceTestResult:
    return SourceTestResult(
        tested_at=datetime.fromisoformat(data["tested_at"]),
        quality=data["quality"],
        ping_ms=data["ping_ms"],
        has_error=data["has_error"],
        success_rate=data["success_rate"],
    )


def _serialize_info(info: CachedSourceInfo) -> dict:
    return {
        "url": info.url,
        "url_key": info.url_key,
        "last_test": _serialize_test(info.last_test) if info.last_test else None,
        "test_count": info.test_count,
        "average_score": info.average_score,
        "health_score": info.health_score,
        "average_load_time_ms": info.average_load_time_ms,
        "updated_at": info.updated_at.isoformat(),
        "last_used_time": info.last_used_time.isoformat(),
        "is_available": info.is_available,
        "unavailable_since": (
            info.unavailable_since.isoformat() if info.unavailable_since else None
        ),
        "unavailable_reason": info.unavailable_reason,
        "error_kinds": info.error_kinds,
        "validation_errors": info.validation_errors,
    }


def _deserialize_info(data: dict) -> CachedSourceInfo:
    since = data.get("unavailable_since")
    last_test = data.get("last_test")
    return CachedSourceInfo(
        url=data["url"],
        url_key=data["url_key"],
        last_test=_deserialize_test(last_test) if last_test else None,
        test_count=data["test_count"],
        average_score=data["average_score"],
        health_score=data["health_score"],
        average_load_time_ms=data["average_load_time_ms"],
        updated_at=datetime.fromisoformat(data["updated_at"]),
        last_used_time=datetime.fromisoformat(data["last_used_time"]),
        is_available=data["is_available"],
        unavailable_since=datetime.fromisoformat(since) if since else None,
        unavailable_reason=data.get("unavailable_reason"),
        error_kinds=dict(data.get("error_kinds", {})),
        validation_errors=data.get("validation_errors", 0),
    )


class PerformanceStore:
    """Learned per-URL test history, health score and blacklist.

    Entries are keyed by a hash of the normalized URL, so cache-busting
    variants of one endpoint share history.  Every update replaces the
    entry with a new frozen value computed from the previous one plus a
    single sample; there are no partial writes across suspension points.

    Lookup TTL and blacklist expiry are independent: ``get()`` hides
    entries not updated within ``ttl_seconds``, while a ban is only
    lifted by ``is_blacklisted()`` after ``blacklist_expiry_seconds`` or by
    a later successful test.

    Persistence is optional.  With a ``CachePort`` the whole map is stored
    as JSON under ``STORE_KEY`` (see :meth:`load` / :meth:`save`).
    """

    def __init__(
        self,
        cache: CachePort | None = None,
        *,
        ttl_seconds: float = 1800.0,
        max_entries: int = 1000,
        blacklist_expiry_seconds: float = 3600.0,
        retest_interval_seconds: float = 300.0,
        persist_ttl_days: int = 30,
        autosave: bool = True,
    ) -> None:
        self.cache = cache
        self._ttl = timedelta(seconds=ttl_seconds)
        self._max_entries = max_entries
        self._blacklist_expiry = timedelta(seconds=blacklist_expiry_seconds)
        self._retest_interval = timedelta(seconds=retest_interval_seconds)
        self._persist_ttl = persist_ttl_days * 86_400
        self._autosave = autosave and cache is not None
        self._entries: dict[str, CachedSourceInfo] = {}

    def __len__(self) -> int:
        return len(self._entries)

    # -- lookups -------------------------------------------------------------

    def get(self, url: str, *, now: datetime | None = None) -> CachedSourceInfo | None:
        """Return the entry for *url*, or ``None`` if unknown or older than TTL."""
        info = self._entries.get(url_key(url))
        if info is None:
            return None
        now = now or _utcnow()
        if now - info.updated_at > self._ttl:
            return None
        return info

    def is_blacklisted(self, url: str, *, now: datetime | None = None) -> bool:
        """True while *url* is banned; clears the ban once it has expired."""
        key = url_key(url)
        info = self._entries.get(key)
        if info is None or info.is_available:
            return False

        now = now or _utcnow()
        since = info.unavailable_since or now
        if now - since >= self._blacklist_expiry:
            self._entries[key] = replace(
                info,
                is_available=True,
                unavailable_since=None,
                unavailable_reason=None,
            )
            log.info("blacklist_expired", url=info.url)
            return False
        return True

    def should_retest(self, url: str, *, now: datetime | None = None) -> bool:
        """True when *url* has no fresh test; unhealthy sources retest twice as often."""
        now = now or _utcnow()
        info = self.get(url, now=now)
        if info is None or info.last_test is None:
            return True
        interval = self._retest_interval
        if info.health_score < 0.3:
            interval = interval / 2
        return now - info.last_test.tested_at >= interval

    def entries(self) -> list[CachedSourceInfo]:
        return list(self._entries.values())

    def export(self) -> list[dict]:
        """Plain-data dump, best average score first."""
        ranked = sorted(self._entries.values(), key=lambda i: -i.average_score)
        return [_serialize_info(info) for info in ranked]

    # -- updates -------------------------------------------------------------

    async def record(
        self,
        url: str,
        success: bool,
        load_time_ms: float,
        error_kind: str | None = None,
        *,
        score: float | None = None,
        ping_ms: float | None = None,
        quality: QualityTier | None = None,
        success_rate: float | None = None,
        now: datetime | None = None,
    ) -> CachedSourceInfo:
        """Fold one test outcome into the running averages for *url*.

        ``score`` defaults to 100/0 from ``success``; ``success_rate``
        defaults to 1.0/0.0; ``ping_ms`` defaults to ``load_time_ms``.
        A success lifts an active blacklist.
        """
        now = now or _utcnow()
        key = url_key(url)
        prev = self._entries.get(key) or CachedSourceInfo(
            url=url, url_key=key, updated_at=now, last_used_time=now
        )

        n = prev.test_count + 1
        sample_score = score if score is not None else (100.0 if success else 0.0)
        health = _running_average(prev.health_score, 1.0 if success else 0.0, n)

        error_kinds = dict(prev.error_kinds)
        if error_kind:
            error_kinds[error_kind] = error_kinds.get(error_kind, 0) + 1

        last_test = SourceTestResult(
            tested_at=now,
            quality=quality or (prev.last_test.quality if prev.last_test else "unknown"),
            ping_ms=ping_ms if ping_ms is not None else load_time_ms,
            has_error=not success,
            success_rate=(
                success_rate if success_rate is not None else (1.0 if success else 0.0)
            ),
        )

        info = replace(
            prev,
            url=url,
            last_test=last_test,
            test_count=n,
            average_score=_running_average(prev.average_score, sample_score, n),
            health_score=max(0.0, min(1.0, health)),
            average_load_time_ms=_running_average(
                prev.average_load_time_ms, load_time_ms, n
            ),
            updated_at=now,
            last_used_time=now,
            error_kinds=error_kinds,
        )
        if success and not info.is_available:
            info = replace(
                info,
                is_available=True,
                unavailable_since=None,
                unavailable_reason=None,
            )
            log.info("blacklist_cleared", url=url)

        self._entries[key] = info
        self._evict()

        log.debug(
            "performance_recorded",
            url=url,
            success=success,
            load_time_ms=round(load_time_ms, 1),
            health=round(info.health_score, 3),
            tests=n,
        )
        if self._autosave:
            await self.save()
        return info

    async def blacklist(
        self,
        url: str,
        reason: str,
        *,
        now: datetime | None = None,
    ) -> CachedSourceInfo:
        """Mark *url* unavailable from *now* on."""
        now = now or _utcnow()
        key = url_key(url)
        prev = self._entries.get(key) or CachedSourceInfo(
            url=url, url_key=key, updated_at=now, last_used_time=now
        )
        validation_errors = prev.validation_errors
        if reason.startswith(VALIDATION_REASON_PREFIX):
            validation_errors += 1

        info = replace(
            prev,
            is_available=False,
            unavailable_since=now,
            unavailable_reason=reason,
            validation_errors=validation_errors,
        )
        self._entries[key] = info
        self._evict()
        log.warning("source_blacklisted", url=url, reason=reason)

        if self._autosave:
            await self.save()
        return info

    def touch(self, url: str, *, now: datetime | None = None) -> None:
        """Refresh the last-used time of *url* (protects it from eviction)."""
        key = url_key(url)
        info = self._entries.get(key)
        if info is not None:
            self._entries[key] = replace(info, last_used_time=now or _utcnow())

    def clear(self) -> None:
        self._entries.clear()

    # -- persistence -----------------------------------------------------------

    async def load(self) -> int:
        """Replace in-memory entries with the persisted map. Returns entry count."""
        if self.cache is None:
            return 0
        data = await self.cache.get(STORE_KEY)
        if data is None:
            return 0
        try:
            raw = json.loads(data)
            entries = {key: _deserialize_info(value) for key, value in raw.items()}
        except (json.JSONDecodeError, KeyError, ValueError, TypeError, AttributeError) as e:
            log.error("performance_store_deserialize_error", error=str(e))
            return 0

        self._entries = entries
        self._evict()
        log.info("performance_store_loaded", entries=len(self._entries))
        return len(self._entries)

    async def save(self) -> None:
        if self.cache is None:
            return
        payload = json.dumps(
            {key: _serialize_info(info) for key, info in self._entries.items()}
        )
        await self.cache.set(STORE_KEY, payload, ttl=self._persist_ttl)

    # -- internal helpers --------------------------------------------------

    def _evict(self) -> None:
        overflow = len(self._entries) - self._max_entries
        if overflow <= 0:
            return
        oldest = sorted(self._entries.values(), key=lambda i: i.last_used_time)
        for info in oldest[:overflow]:
            del self._entries[info.url_key]
        log.debug("performance_store_pruned", removed=overflow)

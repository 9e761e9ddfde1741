"""Three-tier availability test for a single source URL.

Layer 1 answers from the PerformanceStore when the last test is fresh.
Layer 2 is a bounded HEAD request (GET ``Range: bytes=0-0`` on 405/501).
Layer 3, when enabled for high-priority candidates, downloads the first
few kilobytes to estimate bandwidth and a quality tier.

The first decisive layer ends the test.  Every network outcome is
written back to the store so later selections start smarter.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from datetime import datetime, timezone

import httpx
import structlog

from switcharr.domain.entities.sources import (
    CacheCheckResult,
    DeepProbeResult,
    LayeredTestResult,
    QualityTier,
    QuickProbeResult,
)
from switcharr.infrastructure.common.urls import url_key
from switcharr.infrastructure.persistence.performance_store import PerformanceStore
from switcharr.infrastructure.selection.priority import latency_points

log = structlog.get_logger(__name__)

# (exclusive lower bound in Mbps, tier, points), first match wins.
_BANDWIDTH_TIERS: tuple[tuple[float, QualityTier, int], ...] = (
    (10.0, "4K", 70),
    (5.0, "2K", 60),
    (3.0, "1080p", 50),
    (1.5, "720p", 40),
    (0.5, "480p", 30),
)
_BANDWIDTH_FLOOR: tuple[QualityTier, int] = ("SD", 20)

# (exclusive upper bound in ms, points), first match wins.
_DEEP_LATENCY_POINTS: tuple[tuple[float, int], ...] = (
    (500, 30),
    (1000, 25),
    (2000, 20),
    (3000, 15),
)
_DEEP_LATENCY_FLOOR: int = 10

_QUICK_WEIGHT: float = 0.6
_DEEP_WEIGHT: float = 0.4


def quality_for_bandwidth(mbps: float) -> tuple[QualityTier, int]:
    """Map measured bandwidth to ``(quality tier, bandwidth points)``."""
    for bound, tier, points in _BANDWIDTH_TIERS:
        if mbps > bound:
            return tier, points
    return _BANDWIDTH_FLOOR


def deep_score(mbps: float, latency_ms: float) -> int:
    _, bandwidth_points = quality_for_bandwidth(mbps)
    latency = _DEEP_LATENCY_FLOOR
    for bound, points in _DEEP_LATENCY_POINTS:
        if latency_ms < bound:
            latency = points
            break
    return min(100, bandwidth_points + latency)


class MultiLayerProber:
    """Tests one URL through the cache, quick and deep layers.

    :meth:`probe` never raises: any failure resolves to an unavailable
    result with score 0.  Concurrent probes of the same normalized URL
    share one in-flight test.  The test runs as its own task, so a caller
    that stops waiting does not abort it and the store still learns the
    outcome.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        store: PerformanceStore,
        *,
        quick_timeout: float = 2.0,
        deep_timeout: float = 5.0,
        freshness_seconds: float = 300.0,
        deep_probe_enabled: bool = False,
        deep_probe_threshold: int = 80,
        deep_probe_bytes: int = 10_240,
        url_rewriter: Callable[[str], str] | None = None,
    ) -> None:
        self._http = http_client
        self._store = store
        self._quick_timeout = quick_timeout
        self._deep_timeout = deep_timeout
        self._freshness = freshness_seconds
        self._deep_enabled = deep_probe_enabled
        self._deep_threshold = deep_probe_threshold
        self._deep_bytes = deep_probe_bytes
        self._rewrite = url_rewriter
        self._inflight: dict[str, asyncio.Task[LayeredTestResult]] = {}

    @property
    def in_flight(self) -> int:
        return len(self._inflight)

    async def probe(self, url: str, priority: int = 50) -> LayeredTestResult:
        """Run the layered test for *url* and return its verdict."""
        key = url_key(url)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._run(url, priority))
            self._inflight[key] = task
            task.add_done_callback(lambda _t, k=key: self._inflight.pop(k, None))
        return await asyncio.shield(task)

    # -- layers ------------------------------------------------------------

    async def _run(self, url: str, priority: int) -> LayeredTestResult:
        t0 = time.monotonic()
        layer1 = CacheCheckResult(hit=False)
        try:
            layer1 = self._check_cache(url, datetime.now(timezone.utc))
            if layer1.hit:
                log.debug("probe_cache_hit", url=url, available=layer1.available)
                return LayeredTestResult(
                    url=url,
                    layer1=layer1,
                    available=layer1.available,
                    final_score=int(round(layer1.score)) if layer1.available else 0,
                    test_duration_ms=(time.monotonic() - t0) * 1000,
                    layers_used=(1,),
                )

            target = self._target_url(url)
            layer2 = await self._quick_probe(target)
            if not layer2.available:
                await self._store.record(
                    url, False, layer2.ping_ms, layer2.error_kind, score=0
                )
                return self._result(url, t0, layer1, layer2=layer2)

            if not self._deep_enabled or priority < self._deep_threshold:
                await self._store.record(
                    url, True, layer2.ping_ms, score=layer2.score, success_rate=1.0
                )
                return self._result(
                    url, t0, layer1, layer2=layer2, score=layer2.score
                )

            layer3 = await self._deep_probe(target)
            if not layer3.available:
                await self._store.record(
                    url,
                    False,
                    layer2.ping_ms,
                    layer3.error_kind,
                    score=0,
                    success_rate=0.5,
                )
                return self._result(url, t0, layer1, layer2=layer2, layer3=layer3)

            final = int(round(layer2.score * _QUICK_WEIGHT + layer3.score * _DEEP_WEIGHT))
            await self._store.record(
                url,
                True,
                layer2.ping_ms,
                score=final,
                quality=layer3.quality,
                success_rate=1.0,
            )
            return self._result(
                url, t0, layer1, layer2=layer2, layer3=layer3, score=final
            )
        except Exception as e:  # noqa: BLE001
            log.warning("probe_unexpected_error", url=url, error=str(e))
            return LayeredTestResult(
                url=url,
                layer1=layer1,
                available=False,
                final_score=0,
                test_duration_ms=(time.monotonic() - t0) * 1000,
                layers_used=(1,),
            )

    def _check_cache(self, url: str, now: datetime) -> CacheCheckResult:
        info = self._store.get(url, now=now)
        if info is None or info.last_test is None:
            return CacheCheckResult(hit=False)
        age = (now - info.last_test.tested_at).total_seconds()
        if age > self._freshness:
            return CacheCheckResult(hit=False, age_seconds=age)
        return CacheCheckResult(
            hit=True,
            available=info.is_available and not info.last_test.has_error,
            score=info.average_score,
            age_seconds=age,
        )

    async def _quick_probe(self, url: str) -> QuickProbeResult:
        t0 = time.monotonic()
        try:
            resp = await self._http.head(
                url,
                timeout=self._quick_timeout,
                follow_redirects=True,
            )
            if resp.status_code in (405, 501):
                resp = await self._http.get(
                    url,
                    timeout=self._quick_timeout,
                    follow_redirects=True,
                    headers={"Range": "bytes=0-0"},
                )
            ping_ms = (time.monotonic() - t0) * 1000

            if resp.status_code >= 400:
                return QuickProbeResult(
                    available=False,
                    ping_ms=ping_ms,
                    http_status=resp.status_code,
                    error_kind="http_status",
                )
            return QuickProbeResult(
                available=True,
                ping_ms=ping_ms,
                score=latency_points(ping_ms),
                http_status=resp.status_code,
            )
        except httpx.TimeoutException:
            return QuickProbeResult(
                available=False,
                ping_ms=(time.monotonic() - t0) * 1000,
                error_kind="timeout",
            )
        except httpx.HTTPError as exc:
            log.debug("quick_probe_error", url=url, error=str(exc))
            return QuickProbeResult(
                available=False,
                ping_ms=(time.monotonic() - t0) * 1000,
                error_kind="http_error",
            )

    async def _deep_probe(self, url: str) -> DeepProbeResult:
        t0 = time.monotonic()
        received = 0
        try:
            async with self._http.stream(
                "GET",
                url,
                timeout=self._deep_timeout,
                follow_redirects=True,
                headers={"Range": f"bytes=0-{self._deep_bytes - 1}"},
            ) as resp:
                latency_ms = (time.monotonic() - t0) * 1000
                if resp.status_code >= 400:
                    return DeepProbeResult(
                        available=False,
                        latency_ms=latency_ms,
                        error_kind="http_status",
                    )
                # Servers ignoring Range would stream the whole file.
                async for chunk in resp.aiter_bytes():
                    received += len(chunk)
                    if received >= self._deep_bytes:
                        break

            elapsed_ms = max((time.monotonic() - t0) * 1000, 0.001)
            mbps = received * 8 / (elapsed_ms * 1000)
            quality, _ = quality_for_bandwidth(mbps)
            score = deep_score(mbps, latency_ms)
            log.debug(
                "deep_probe_done",
                url=url,
                mbps=round(mbps, 2),
                quality=quality,
                score=score,
            )
            return DeepProbeResult(
                available=True,
                latency_ms=latency_ms,
                bandwidth_mbps=mbps,
                bytes_read=received,
                quality=quality,
                score=score,
            )
        except httpx.TimeoutException:
            return DeepProbeResult(
                available=False,
                latency_ms=(time.monotonic() - t0) * 1000,
                bytes_read=received,
                error_kind="timeout",
            )
        except httpx.HTTPError as exc:
            log.debug("deep_probe_error", url=url, error=str(exc))
            return DeepProbeResult(
                available=False,
                latency_ms=(time.monotonic() - t0) * 1000,
                bytes_read=received,
                error_kind="http_error",
            )

    # -- internal helpers --------------------------------------------------

    def _target_url(self, url: str) -> str:
        if self._rewrite is None:
            return url
        try:
            return self._rewrite(url)
        except Exception as e:  # noqa: BLE001
            log.warning("url_rewrite_failed", url=url, error=str(e))
            return url

    @staticmethod
    def _result(
        url: str,
        t0: float,
        layer1: CacheCheckResult,
        *,
        layer2: QuickProbeResult,
        layer3: DeepProbeResult | None = None,
        score: int = 0,
    ) -> LayeredTestResult:
        available = layer2.available and (layer3 is None or layer3.available)
        return LayeredTestResult(
            url=url,
            layer1=layer1,
            layer2=layer2,
            layer3=layer3,
            available=available,
            final_score=score if available else 0,
            test_duration_ms=(time.monotonic() - t0) * 1000,
            layers_used=(1, 2) if layer3 is None else (1, 2, 3),
        )

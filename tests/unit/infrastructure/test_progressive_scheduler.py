"""Unit tests for ProgressiveScheduler."""

from __future__ import annotations

import asyncio

from switcharr.domain.entities.sources import (
    CacheCheckResult,
    LayeredTestResult,
    ScheduleOptions,
    SourceCandidate,
)
from switcharr.infrastructure.probing.scheduler import ProgressiveScheduler, should_stop
from switcharr.infrastructure.selection.priority import PriorityQueue


class FakeProber:
    """Resolves URLs from a fixed availability map, tracking concurrency."""

    def __init__(self, available: dict[str, bool], delays: dict[str, float] | None = None) -> None:
        self._available = available
        self._delays = delays or {}
        self.calls: list[tuple[str, int]] = []
        self.active = 0
        self.max_active = 0

    async def probe(self, url: str, priority: int = 50) -> LayeredTestResult:
        self.calls.append((url, priority))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self._delays.get(url, 0))
        finally:
            self.active -= 1
        ok = self._available.get(url, False)
        return LayeredTestResult(
            url=url,
            layer1=CacheCheckResult(hit=False),
            available=ok,
            final_score=80 if ok else 0,
            test_duration_ms=1.0,
            layers_used=(1, 2),
        )


def _queue(urls: list[str]) -> PriorityQueue[SourceCandidate]:
    queue: PriorityQueue[SourceCandidate] = PriorityQueue()
    for i, url in enumerate(urls):
        queue.enqueue(SourceCandidate(source=None, episode_url=url), 100 - i)
    return queue


_URLS = [f"https://s{i}.example.com/v.m3u8" for i in range(5)]


class TestShouldStop:
    def test_fast_stops_on_first(self) -> None:
        assert should_stop(ScheduleOptions(mode="fast"), 1, 1, 5) is True

    def test_balanced_min_available(self) -> None:
        opts = ScheduleOptions(mode="balanced", min_available_sources=3)
        assert should_stop(opts, 3, 2, 10) is False
        assert should_stop(opts, 3, 3, 10) is True

    def test_balanced_half_tested_with_two(self) -> None:
        opts = ScheduleOptions(mode="balanced", min_available_sources=3)
        assert should_stop(opts, 5, 2, 10) is True
        assert should_stop(opts, 4, 2, 10) is False

    def test_comprehensive_never_stops(self) -> None:
        assert should_stop(ScheduleOptions(mode="comprehensive"), 9, 9, 10) is False

    def test_disabled(self) -> None:
        assert should_stop(ScheduleOptions(mode="fast", early_termination=False), 1, 1, 5) is False


class TestStream:
    async def test_balanced_stops_after_first_batch(self) -> None:
        prober = FakeProber({_URLS[0]: True, _URLS[1]: True})
        scheduler = ProgressiveScheduler(prober)
        opts = ScheduleOptions(max_concurrency=2, mode="balanced", min_available_sources=2)

        results = await scheduler.collect(_queue(_URLS), opts)

        assert {r.url for r in results} == {_URLS[0], _URLS[1]}
        assert [u for u, _ in prober.calls] == _URLS[:2]
        assert results[-1].available_count == 2
        assert results[0].total_count == 5

    async def test_never_exceeds_concurrency(self) -> None:
        prober = FakeProber({}, delays={u: 0.01 for u in _URLS})
        scheduler = ProgressiveScheduler(prober)

        await scheduler.collect(_queue(_URLS), ScheduleOptions(max_concurrency=2, mode="comprehensive"))

        assert prober.max_active <= 2
        assert len(prober.calls) == 5

    async def test_probes_in_priority_order(self) -> None:
        prober = FakeProber({})
        scheduler = ProgressiveScheduler(prober)

        await scheduler.collect(_queue(_URLS), ScheduleOptions(max_concurrency=1))

        assert [u for u, _ in prober.calls] == _URLS
        assert [p for _, p in prober.calls] == [100, 99, 98, 97, 96]

    async def test_results_in_completion_order(self) -> None:
        prober = FakeProber(
            {_URLS[0]: True, _URLS[1]: True},
            delays={_URLS[0]: 0.05, _URLS[1]: 0.0},
        )
        scheduler = ProgressiveScheduler(prober)
        opts = ScheduleOptions(max_concurrency=2, early_termination=False)

        results = await scheduler.collect(_queue(_URLS[:2]), opts)

        assert [r.url for r in results] == [_URLS[1], _URLS[0]]

    async def test_unavailable_results_only_in_comprehensive(self) -> None:
        prober = FakeProber({_URLS[2]: True})
        scheduler = ProgressiveScheduler(prober)

        balanced = await scheduler.collect(
            _queue(_URLS), ScheduleOptions(max_concurrency=5, mode="balanced")
        )
        comprehensive = await scheduler.collect(
            _queue(_URLS), ScheduleOptions(max_concurrency=5, mode="comprehensive")
        )

        assert [r.url for r in balanced] == [_URLS[2]]
        assert comprehensive[0].url == _URLS[2]
        assert len(comprehensive) == 5
        assert all(not r.available for r in comprehensive[1:])

    async def test_empty_queue(self) -> None:
        scheduler = ProgressiveScheduler(FakeProber({}))
        assert await scheduler.collect(PriorityQueue()) == []

    async def test_closing_early_awaits_rest_of_batch(self) -> None:
        prober = FakeProber(
            {u: True for u in _URLS[:2]},
            delays={_URLS[0]: 0.0, _URLS[1]: 0.05},
        )
        scheduler = ProgressiveScheduler(prober)
        stream = scheduler.stream(_queue(_URLS[:2]), ScheduleOptions(max_concurrency=2, mode="fast"))

        first = await anext(stream)
        await stream.aclose()

        assert first.url == _URLS[0]
        assert scheduler.pending == 0
        assert prober.active == 0
        assert len(prober.calls) == 2

    async def test_early_stop_then_new_stream_stays_within_bound(self) -> None:
        fast, slow = "https://fast.example.com/v.m3u8", "https://slow.example.com/v.m3u8"
        urls = [fast, slow, "https://slow2.example.com/v.m3u8"]
        prober = FakeProber(
            {u: True for u in urls},
            delays={fast: 0.0, urls[1]: 0.05, urls[2]: 0.05},
        )
        scheduler = ProgressiveScheduler(prober)
        opts = ScheduleOptions(max_concurrency=3, mode="fast")

        first = await scheduler.collect(_queue(urls), opts)
        second = await scheduler.collect(_queue(urls), opts)

        assert [r.url for r in first] == [fast]
        assert [r.url for r in second] == [fast]
        assert prober.max_active <= 3
        assert len(prober.calls) == 6

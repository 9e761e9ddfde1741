"""Unit tests for priority scoring and the priority queue."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from switcharr.domain.entities.sources import SourceCandidate
from switcharr.infrastructure.persistence.performance_store import PerformanceStore
from switcharr.infrastructure.selection.priority import (
    PriorityQueue,
    PriorityScorer,
    combine,
    freshness_score,
    speed_score,
)

_NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _c(url: str, priority: int | None = None) -> SourceCandidate:
    return SourceCandidate(source=url, episode_url=url, priority=priority)


class TestScoreComponents:
    @pytest.mark.parametrize(
        ("ping", "expected"),
        [(None, 0), (0, 0), (80, 100), (100, 100), (150, 90), (400, 70), (900, 50), (1500, 30), (5000, 10)],
    )
    def test_speed_buckets(self, ping: float | None, expected: int) -> None:
        assert speed_score(ping) == expected

    @pytest.mark.parametrize(
        ("minutes", "expected"),
        [(0, 100), (5, 100), (7, 80), (20, 60), (45, 40), (120, 20)],
    )
    def test_freshness_buckets(self, minutes: float, expected: int) -> None:
        assert freshness_score(minutes * 60) == expected

    def test_combine_weights(self) -> None:
        assert combine(100, 100, 100, 100) == 100
        assert combine(100, 0, 0, 0) == 40
        assert combine(0, 100, 0, 0) == 30
        assert combine(0, 0, 100, 0) == 20
        assert combine(0, 0, 0, 100) == 10

    def test_combine_clamps(self) -> None:
        assert combine(500, 500, 500, 500) == 100
        assert combine(-50, 0, 0, 0) == 0


class TestPriorityQueue:
    def test_descending_order(self) -> None:
        q: PriorityQueue[str] = PriorityQueue()
        q.enqueue("low", 10)
        q.enqueue("high", 90)
        q.enqueue("mid", 50)

        assert [q.dequeue(), q.dequeue(), q.dequeue()] == ["high", "mid", "low"]
        assert q.dequeue() is None

    def test_equal_scores_keep_insertion_order(self) -> None:
        q: PriorityQueue[str] = PriorityQueue()
        for name in ("a", "b", "c"):
            q.enqueue(name, 50)
        q.enqueue("top", 51)

        assert q.dequeue_batch(10) == ["top", "a", "b", "c"]

    def test_batch_and_peek(self) -> None:
        q: PriorityQueue[str] = PriorityQueue()
        for i, name in enumerate("abcde"):
            q.enqueue(name, 100 - i)

        assert q.peek() == "a"
        assert q.dequeue_batch_scored(2) == [("a", 100), ("b", 99)]
        assert len(q) == 3
        assert q.dequeue_batch(0) == []

    def test_clear(self) -> None:
        q: PriorityQueue[str] = PriorityQueue()
        q.enqueue("a", 1)
        q.clear()

        assert q.is_empty()
        assert q.peek() is None
        assert q.to_list() == []


class TestPriorityScorer:
    def test_without_history_uses_explicit_priority(self) -> None:
        scorer = PriorityScorer(PerformanceStore())
        score = scorer.score(_c("https://a.example.com/x", priority=77), now=_NOW)

        assert score.total == 77
        assert score.from_history is False

    def test_explicit_zero_priority_is_honoured(self) -> None:
        scorer = PriorityScorer(PerformanceStore(), default_priority=50)
        assert scorer.score(_c("https://a.example.com/x", priority=0), now=_NOW).total == 0

    def test_without_priority_uses_default(self) -> None:
        scorer = PriorityScorer(PerformanceStore(), default_priority=42)
        assert scorer.score(_c("https://a.example.com/x"), now=_NOW).total == 42

    def test_base_priority_clamped(self) -> None:
        scorer = PriorityScorer(PerformanceStore())
        assert scorer.score(_c("https://a.example.com/x", priority=250), now=_NOW).total == 100

    async def test_history_formula(self) -> None:
        store = PerformanceStore()
        url = "https://a.example.com/x"
        await store.record(url, True, 80.0, now=_NOW - timedelta(minutes=2))

        score = PriorityScorer(store).score(_c(url, priority=5), now=_NOW)

        # health 100, speed 100, freshness 100, success 100
        assert score.from_history is True
        assert score.total == 100

    async def test_failed_test_has_no_speed(self) -> None:
        store = PerformanceStore()
        url = "https://a.example.com/x"
        await store.record(url, False, 50.0, "timeout", now=_NOW)

        score = PriorityScorer(store).score(_c(url), now=_NOW)

        assert score.speed == 0
        assert score.health == 0
        assert score.success_rate == 0
        assert score.total == 20  # freshness only

    async def test_history_outranks_stale_guess(self) -> None:
        store = PerformanceStore()
        good = "https://good.example.com/x"
        await store.record(good, True, 150.0, now=_NOW)

        scorer = PriorityScorer(store)
        queue = scorer.build_queue([_c("https://new.example.com/x", priority=60), _c(good)], now=_NOW)

        assert queue.peek().episode_url == good

    def test_detailed_score_keys(self) -> None:
        scorer = PriorityScorer(PerformanceStore())
        detail = scorer.detailed_score(_c("https://a.example.com/x"), now=_NOW)

        assert set(detail) == {"total", "health", "speed", "freshness", "success_rate", "from_history"}

"""Priority scoring of candidates and the stable priority queue.

This is the single scoring function used to order probing:

``total = 0.4 * health + 0.3 * speed + 0.2 * freshness + 0.1 * success_rate``

with every component in ``[0, 100]``.  Candidates without history get
their caller-supplied base priority instead.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Generic, TypeVar

import structlog

from switcharr.domain.entities.sources import (
    CachedSourceInfo,
    PriorityScore,
    SourceCandidate,
    SourceTestResult,
)
from switcharr.infrastructure.persistence.performance_store import PerformanceStore

log = structlog.get_logger(__name__)

T = TypeVar("T")

W_HEALTH: float = 0.4
W_SPEED: float = 0.3
W_FRESHNESS: float = 0.2
W_SUCCESS: float = 0.1

DEFAULT_BASE_PRIORITY: int = 50

# (upper bound in ms, points), first match wins.
_SPEED_BUCKETS: tuple[tuple[float, int], ...] = (
    (100, 100),
    (200, 90),
    (500, 70),
    (1000, 50),
    (2000, 30),
)
_SPEED_FLOOR: int = 10

# (upper bound in minutes, points), first match wins.
_FRESHNESS_BUCKETS: tuple[tuple[float, int], ...] = (
    (5, 100),
    (10, 80),
    (30, 60),
    (60, 40),
)
_FRESHNESS_FLOOR: int = 20


def _clamp(value: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, value))


def latency_points(latency_ms: float) -> int:
    """Speed bucket for a measured latency (no "missing ping" rule)."""
    for bound, points in _SPEED_BUCKETS:
        if latency_ms <= bound:
            return points
    return _SPEED_FLOOR


def speed_score(ping_ms: float | None) -> int:
    """Speed sub-score; 0 when there is no ping sample."""
    if ping_ms is None or ping_ms <= 0:
        return 0
    return latency_points(ping_ms)


def freshness_score(age_seconds: float) -> int:
    minutes = max(0.0, age_seconds) / 60.0
    for bound, points in _FRESHNESS_BUCKETS:
        if minutes <= bound:
            return points
    return _FRESHNESS_FLOOR


def combine(health: float, speed: float, freshness: float, success_rate: float) -> int:
    total = (
        W_HEALTH * health
        + W_SPEED * speed
        + W_FRESHNESS * freshness
        + W_SUCCESS * success_rate
    )
    return int(round(_clamp(total)))


class PriorityQueue(Generic[T]):
    """List-backed queue ordered by descending score.

    ``enqueue`` inserts before the first element with a strictly lower
    score, so equal scores keep their insertion order.  Linear insertion
    is fine for the handful of candidates one media item has.
    """

    def __init__(self) -> None:
        self._items: list[tuple[T, float]] = []

    def __len__(self) -> int:
        return len(self._items)

    def enqueue(self, item: T, score: float) -> None:
        for i, (_, existing) in enumerate(self._items):
            if score > existing:
                self._items.insert(i, (item, score))
                return
        self._items.append((item, score))

    def dequeue(self) -> T | None:
        if not self._items:
            return None
        return self._items.pop(0)[0]

    def dequeue_batch(self, n: int) -> list[T]:
        return [item for item, _ in self.dequeue_batch_scored(n)]

    def dequeue_batch_scored(self, n: int) -> list[tuple[T, float]]:
        """Like :meth:`dequeue_batch` but keeps each item's score."""
        if n <= 0:
            return []
        batch = self._items[:n]
        del self._items[:n]
        return batch

    def peek(self) -> T | None:
        return self._items[0][0] if self._items else None

    def is_empty(self) -> bool:
        return not self._items

    def clear(self) -> None:
        self._items.clear()

    def to_list(self) -> list[tuple[T, float]]:
        return list(self._items)


class PriorityScorer:
    """Turns PerformanceStore history into priority scores."""

    def __init__(
        self,
        store: PerformanceStore,
        *,
        default_priority: int = DEFAULT_BASE_PRIORITY,
    ) -> None:
        self._store = store
        self._default_priority = default_priority

    def base_priority(self, candidate: SourceCandidate) -> int:
        if candidate.priority is not None:
            return candidate.priority
        return self._default_priority

    def score(
        self,
        candidate: SourceCandidate,
        *,
        now: datetime | None = None,
    ) -> PriorityScore:
        """Score *candidate*; never raises."""
        now = now or datetime.now(timezone.utc)
        url = candidate.episode_url
        info = self._store.get(url, now=now) if isinstance(url, str) else None

        if info is None or info.last_test is None:
            base = _clamp(float(self.base_priority(candidate)))
            return PriorityScore(total=int(round(base)))

        return self._score_from_history(info, info.last_test, now)

    def detailed_score(
        self,
        candidate: SourceCandidate,
        *,
        now: datetime | None = None,
    ) -> dict[str, float | int | bool]:
        """Score breakdown for diagnostics (CLI and logs)."""
        s = self.score(candidate, now=now)
        return {
            "total": s.total,
            "health": s.health,
            "speed": s.speed,
            "freshness": s.freshness,
            "success_rate": s.success_rate,
            "from_history": s.from_history,
        }

    def build_queue(
        self,
        candidates: list[SourceCandidate],
        *,
        now: datetime | None = None,
    ) -> PriorityQueue[SourceCandidate]:
        queue: PriorityQueue[SourceCandidate] = PriorityQueue()
        for candidate in candidates:
            queue.enqueue(candidate, self.score(candidate, now=now).total)
        log.debug("priority_queue_built", size=len(queue))
        return queue

    # -- internal helpers --------------------------------------------------

    @staticmethod
    def _score_from_history(
        info: CachedSourceInfo, test: SourceTestResult, now: datetime
    ) -> PriorityScore:
        health = _clamp(info.health_score * 100.0)
        # A failed test carries no usable latency sample.
        speed = float(speed_score(None if test.has_error else test.ping_ms))
        freshness = float(freshness_score((now - test.tested_at).total_seconds()))
        success = _clamp(test.success_rate * 100.0)

        return PriorityScore(
            total=combine(health, speed, freshness, success),
            health=health,
            speed=speed,
            freshness=freshness,
            success_rate=success,
            from_history=True,
        )

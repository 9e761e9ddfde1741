"""Progressive, concurrency-bounded probing of a priority queue."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import structlog

from switcharr.domain.entities.sources import (
    LayeredTestResult,
    ScheduleOptions,
    SourceCandidate,
    SourceResult,
)
from switcharr.infrastructure.probing.multi_layer_prober import MultiLayerProber
from switcharr.infrastructure.selection.priority import PriorityQueue

log = structlog.get_logger(__name__)


def should_stop(options: ScheduleOptions, tested: int, available: int, total: int) -> bool:
    """Early-termination policy, evaluated after each available result."""
    if not options.early_termination:
        return False
    if options.mode == "fast":
        return available >= 1
    if options.mode == "balanced":
        if available >= options.min_available_sources:
            return True
        return total > 0 and tested >= total * 0.5 and available >= 2
    return False


class ProgressiveScheduler:
    """Drains a PriorityQueue in batches and streams results as they land.

    Batches of ``max_concurrency`` candidates are dequeued in priority
    order and probed concurrently; within a batch results are yielded in
    completion order.  Only available results are yielded, except in
    ``comprehensive`` mode, which appends the unavailable ones once the
    queue is exhausted.

    Probe tasks are owned by the scheduler, not by the consumer.  When the
    stream stops early or is closed, the rest of the current batch is
    awaited before the generator finishes, so their outcomes still reach
    the PerformanceStore and at most ``max_concurrency`` probes are ever
    in flight.  :meth:`drain` awaits anything a cancelled stream left
    behind.
    """

    def __init__(self, prober: MultiLayerProber) -> None:
        self._prober = prober
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def stream(
        self,
        queue: PriorityQueue[SourceCandidate],
        options: ScheduleOptions | None = None,
    ) -> AsyncIterator[SourceResult]:
        options = options or ScheduleOptions()
        total = len(queue)
        tested = 0
        available = 0
        failed: list[tuple[SourceCandidate, LayeredTestResult]] = []

        log.debug(
            "progressive_scan_start",
            total=total,
            mode=options.mode,
            max_concurrency=options.max_concurrency,
        )

        while not queue.is_empty():
            batch = queue.dequeue_batch_scored(max(1, options.max_concurrency))
            tasks = [self._spawn(candidate, score) for candidate, score in batch]

            try:
                for next_done in asyncio.as_completed(tasks):
                    candidate, result = await next_done
                    tested += 1
                    if not result.available:
                        failed.append((candidate, result))
                        continue

                    available += 1
                    yield SourceResult(
                        candidate=candidate,
                        url=result.url,
                        result=result,
                        index=tested - 1,
                        total_count=total,
                        available_count=available,
                    )
                    if should_stop(options, tested, available, total):
                        log.info(
                            "progressive_scan_stopped_early",
                            mode=options.mode,
                            tested=tested,
                            available=available,
                            total=total,
                        )
                        return
            finally:
                # The batch stays in flight until every probe has landed,
                # so the next stream never overlaps it.
                leftover = [t for t in tasks if not t.done()]
                if leftover:
                    await asyncio.gather(*leftover, return_exceptions=True)

        log.info(
            "progressive_scan_complete",
            mode=options.mode,
            tested=tested,
            available=available,
            total=total,
        )

        if options.mode == "comprehensive":
            for i, (candidate, result) in enumerate(failed):
                yield SourceResult(
                    candidate=candidate,
                    url=result.url,
                    result=result,
                    index=available + i,
                    total_count=total,
                    available_count=available,
                )

    async def collect(
        self,
        queue: PriorityQueue[SourceCandidate],
        options: ScheduleOptions | None = None,
    ) -> list[SourceResult]:
        return [item async for item in self.stream(queue, options)]

    async def drain(self) -> None:
        """Wait for every probe started by this scheduler to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # -- internal helpers --------------------------------------------------

    def _spawn(self, candidate: SourceCandidate, score: float) -> asyncio.Task:
        task = asyncio.create_task(self._probe(candidate, int(score)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _probe(
        self, candidate: SourceCandidate, priority: int
    ) -> tuple[SourceCandidate, LayeredTestResult]:
        result = await self._prober.probe(str(candidate.episode_url), priority=priority)
        return candidate, result

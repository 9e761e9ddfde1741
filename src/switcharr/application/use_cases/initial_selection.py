"""Initial source selection use case.

candidates -> validate -> drop blacklisted/excluded -> deduplicate
-> priority queue -> progressive probing.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import aclosing
from dataclasses import replace
from typing import Any, Protocol

import structlog

from switcharr.domain.entities.sources import (
    CachedSourceInfo,
    ScheduleOptions,
    SourceCandidate,
    SourceResult,
)
from switcharr.domain.entities.switching import URLValidationResult
from switcharr.domain.ports.url_validator import URLValidatorPort

log = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Protocols: what this use case needs from its dependencies.
# Infrastructure components satisfy these via structural subtyping.
# ---------------------------------------------------------------------------


class _PerformanceStore(Protocol):
    def is_blacklisted(self, url: str) -> bool: ...

    async def blacklist(self, url: str, reason: str) -> CachedSourceInfo: ...


class _Deduplicator(Protocol):
    def deduplicate(self, candidates: list[SourceCandidate]) -> list[SourceCandidate]: ...


class _PriorityScorer(Protocol):
    def build_queue(self, candidates: list[SourceCandidate]) -> Any: ...


class _Scheduler(Protocol):
    def stream(
        self, queue: Any, options: ScheduleOptions | None = None
    ) -> AsyncIterator[SourceResult]: ...


# Normalizes a URL into the identity used for "already tried" checks.
_KeyFn = Callable[[str], str]

# Reason recorded in the store for candidates rejected by URL validation.
VALIDATION_BLACKLIST_REASON = "url_validation_error"


class InitialSelector:
    """One-shot selection of playable sources for a media item."""

    def __init__(
        self,
        *,
        store: _PerformanceStore,
        validator: URLValidatorPort,
        deduplicator: _Deduplicator,
        scorer: _PriorityScorer,
        scheduler: _Scheduler,
        key_fn: _KeyFn,
        options: ScheduleOptions | None = None,
    ) -> None:
        self._store = store
        self._validator = validator
        self._dedup = deduplicator
        self._scorer = scorer
        self._scheduler = scheduler
        self._key = key_fn
        self._options = options or ScheduleOptions()

    @property
    def options(self) -> ScheduleOptions:
        return self._options

    async def prepare(
        self,
        candidates: Iterable[SourceCandidate],
        *,
        exclude: set[str] | None = None,
    ) -> Any:
        """Filter and order *candidates*; returns the priority queue.

        *exclude* holds URL keys (see ``key_fn``) of candidates that must
        not be offered again, e.g. the ones already tried by failover.
        """
        eligible = await self.eligible(candidates, exclude=exclude)
        unique = self._dedup.deduplicate(eligible)
        return self._scorer.build_queue(unique)

    async def eligible(
        self,
        candidates: Iterable[SourceCandidate],
        *,
        exclude: set[str] | None = None,
        blacklist_invalid: bool = True,
    ) -> list[SourceCandidate]:
        """Valid, non-blacklisted, non-excluded candidates in input order.

        With ``blacklist_invalid=False`` the call has no side effects on
        the store, which suits repeated counting from a poll loop.
        """
        exclude = exclude or set()
        kept: list[SourceCandidate] = []
        for candidate in candidates:
            check = self._validator.validate(candidate)
            if not check.valid:
                if blacklist_invalid:
                    await self._reject(candidate, check)
                continue

            url = check.url or str(candidate.episode_url)
            if self._key(url) in exclude:
                continue
            if self._store.is_blacklisted(url):
                log.debug("candidate_blacklisted", url=url)
                continue
            kept.append(candidate)
        return kept

    async def select_progressive(
        self,
        candidates: Iterable[SourceCandidate],
        options: ScheduleOptions | None = None,
        *,
        exclude: set[str] | None = None,
    ) -> AsyncIterator[SourceResult]:
        """Stream probe results as they become known (lazy, single pass)."""
        queue = await self.prepare(candidates, exclude=exclude)
        async with aclosing(self._scheduler.stream(queue, options or self._options)) as results:
            async for item in results:
                yield item

    async def select_first_available(
        self,
        candidates: Iterable[SourceCandidate],
        *,
        exclude: set[str] | None = None,
    ) -> SourceResult | None:
        options = replace(self._options, mode="fast", early_termination=True)
        async with aclosing(
            self.select_progressive(candidates, options, exclude=exclude)
        ) as results:
            async for item in results:
                if item.available:
                    log.info("source_selected", url=item.url, score=item.score)
                    return item
        log.warning("no_source_available")
        return None

    async def select_best_sources(
        self,
        candidates: Iterable[SourceCandidate],
        n: int,
        *,
        exclude: set[str] | None = None,
    ) -> list[SourceResult]:
        """Up to *n* available sources, best final score first."""
        if n <= 0:
            return []
        # Own stopping rule: stop at n available, not at the mode's thresholds.
        options = replace(self._options, mode="balanced", early_termination=False)
        found: list[SourceResult] = []
        async with aclosing(
            self.select_progressive(candidates, options, exclude=exclude)
        ) as results:
            async for item in results:
                if not item.available:
                    continue
                found.append(item)
                if len(found) >= n:
                    break
        found.sort(key=lambda r: r.score, reverse=True)
        return found

    # -- internal helpers --------------------------------------------------

    async def _reject(
        self, candidate: SourceCandidate, check: URLValidationResult
    ) -> None:
        url = candidate.episode_url
        # Only a real URL string can be remembered as bad.
        url = url if isinstance(url, str) and url.strip() else None
        if url is not None and self._store.is_blacklisted(url):
            log.debug("candidate_already_rejected", url=url)
            return
        log.warning(
            "candidate_rejected",
            candidate=candidate.name or None,
            error_kind=check.error_kind,
            message=check.message,
        )
        if url is not None:
            await self._store.blacklist(
                url, f"{VALIDATION_BLACKLIST_REASON}:{check.error_kind}"
            )

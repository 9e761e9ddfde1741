"""Collapse candidates that point at the same endpoint."""

from __future__ import annotations

import structlog

from switcharr.domain.entities.sources import DeduplicationStats, SourceCandidate
from switcharr.infrastructure.common.urls import base_domain, normalize_url

log = structlog.get_logger(__name__)


def _priority(candidate: SourceCandidate) -> int:
    return candidate.priority if candidate.priority is not None else 0


def _normalized(candidate: SourceCandidate) -> str:
    url = candidate.episode_url
    if not isinstance(url, str):
        return repr(url)
    return normalize_url(url)


class Deduplicator:
    """Keeps one candidate per normalized URL.

    On collision the candidate with the greater explicit ``priority``
    wins; ties keep the one seen first.  Output preserves the encounter
    order of each surviving group.

    The optional *advanced* pass additionally keeps a single candidate
    per base domain.  Candidates without a parseable host are never
    grouped.
    """

    def __init__(self, *, advanced: bool = False) -> None:
        self._advanced = advanced

    def deduplicate(
        self,
        candidates: list[SourceCandidate],
        *,
        advanced: bool | None = None,
    ) -> list[SourceCandidate]:
        survivors = self._collapse(candidates, key=_normalized)

        use_advanced = self._advanced if advanced is None else advanced
        if use_advanced:
            survivors = self._collapse(survivors, key=self._domain_key)

        if len(survivors) != len(candidates):
            log.debug(
                "candidates_deduplicated",
                original=len(candidates),
                kept=len(survivors),
                advanced=use_advanced,
            )
        return survivors

    def find_duplicates(
        self, candidates: list[SourceCandidate]
    ) -> dict[str, list[SourceCandidate]]:
        """Groups of two or more candidates sharing a normalized URL."""
        groups: dict[str, list[SourceCandidate]] = {}
        for candidate in candidates:
            groups.setdefault(_normalized(candidate), []).append(candidate)
        return {key: group for key, group in groups.items() if len(group) > 1}

    def stats(self, candidates: list[SourceCandidate]) -> DeduplicationStats:
        kept = self.deduplicate(candidates)
        return DeduplicationStats(
            original_count=len(candidates),
            deduplicated_count=len(kept),
            removed_count=len(candidates) - len(kept),
            duplicate_groups=len(self.find_duplicates(candidates)),
        )

    @staticmethod
    def is_same_source(a: str, b: str) -> bool:
        return normalize_url(a) == normalize_url(b)

    # -- internal helpers --------------------------------------------------

    @staticmethod
    def _domain_key(candidate: SourceCandidate) -> str:
        url = candidate.episode_url
        domain = base_domain(url) if isinstance(url, str) else None
        # Unparseable URLs stay in a group of their own.
        return domain if domain is not None else f"\x00{id(candidate)}"

    @staticmethod
    def _collapse(candidates, *, key) -> list[SourceCandidate]:
        best: dict[str, SourceCandidate] = {}
        for candidate in candidates:
            k = key(candidate)
            current = best.get(k)
            if current is None or _priority(candidate) > _priority(current):
                best[k] = candidate
        # dict keeps first-insertion order of each key.
        return list(best.values())

"""Domain entities for source candidates, probe results and cached performance.

Pure value objects without framework dependencies or I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

QualityTier = Literal["4K", "2K", "1080p", "720p", "480p", "SD", "unknown"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SourceCandidate:
    """One playable endpoint offered by some aggregated video source.

    ``source`` is an opaque descriptor owned by the caller (site record,
    dict, ...).  Only ``episode_url`` and ``priority`` are interpreted.
    """

    source: Any
    episode_url: str | None
    priority: int | None = None
    name: str = ""

    @property
    def display_name(self) -> str:
        return self.name or str(self.episode_url)


@dataclass(frozen=True)
class SourceTestResult:
    """Outcome of the most recent network test of a source."""

    tested_at: datetime
    quality: QualityTier = "unknown"
    ping_ms: float = 0.0
    has_error: bool = False
    # 1.0 = full success, 0.5 = quick probe ok but deep probe failed, 0.0 = failure
    success_rate: float = 0.0


@dataclass(frozen=True)
class CachedSourceInfo:
    """Learned performance of one source, keyed by its normalized URL.

    Running averages are cumulative (all samples weigh the same).
    ``is_available`` / ``unavailable_since`` form the blacklist.
    """

    url: str
    url_key: str
    last_test: SourceTestResult | None = None
    test_count: int = 0
    average_score: float = 0.0
    health_score: float = 1.0
    average_load_time_ms: float = 0.0
    updated_at: datetime = field(default_factory=_utcnow)
    last_used_time: datetime = field(default_factory=_utcnow)
    is_available: bool = True
    unavailable_since: datetime | None = None
    unavailable_reason: str | None = None
    error_kinds: dict[str, int] = field(default_factory=dict)
    validation_errors: int = 0


@dataclass(frozen=True)
class PriorityScore:
    """Breakdown of a candidate's priority (all components 0-100)."""

    total: int
    health: float = 0.0
    speed: float = 0.0
    freshness: float = 0.0
    success_rate: float = 0.0
    from_history: bool = False


@dataclass(frozen=True)
class CacheCheckResult:
    """Layer 1: verdict served from the performance store."""

    hit: bool
    available: bool = False
    score: float = 0.0
    age_seconds: float | None = None


@dataclass(frozen=True)
class QuickProbeResult:
    """Layer 2: lightweight reachability probe."""

    available: bool
    ping_ms: float
    score: int = 0
    http_status: int | None = None
    error_kind: str | None = None  # "timeout", "http_error", "http_status"


@dataclass(frozen=True)
class DeepProbeResult:
    """Layer 3: bandwidth and quality estimate from a ranged download."""

    available: bool
    latency_ms: float
    bandwidth_mbps: float = 0.0
    bytes_read: int = 0
    quality: QualityTier = "unknown"
    score: int = 0
    error_kind: str | None = None


@dataclass(frozen=True)
class LayeredTestResult:
    """Combined verdict of the multi-layer prober."""

    url: str
    layer1: CacheCheckResult
    available: bool
    final_score: int
    test_duration_ms: float
    layers_used: tuple[int, ...]
    layer2: QuickProbeResult | None = None
    layer3: DeepProbeResult | None = None

    @property
    def from_cache(self) -> bool:
        return self.layers_used == (1,)


@dataclass(frozen=True)
class SourceResult:
    """One item yielded by the progressive scheduler."""

    candidate: SourceCandidate
    url: str
    result: LayeredTestResult
    index: int
    total_count: int
    available_count: int

    @property
    def available(self) -> bool:
        return self.result.available

    @property
    def score(self) -> int:
        return self.result.final_score


@dataclass(frozen=True)
class DeduplicationStats:
    original_count: int
    deduplicated_count: int
    removed_count: int
    duplicate_groups: int


ProbeMode = Literal["fast", "balanced", "comprehensive"]


@dataclass(frozen=True)
class ScheduleOptions:
    """Knobs of one progressive probing run."""

    max_concurrency: int = 6
    early_termination: bool = True
    min_available_sources: int = 3
    mode: ProbeMode = "balanced"

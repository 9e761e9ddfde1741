"""Domain entities for live source switching and its bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

from switcharr.domain.entities.sources import SourceCandidate

ErrorClass = Literal["validation", "network", "player", "exhaustion", "unknown"]
NetworkQuality = Literal["excellent", "good", "fair", "poor"]
LoadingStage = Literal["initial", "buffering", "seeking", "ready"]
URLErrorKind = Literal["missing", "invalid_type", "empty", "malformed"]
FailoverEventName = Literal[
    "switch-start",
    "switch-success",
    "switch-failed",
    "all-sources-failed",
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PlayerState:
    """Playback state captured before a swap and restored after it."""

    current_time: float = 0.0
    volume: float = 1.0
    playback_rate: float = 1.0
    paused: bool = True
    muted: bool = False
    subtitle_visible: bool = False
    subtitle_index: int | None = None


@dataclass(frozen=True)
class SwitchContext:
    """Everything the executor needs for one switch."""

    target: SourceCandidate
    reason: str
    current: SourceCandidate | None = None
    player_state: PlayerState | None = None


@dataclass(frozen=True)
class SwitchRecord:
    """Immutable ledger entry for one switch attempt."""

    from_source: str | None
    to_source: str
    reason: str
    duration_ms: float
    success: bool
    timestamp: datetime = field(default_factory=_utcnow)
    error_type: ErrorClass | None = None
    error_message: str | None = None
    network_quality: NetworkQuality | None = None


@dataclass
class SourceStats:
    """Per-target rollup of switch attempts (mutable, owned by the ledger)."""

    source: str
    attempts: int = 0
    successes: int = 0
    failures: int = 0
    average_load_time_ms: float = 0.0
    last_used: datetime | None = None
    error_reasons: dict[str, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        if self.attempts == 0:
            return 0.0
        return self.successes / self.attempts


@dataclass(frozen=True)
class URLValidationResult:
    valid: bool
    url: str | None = None
    error_kind: URLErrorKind | None = None
    message: str | None = None


@dataclass(frozen=True)
class SwitchConditions:
    """Snapshot of every gate evaluated by the decision maker."""

    is_timeout: bool
    is_fatal: bool
    forced: bool
    cooldown_passed: bool
    min_attempt_passed: bool
    error_threshold_reached: bool
    has_backups: bool
    error_count: int
    available_backup_count: int

    @property
    def failed(self) -> list[str]:
        """Names of the gates that currently block a switch."""
        gates = {
            "is_timeout": self.is_timeout,
            "cooldown_passed": self.cooldown_passed,
            "min_attempt_passed": self.min_attempt_passed,
            "error_threshold_reached": self.error_threshold_reached,
            "has_backups": self.has_backups,
        }
        return [name for name, ok in gates.items() if not ok]


@dataclass(frozen=True)
class AllSourcesFailed:
    """Payload of the ``all-sources-failed`` event."""

    tried_sources: tuple[str, ...]
    switch_attempts: int
    available_sources: int
    has_valid_sources: bool
    # True when no candidate was ever observed available.
    fatal: bool

"""Default LoadingMonitorPort implementation driven by player events."""

from __future__ import annotations

import time

import structlog

from switcharr.domain.entities.switching import LoadingStage, NetworkQuality
from switcharr.domain.ports.loading_monitor import LoadingState

log = structlog.get_logger(__name__)

# Initial/seeking stall budget per network quality (ms).
NETWORK_TIMEOUTS_MS: dict[NetworkQuality, float] = {
    "excellent": 6000.0,
    "good": 6000.0,
    "fair": 8000.0,
    "poor": 10000.0,
}


class PlayerLoadingMonitor:
    """Tracks the current loading stage and flags stalls.

    The embedding player calls :meth:`enter_stage` on its own events
    (``waiting`` -> ``buffering``, ``seeking``, ``canplay`` -> ``ready``);
    the failover loop only reads :meth:`is_loading_timeout`.
    """

    def __init__(
        self,
        *,
        network_quality: NetworkQuality = "good",
        buffering_timeout_ms: float = 8000.0,
    ) -> None:
        self._quality: NetworkQuality = network_quality
        self._buffering_timeout = buffering_timeout_ms
        self._stage: LoadingStage = "initial"
        self._stage_started: float | None = None

    @property
    def stage(self) -> LoadingStage:
        return self._stage

    def start(self) -> None:
        """Begin monitoring a freshly loaded source."""
        self._stage = "initial"
        self._stage_started = time.monotonic()

    def enter_stage(self, stage: LoadingStage) -> None:
        if stage == self._stage and self._stage_started is not None:
            return
        log.debug("loading_stage", previous=self._stage, stage=stage)
        self._stage = stage
        self._stage_started = time.monotonic()

    def mark_ready(self) -> None:
        self.enter_stage("ready")

    def set_network_quality(self, quality: NetworkQuality) -> None:
        self._quality = quality

    def stage_timeout_ms(self) -> float | None:
        if self._stage == "ready":
            return None
        if self._stage == "buffering":
            return self._buffering_timeout
        return NETWORK_TIMEOUTS_MS[self._quality]

    def elapsed_ms(self) -> float:
        if self._stage_started is None:
            return 0.0
        return (time.monotonic() - self._stage_started) * 1000

    def is_loading_timeout(self) -> bool:
        timeout = self.stage_timeout_ms()
        if timeout is None or self._stage_started is None:
            return False
        return self.elapsed_ms() >= timeout

    def get_loading_state(self) -> LoadingState:
        return LoadingState(
            stage=self._stage,
            duration_ms=self.elapsed_ms(),
            network_quality=self._quality,
        )

    def reset(self) -> None:
        self._stage = "initial"
        self._stage_started = None

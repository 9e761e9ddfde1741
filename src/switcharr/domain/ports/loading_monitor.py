"""Port for observing whether the current source is stuck loading."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from switcharr.domain.entities.switching import LoadingStage, NetworkQuality


@dataclass(frozen=True)
class LoadingState:
    stage: LoadingStage
    duration_ms: float
    network_quality: NetworkQuality


@runtime_checkable
class LoadingMonitorPort(Protocol):
    """Reports stalls of the currently loading source.

    The failover loop polls this once per tick.  Monitors that also
    expose ``start()`` are restarted after every successful switch.
    """

    def is_loading_timeout(self) -> bool:
        """True when the current stage has exceeded its timeout."""
        ...

    def get_loading_state(self) -> LoadingState:
        """Current stage, time spent in it and the network-quality tag."""
        ...

"""Engine state container: every long-lived component, wired once."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from switcharr.infrastructure.config import AppConfig

if TYPE_CHECKING:
    from switcharr.application.use_cases import InitialSelector
    from switcharr.domain.ports import CachePort
    from switcharr.infrastructure.persistence.performance_store import PerformanceStore
    from switcharr.infrastructure.probing.multi_layer_prober import MultiLayerProber
    from switcharr.infrastructure.probing.scheduler import ProgressiveScheduler
    from switcharr.infrastructure.statistics.ledger import StatisticsLedger
    from switcharr.infrastructure.validation.url_validator import SourceURLValidator


@dataclass
class AppState:
    """Shared resources of one engine instance.

    Lifecycle managed by composition.py::lifespan().  Per-playback
    objects (decision maker, executor, loading monitor) are not kept
    here; ``composition.new_failover`` builds them for each session.
    """

    config: AppConfig
    http_client: httpx.AsyncClient
    cache: CachePort | None
    store: PerformanceStore
    ledger: StatisticsLedger
    validator: SourceURLValidator
    prober: MultiLayerProber
    scheduler: ProgressiveScheduler
    selector: InitialSelector

"""Composition root: builds the engine from an AppConfig."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
import structlog

from switcharr.application.use_cases import InitialSelector, LiveFailover
from switcharr.infrastructure.cache.cache_factory import create_cache
from switcharr.infrastructure.common.urls import url_key
from switcharr.infrastructure.config.schema import AppConfig
from switcharr.infrastructure.persistence.performance_store import PerformanceStore
from switcharr.infrastructure.probing.multi_layer_prober import MultiLayerProber
from switcharr.infrastructure.probing.scheduler import ProgressiveScheduler
from switcharr.infrastructure.selection.deduplicator import Deduplicator
from switcharr.infrastructure.selection.priority import PriorityScorer
from switcharr.infrastructure.statistics.ledger import StatisticsLedger
from switcharr.infrastructure.switching.decision import SwitchDecisionMaker
from switcharr.infrastructure.switching.executor import SwitchExecutor
from switcharr.infrastructure.switching.loading_monitor import PlayerLoadingMonitor
from switcharr.infrastructure.validation.url_validator import SourceURLValidator
from switcharr.interfaces.app_state import AppState

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(
    config: AppConfig,
    *,
    http_client: httpx.AsyncClient | None = None,
    url_rewriter: Callable[[str], str] | None = None,
) -> AsyncIterator[AppState]:
    """Initialize and clean up all engine resources.

    Order matters:
        1. Cache (store and ledger persist through it)
        2. HTTP client (prober)
        3. Performance store + ledger (loaded from cache)
        4. Prober, scheduler, selector

    A caller-supplied *http_client* is used as-is and not closed here.
    """
    # 1) Cache
    cache = create_cache(
        backend=config.cache.backend,
        directory=str(config.cache.directory),
        redis_url=config.cache.redis_url,
        ttl_seconds=config.cache.persist_ttl_seconds,
    )
    if cache is not None:
        await cache.__aenter__()
    log.info("cache_initialized", backend=config.cache.backend)

    # 2) HTTP client
    owns_client = http_client is None
    if http_client is None:
        http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(config.http_timeout_seconds),
            headers={"User-Agent": config.http_user_agent},
            follow_redirects=config.http_follow_redirects,
        )
    log.info("http_client_initialized", owned=owns_client)

    try:
        # 3) Learned state
        store = PerformanceStore(
            cache,
            ttl_seconds=config.store.ttl_seconds,
            max_entries=config.store.max_entries,
            blacklist_expiry_seconds=config.store.blacklist_expiry_seconds,
            retest_interval_seconds=config.store.retest_interval_seconds,
            persist_ttl_days=config.cache.persist_ttl_days,
        )
        await store.load()
        ledger = StatisticsLedger(
            cache,
            max_history=config.statistics.max_history,
            persist_ttl_days=config.cache.persist_ttl_days,
        )
        await ledger.load()

        # 4) Selection pipeline
        validator = SourceURLValidator()
        prober = MultiLayerProber(
            http_client,
            store,
            quick_timeout=config.prober.quick_timeout_seconds,
            deep_timeout=config.prober.deep_timeout_seconds,
            freshness_seconds=config.prober.freshness_seconds,
            deep_probe_enabled=config.prober.deep_probe_enabled,
            deep_probe_threshold=config.prober.deep_probe_threshold,
            deep_probe_bytes=config.prober.deep_probe_bytes,
            url_rewriter=url_rewriter,
        )
        scheduler = ProgressiveScheduler(prober)
        selector = InitialSelector(
            store=store,
            validator=validator,
            deduplicator=Deduplicator(advanced=config.selection.advanced_dedup),
            scorer=PriorityScorer(
                store, default_priority=config.selection.default_priority
            ),
            scheduler=scheduler,
            key_fn=url_key,
            options=config.scheduler.to_options(),
        )

        state = AppState(
            config=config,
            http_client=http_client,
            cache=cache,
            store=store,
            ledger=ledger,
            validator=validator,
            prober=prober,
            scheduler=scheduler,
            selector=selector,
        )
        log.info("engine_startup_complete")

        yield state

        # Let probes from cancelled streams land before the final save.
        await scheduler.drain()
        await store.save()
        await ledger.save()
    finally:
        if owns_client:
            await http_client.aclose()
            log.info("http_client_closed")
        if cache is not None:
            await cache.aclose()
            log.info("cache_closed")
        log.info("engine_shutdown_complete")


def new_failover(state: AppState) -> LiveFailover:
    """Build a LiveFailover for one playback session."""
    switching = state.config.switching
    return LiveFailover(
        selector=state.selector,
        decision=SwitchDecisionMaker(
            cooldown_seconds=switching.cooldown_seconds,
            min_attempt_seconds=switching.min_attempt_seconds,
            error_threshold=switching.error_threshold,
            force_timeout_seconds=switching.force_timeout_seconds,
            fatal_error_immediate_switch=switching.fatal_error_immediate_switch,
        ),
        executor=SwitchExecutor(
            state.validator,
            swap_timeout=switching.swap_timeout_seconds,
            ready_timeout=switching.ready_timeout_seconds,
        ),
        ledger=state.ledger,
        store=state.store,
        monitor=PlayerLoadingMonitor(),
        key_fn=url_key,
        poll_interval=switching.poll_interval_seconds,
        max_switch_attempts=switching.max_switch_attempts,
    )

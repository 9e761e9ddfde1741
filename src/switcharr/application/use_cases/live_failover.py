"""Live failover use case.

Poll loop while playback is active:
loading monitor -> switch decision -> best untried candidate
-> switch executor -> statistics ledger.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable, Iterable
from contextlib import suppress
from typing import Any, Protocol

import structlog

from switcharr.domain.entities.sources import CachedSourceInfo, SourceCandidate
from switcharr.domain.entities.switching import (
    AllSourcesFailed,
    FailoverEventName,
    PlayerState,
    SwitchContext,
    SwitchRecord,
)
from switcharr.domain.errors import SwitchError, SwitchValidationError, classify_error
from switcharr.domain.ports.loading_monitor import LoadingMonitorPort
from switcharr.domain.ports.player import PlayerHandle

from .initial_selection import InitialSelector

log = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Protocols: what this use case needs from its dependencies.
# ---------------------------------------------------------------------------


class _DecisionMaker(Protocol):
    def should_switch(self, is_timeout: bool, is_fatal: bool = False) -> bool: ...

    def record_switch(self) -> None: ...

    def record_load_start(self) -> None: ...

    def record_error(self) -> None: ...

    def update_available_backup_count(self, count: int) -> None: ...

    def reset(self) -> None: ...


class _Executor(Protocol):
    @property
    def is_switching(self) -> bool: ...

    def attach(self, player: PlayerHandle) -> None: ...

    def capture_player_state(self, player: PlayerHandle) -> PlayerState: ...

    async def switch_source(self, context: SwitchContext) -> bool: ...

    def destroy(self) -> None: ...


class _Ledger(Protocol):
    async def record(self, record: SwitchRecord) -> None: ...


class _Store(Protocol):
    async def record(
        self,
        url: str,
        success: bool,
        load_time_ms: float,
        error_kind: str | None = None,
    ) -> CachedSourceInfo: ...

    async def blacklist(self, url: str, reason: str) -> CachedSourceInfo: ...


EventHandler = Callable[[Any], Awaitable[None] | None]

DEFAULT_POLL_INTERVAL: float = 1.0
DEFAULT_MAX_SWITCH_ATTEMPTS: int = 5


class LiveFailover:
    """Keeps playback alive by switching away from stalled sources.

    Events (``on`` / ``off``):

    - ``switch-start``: :class:`SwitchContext`
    - ``switch-success`` / ``switch-failed``: :class:`SwitchRecord`
    - ``all-sources-failed``: :class:`AllSourcesFailed`; the poll loop
      stops after emitting it

    Every attempted target joins the tried set, so one run never offers
    the same URL twice.  A target rejected by URL validation is
    blacklisted and the next candidate is tried right away.

    Thread-safety note: not thread-safe; safe for single-threaded asyncio.
    """

    def __init__(
        self,
        *,
        selector: InitialSelector,
        decision: _DecisionMaker,
        executor: _Executor,
        ledger: _Ledger,
        store: _Store,
        monitor: LoadingMonitorPort,
        key_fn: Callable[[str], str],
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_switch_attempts: int = DEFAULT_MAX_SWITCH_ATTEMPTS,
    ) -> None:
        self._selector = selector
        self._decision = decision
        self._executor = executor
        self._ledger = ledger
        self._store = store
        self._monitor = monitor
        self._key = key_fn
        self._poll_interval = poll_interval
        self._max_attempts = max_switch_attempts

        self._player: PlayerHandle | None = None
        self._candidates: list[SourceCandidate] = []
        self._current: SourceCandidate | None = None
        self._tried: dict[str, str] = {}
        self._switch_attempts = 0
        self._ever_available = False
        self._exhausted = False
        self._in_tick = False
        self._task: asyncio.Task | None = None
        self._handlers: dict[str, list[EventHandler]] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def current(self) -> SourceCandidate | None:
        return self._current

    @property
    def switch_attempts(self) -> int:
        return self._switch_attempts

    @property
    def tried_sources(self) -> list[str]:
        return list(self._tried.values())

    def initialize(
        self,
        player: PlayerHandle,
        candidates: Iterable[SourceCandidate],
        current: SourceCandidate | None = None,
    ) -> None:
        self._player = player
        self._executor.attach(player)
        self._candidates = list(candidates)
        self._current = current
        self._tried.clear()
        if current is not None:
            self._mark_tried(current)
        self._switch_attempts = 0
        self._ever_available = False
        self._exhausted = False
        self._decision.reset()
        self._decision.record_load_start()
        self._restart_monitor()
        log.info(
            "failover_initialized",
            candidates=len(self._candidates),
            current=current.display_name if current else None,
        )

    def start(self) -> None:
        if self._player is None:
            raise RuntimeError("LiveFailover.initialize() must be called first")
        if self.is_running:
            return
        self._exhausted = False
        self._task = asyncio.create_task(self._run())
        log.info("failover_started", poll_interval=self._poll_interval)

    async def stop(self) -> None:
        """Cancel the poll loop. In-flight probes keep running."""
        task = self._task
        self._task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        log.info("failover_stopped")

    async def destroy(self) -> None:
        await self.stop()
        self._executor.destroy()
        self._handlers.clear()
        self._player = None
        log.info("failover_destroyed")

    def reset(self) -> None:
        """Forget tried sources and attempts (e.g. before a manual retry)."""
        self._tried.clear()
        if self._current is not None:
            self._mark_tried(self._current)
        self._switch_attempts = 0
        self._exhausted = False
        self._decision.reset()
        self._decision.record_load_start()
        log.info("failover_reset")

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event: FailoverEventName, handler: EventHandler) -> None:
        handlers = self._handlers.setdefault(event, [])
        if handler not in handlers:
            handlers.append(handler)

    def off(self, event: FailoverEventName, handler: EventHandler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    async def _emit(self, event: FailoverEventName, payload: Any) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                log.error("failover_handler_error", event=event, exc_info=True)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    async def tick(self) -> bool:
        """One poll step. Returns True when a switch was attempted."""
        if self._player is None or self._exhausted:
            return False
        if self._in_tick or self._executor.is_switching:
            return False

        self._in_tick = True
        try:
            if not self._monitor.is_loading_timeout():
                return False
            await self._refresh_backup_count()
            if not self._decision.should_switch(True, False):
                return False
            await self._failover("loading_timeout", enforce_limit=True)
            return True
        finally:
            self._in_tick = False

    async def report_error(self, error_kind: str | None = None, *, fatal: bool = False) -> bool:
        """Count an error on the current source; fatal errors may switch at once."""
        self._decision.record_error()
        if self._current is not None and error_kind:
            await self._store.record(str(self._current.episode_url), False, 0.0, error_kind)
        log.debug("source_error_reported", error_kind=error_kind, fatal=fatal)

        if not fatal or self._player is None or self._executor.is_switching:
            return False
        if not self._decision.should_switch(True, True):
            return False
        return await self._failover("fatal_error", enforce_limit=True)

    async def manual_switch(self, target: SourceCandidate | None = None) -> bool:
        """User-requested switch, to *target* or to the best untried candidate."""
        if self._player is None:
            log.error("manual_switch_without_player")
            return False
        if self._executor.is_switching:
            log.warning("manual_switch_while_switching")
            return False
        return await self._failover("manual", target=target, enforce_limit=False)

    def mark_playing(self) -> None:
        """Tell the loop the current source is playing fine."""
        self._ever_available = True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        try:
            while not self._exhausted:
                try:
                    await self.tick()
                except Exception:
                    log.error("failover_tick_error", exc_info=True)
                await asyncio.sleep(self._poll_interval)
            log.info("failover_loop_finished", reason="sources_exhausted")
        except asyncio.CancelledError:
            log.info("failover_loop_cancelled")
            raise

    async def _failover(
        self,
        reason: str,
        *,
        target: SourceCandidate | None = None,
        enforce_limit: bool,
    ) -> bool:
        auto = target is None
        while True:
            if enforce_limit and self._switch_attempts >= self._max_attempts:
                log.error("max_switch_attempts_reached", attempts=self._switch_attempts)
                await self._all_sources_failed()
                return False

            if target is None:
                picked = await self._selector.select_first_available(
                    self._candidates, exclude=set(self._tried)
                )
                if picked is None:
                    if auto and reason != "manual":
                        await self._all_sources_failed()
                    else:
                        log.warning("no_backup_source", reason=reason)
                    return False
                self._ever_available = True
                target = picked.candidate

            outcome = await self._perform_switch(target, reason)
            if outcome != "validation" or not auto:
                return outcome == "success"
            target = None

    async def _perform_switch(self, target: SourceCandidate, reason: str) -> str:
        player = self._player
        if player is None:
            return "failed"

        url = str(target.episode_url)
        self._switch_attempts += 1
        self._mark_tried(target)
        context = SwitchContext(
            target=target,
            reason=reason,
            current=self._current,
            player_state=self._executor.capture_player_state(player),
        )
        from_source = self._current.display_name if self._current else None
        await self._emit("switch-start", context)

        t0 = time.monotonic()
        try:
            ok = await self._executor.switch_source(context)
        except SwitchError as e:
            duration_ms = (time.monotonic() - t0) * 1000
            error_class = classify_error(e)
            detail = getattr(e, "error_kind", None) or str(e)
            await self._store.blacklist(url, f"{error_class}_error:{detail}")
            record = SwitchRecord(
                from_source=from_source,
                to_source=url,
                reason=reason,
                duration_ms=duration_ms,
                success=False,
                error_type=error_class,
                error_message=str(e),
                network_quality=self._network_quality(),
            )
            await self._ledger.record(record)
            await self._emit("switch-failed", record)
            if isinstance(e, SwitchValidationError):
                return "validation"
            return "failed"

        if not ok:
            # Executor was busy; nothing happened to the player.
            self._switch_attempts -= 1
            return "failed"

        duration_ms = (time.monotonic() - t0) * 1000
        self._current = target
        self._ever_available = True
        self._decision.record_switch()
        self._restart_monitor()
        await self._store.record(url, True, duration_ms)

        record = SwitchRecord(
            from_source=from_source,
            to_source=url,
            reason=reason,
            duration_ms=duration_ms,
            success=True,
            network_quality=self._network_quality(),
        )
        await self._ledger.record(record)
        await self._emit("switch-success", record)
        return "success"

    async def _all_sources_failed(self) -> None:
        self._exhausted = True
        eligible = await self._selector.eligible(
            self._candidates, blacklist_invalid=False
        )
        payload = AllSourcesFailed(
            tried_sources=tuple(self._tried.values()),
            switch_attempts=self._switch_attempts,
            available_sources=len(eligible),
            has_valid_sources=bool(eligible),
            fatal=not self._ever_available,
        )
        log.error(
            "all_sources_failed",
            tried=len(payload.tried_sources),
            attempts=payload.switch_attempts,
            available=payload.available_sources,
            fatal=payload.fatal,
        )
        await self._emit("all-sources-failed", payload)

    async def _refresh_backup_count(self) -> None:
        eligible = await self._selector.eligible(
            self._candidates, exclude=set(self._tried), blacklist_invalid=False
        )
        self._decision.update_available_backup_count(len(eligible))

    def _mark_tried(self, candidate: SourceCandidate) -> None:
        url = str(candidate.episode_url)
        self._tried[self._key(url)] = url

    def _network_quality(self) -> Any:
        try:
            return self._monitor.get_loading_state().network_quality
        except Exception:  # noqa: BLE001
            return None

    def _restart_monitor(self) -> None:
        restart = getattr(self._monitor, "start", None)
        if callable(restart):
            restart()

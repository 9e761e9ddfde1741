"""Performs one live source switch on the attached player."""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Callable
from typing import Any

import structlog

from switcharr.domain.entities.switching import PlayerState, SwitchContext
from switcharr.domain.errors import (
    PlayerError,
    ReadyTimeoutError,
    SwapTimeoutError,
    SwitchError,
    SwitchValidationError,
)
from switcharr.domain.ports.player import PlayerHandle
from switcharr.domain.ports.url_validator import URLValidatorPort

log = structlog.get_logger(__name__)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class SwitchExecutor:
    """Validate, swap, wait for readiness, restore state, notify.

    At most one switch runs at a time: a call while busy logs and
    returns ``False`` without touching the player.  Failures raise a
    :class:`SwitchError` subclass for the orchestrator to classify:

    - :class:`SwitchValidationError`: the target URL is unusable
    - :class:`SwapTimeoutError` / :class:`PlayerError`: the player refused
    - :class:`ReadyTimeoutError`: the new source never became playable

    State restoration is best-effort per field; one failing field never
    aborts the others.
    """

    def __init__(
        self,
        validator: URLValidatorPort,
        *,
        swap_timeout: float = 2.0,
        ready_timeout: float = 5.0,
        ready_poll_interval: float = 0.1,
        ready_state_threshold: int = 2,
        success_notice_ms: int = 2000,
        error_notice_ms: int = 4000,
        info_notice_ms: int = 3000,
    ) -> None:
        self._validator = validator
        self._swap_timeout = swap_timeout
        self._ready_timeout = ready_timeout
        self._poll = ready_poll_interval
        self._ready_threshold = ready_state_threshold
        self._success_ms = success_notice_ms
        self._error_ms = error_notice_ms
        self._info_ms = info_notice_ms

        self._player: PlayerHandle | None = None
        self._busy = False
        self._cancelled = False

    @property
    def is_switching(self) -> bool:
        return self._busy

    def attach(self, player: PlayerHandle) -> None:
        self._player = player

    @staticmethod
    def capture_player_state(player: PlayerHandle) -> PlayerState:
        subtitle = getattr(player, "subtitle", None)
        volume = getattr(player, "volume", None)
        return PlayerState(
            current_time=float(getattr(player, "current_time", 0.0) or 0.0),
            volume=1.0 if volume is None else float(volume),
            playback_rate=float(getattr(player, "playback_rate", 1.0) or 1.0),
            paused=bool(getattr(player, "paused", True)),
            muted=bool(getattr(player, "muted", False)),
            subtitle_visible=bool(getattr(subtitle, "show", False)),
            subtitle_index=getattr(subtitle, "index", None),
        )

    async def switch_source(self, context: SwitchContext) -> bool:
        """Switch the attached player to ``context.target``.

        Returns ``True`` on success, ``False`` when another switch is
        already running.  Raises :class:`SwitchError` on failure.
        """
        if self._busy:
            log.warning(
                "switch_already_in_progress",
                target=context.target.display_name,
            )
            return False
        if self._player is None:
            raise PlayerError("no player attached")

        player = self._player
        self._busy = True
        self._cancelled = False
        t0 = time.monotonic()
        try:
            url = self._validate(context)
            state = context.player_state or self.capture_player_state(player)

            log.info(
                "switch_start",
                from_source=context.current.display_name if context.current else None,
                to_source=context.target.display_name,
                reason=context.reason,
            )
            await self._swap(player, url)
            await self._wait_until_ready(player)
            await self._restore(player, state)

            duration_ms = (time.monotonic() - t0) * 1000
            log.info(
                "switch_complete",
                to_source=context.target.display_name,
                duration_ms=round(duration_ms, 1),
            )
            self._notify(
                player, f"Switched to {context.target.display_name}", self._success_ms
            )
            return True
        except SwitchError as e:
            log.warning(
                "switch_failed",
                to_source=context.target.display_name,
                error_class=e.error_class,
                error=str(e),
            )
            self._notify(player, f"Source switch failed: {e}", self._error_ms)
            raise
        finally:
            self._busy = False

    def notify_info(self, message: str) -> None:
        if self._player is not None:
            self._notify(self._player, message, self._info_ms)

    def cancel(self) -> None:
        """Abort the readiness wait of the running switch, if any."""
        if self._busy:
            self._cancelled = True
            log.info("switch_cancel_requested")

    def destroy(self) -> None:
        self.cancel()
        self._player = None

    # -- steps ---------------------------------------------------------------

    def _validate(self, context: SwitchContext) -> str:
        result = self._validator.validate(context.target)
        if not result.valid or result.url is None:
            raise SwitchValidationError(
                result.message or "invalid target URL",
                error_kind=result.error_kind,
            )
        return result.url

    async def _swap(self, player: PlayerHandle, url: str) -> None:
        async def _apply() -> None:
            switch_url = getattr(player, "switch_url", None)
            if callable(switch_url):
                await _maybe_await(switch_url(url))
            else:
                player.url = url

        try:
            await asyncio.wait_for(_apply(), timeout=self._swap_timeout)
        except asyncio.TimeoutError as e:
            raise SwapTimeoutError(
                f"player did not accept the new source within {self._swap_timeout}s"
            ) from e
        except SwitchError:
            raise
        except Exception as e:  # noqa: BLE001
            raise PlayerError(f"player rejected the new source: {e}") from e

    async def _wait_until_ready(self, player: PlayerHandle) -> None:
        deadline = time.monotonic() + self._ready_timeout
        while int(getattr(player, "ready_state", self._ready_threshold)) < self._ready_threshold:
            if self._cancelled:
                raise PlayerError("switch cancelled")
            if time.monotonic() >= deadline:
                raise ReadyTimeoutError(
                    f"source not ready after {self._ready_timeout}s"
                )
            await asyncio.sleep(self._poll)

    async def _restore(self, player: PlayerHandle, state: PlayerState) -> None:
        if state.current_time > 0:
            await self._best_effort(
                "current_time", lambda: setattr(player, "current_time", state.current_time)
            )
        await self._best_effort("volume", lambda: setattr(player, "volume", state.volume))
        await self._best_effort(
            "playback_rate", lambda: setattr(player, "playback_rate", state.playback_rate)
        )
        await self._best_effort("muted", lambda: setattr(player, "muted", state.muted))

        subtitle = getattr(player, "subtitle", None)
        volume = getattr(player, "volume", None)
        if subtitle is not None:
            await self._best_effort(
                "subtitle_visible", lambda: setattr(subtitle, "show", state.subtitle_visible)
            )
            if state.subtitle_index is not None:
                await self._best_effort(
                    "subtitle_index", lambda: subtitle.switch(state.subtitle_index)
                )

        if not state.paused:
            await self._best_effort("play", player.play)

    async def _best_effort(self, field: str, apply: Callable[[], Any]) -> bool:
        try:
            await _maybe_await(apply())
        except Exception as e:  # noqa: BLE001
            log.warning("restore_field_failed", field=field, error=str(e))
            return False
        return True

    @staticmethod
    def _notify(player: PlayerHandle, message: str, duration_ms: int) -> None:
        notice = getattr(player, "notice", None)
        if notice is None:
            log.info("switch_notice", message=message)
            return
        try:
            notice.show(message, duration_ms)
        except Exception as e:  # noqa: BLE001
            log.warning("switch_notice_failed", message=message, error=str(e))

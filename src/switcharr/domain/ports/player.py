"""Ports for the media player controlled during a switch.

The player library itself is external; switcharr only needs the
handful of fields and methods below.  ``switch_url`` is optional: when a
player does not provide it the executor assigns ``url`` instead.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class SubtitleHandle(Protocol):
    show: bool
    index: int | None

    def switch(self, index: int) -> Any:
        """Activate the subtitle track at *index*."""
        ...


@runtime_checkable
class NoticeHandle(Protocol):
    def show(self, message: str, duration_ms: int) -> Any:
        """Display a short user-facing message."""
        ...


@runtime_checkable
class PlayerHandle(Protocol):
    url: str
    current_time: float
    volume: float
    playback_rate: float
    paused: bool
    muted: bool
    # HTMLMediaElement-style readiness, 0 (nothing) .. 4 (enough data).
    ready_state: int
    subtitle: SubtitleHandle | None
    notice: NoticeHandle | None

    def play(self) -> Any:
        """Resume playback; may return an awaitable."""
        ...

    def pause(self) -> Any:
        """Pause playback; may return an awaitable."""
        ...

"""Switching exceptions and error classification."""

from __future__ import annotations

import asyncio

from switcharr.domain.entities.switching import ErrorClass, URLErrorKind

class SwitcharrError(Exception):
    """Base class for all switcharr errors."""

class SwitchError(SwitcharrError):
    """Raised by the executor when a switch cannot be completed."""

    error_class: ErrorClass = "unknown"

class SwitchValidationError(SwitchError):
    """Raised when the target URL fails validation before any swap."""

    error_class: ErrorClass = "validation"

    def __init__(self, message: str, *, error_kind: URLErrorKind | None = None) -> None:
        super().__init__(message)
        self.error_kind = error_kind

class PlayerError(SwitchError):
    """Raised when the player rejects the new source."""

    error_class: ErrorClass = "player"

class SwapTimeoutError(PlayerError):
    """Raised when the player does not accept the new URL in time."""

class ReadyTimeoutError(SwitchError):
    """Raised when the new source never reaches a playable ready state."""

    error_class: ErrorClass = "network"


def classify_error(exc: BaseException) -> ErrorClass:
    """Map an exception raised during a switch to its error class."""
    if isinstance(exc, SwitchError):
        return exc.error_class
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError, OSError)):
        return "network"
    return "unknown"

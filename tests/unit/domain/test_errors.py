"""Tests for switch error classification."""

from __future__ import annotations

import asyncio

import pytest

from switcharr.domain.errors import (
    PlayerError,
    ReadyTimeoutError,
    SwapTimeoutError,
    SwitchValidationError,
    classify_error,
)


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (SwitchValidationError("no url", error_kind="missing"), "validation"),
        (PlayerError("codec"), "player"),
        (SwapTimeoutError("swap"), "player"),
        (ReadyTimeoutError("ready"), "network"),
        (asyncio.TimeoutError(), "network"),
        (ConnectionResetError(), "network"),
        (KeyError("x"), "unknown"),
    ],
)
def test_classify_error(exc: BaseException, expected: str) -> None:
    assert classify_error(exc) == expected


def test_validation_error_keeps_kind() -> None:
    err = SwitchValidationError("bad", error_kind="malformed")
    assert err.error_kind == "malformed"
    assert str(err) == "bad"

"""Shared test fixtures for the switcharr test suite."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from switcharr.domain.entities.sources import SourceCandidate

# ---------------------------------------------------------------------------
# Domain entity fixtures
# ---------------------------------------------------------------------------


def make_candidate(
    url: str | None,
    *,
    priority: int | None = None,
    name: str = "",
) -> SourceCandidate:
    """Candidate whose opaque payload is a plain dict, like a scraper row."""
    return SourceCandidate(
        source={"url": url, "name": name},
        episode_url=url,
        priority=priority,
        name=name,
    )


@pytest.fixture()
def candidates() -> list[SourceCandidate]:
    """Three distinct hosts, input order a, b, c."""
    return [
        make_candidate("https://a.example.com/ep1.m3u8", name="a"),
        make_candidate("https://b.example.com/ep1.m3u8", name="b"),
        make_candidate("https://c.example.com/ep1.m3u8", name="c"),
    ]


# ---------------------------------------------------------------------------
# Mock port fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_cache() -> AsyncMock:
    """Mock CachePort."""
    cache = AsyncMock()
    cache.get = AsyncMock(return_value=None)
    cache.set = AsyncMock()
    cache.delete = AsyncMock(return_value=True)
    cache.exists = AsyncMock(return_value=False)
    cache.clear = AsyncMock()
    cache.aclose = AsyncMock()
    return cache

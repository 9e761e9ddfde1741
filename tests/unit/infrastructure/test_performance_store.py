"""Unit tests for PerformanceStore."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from switcharr.infrastructure.persistence.performance_store import (
    STORE_KEY,
    PerformanceStore,
)

_NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
_URL = "https://cdn.example.com/ep1.m3u8"


class TestRecord:
    async def test_first_record_starts_at_sample(self) -> None:
        store = PerformanceStore()
        info = await store.record(_URL, True, 200.0, now=_NOW)

        assert info.test_count == 1
        assert info.health_score == 1.0
        assert info.average_load_time_ms == 200.0
        assert info.average_score == 100.0
        assert info.last_test.success_rate == 1.0

    async def test_running_averages(self) -> None:
        store = PerformanceStore()
        await store.record(_URL, True, 100.0, now=_NOW)
        await store.record(_URL, False, 300.0, "timeout", now=_NOW)
        info = await store.record(_URL, True, 200.0, now=_NOW)

        assert info.test_count == 3
        assert info.health_score == pytest.approx(2 / 3)
        assert info.average_load_time_ms == pytest.approx(200.0)
        assert info.error_kinds == {"timeout": 1}

    async def test_health_stays_in_unit_interval(self) -> None:
        store = PerformanceStore()
        for i in range(20):
            info = await store.record(_URL, i % 3 == 0, 10.0, now=_NOW)
            assert 0.0 <= info.health_score <= 1.0

    async def test_variants_share_history(self) -> None:
        store = PerformanceStore()
        await store.record("http://cdn.example.com/ep1.m3u8?t=1", True, 100.0, now=_NOW)

        assert store.get(_URL, now=_NOW).test_count == 1

    async def test_explicit_score_and_quality(self) -> None:
        store = PerformanceStore()
        info = await store.record(
            _URL, True, 100.0, score=64, quality="720p", success_rate=0.5, now=_NOW
        )

        assert info.average_score == 64
        assert info.last_test.quality == "720p"
        assert info.last_test.success_rate == 0.5

    async def test_ping_separate_from_load_time(self) -> None:
        store = PerformanceStore()
        info = await store.record(_URL, True, 900.0, ping_ms=120.0, now=_NOW)

        assert info.average_load_time_ms == 900.0
        assert info.last_test.ping_ms == 120.0


class TestLookup:
    async def test_entry_expires_after_ttl(self) -> None:
        store = PerformanceStore(ttl_seconds=1800)
        await store.record(_URL, True, 100.0, now=_NOW)

        assert store.get(_URL, now=_NOW + timedelta(minutes=29)) is not None
        assert store.get(_URL, now=_NOW + timedelta(minutes=31)) is None

    def test_unknown_url(self) -> None:
        assert PerformanceStore().get(_URL) is None

    async def test_should_retest(self) -> None:
        store = PerformanceStore(retest_interval_seconds=300)
        assert store.should_retest(_URL, now=_NOW) is True

        await store.record(_URL, True, 100.0, now=_NOW)
        assert store.should_retest(_URL, now=_NOW + timedelta(minutes=4)) is False
        assert store.should_retest(_URL, now=_NOW + timedelta(minutes=5)) is True

    async def test_unhealthy_source_retests_sooner(self) -> None:
        store = PerformanceStore(retest_interval_seconds=300)
        await store.record(_URL, False, 100.0, now=_NOW)

        assert store.should_retest(_URL, now=_NOW + timedelta(minutes=3)) is True


class TestBlacklist:
    async def test_blacklist_then_expire(self) -> None:
        store = PerformanceStore(blacklist_expiry_seconds=3600)
        await store.blacklist(_URL, "network_error:timeout", now=_NOW)

        assert store.is_blacklisted(_URL, now=_NOW + timedelta(minutes=59)) is True
        assert store.is_blacklisted(_URL, now=_NOW + timedelta(minutes=60)) is False
        # Expiry cleared the ban for good.
        assert store.is_blacklisted(_URL, now=_NOW + timedelta(minutes=1)) is False

    async def test_ban_outlives_lookup_ttl(self) -> None:
        store = PerformanceStore(ttl_seconds=1800, blacklist_expiry_seconds=3600)
        await store.blacklist(_URL, "player_error", now=_NOW)

        later = _NOW + timedelta(minutes=45)
        assert store.get(_URL, now=later) is None
        assert store.is_blacklisted(_URL, now=later) is True

    async def test_success_clears_blacklist(self) -> None:
        store = PerformanceStore()
        await store.blacklist(_URL, "network_error", now=_NOW)
        info = await store.record(_URL, True, 100.0, now=_NOW)

        assert info.is_available is True
        assert info.unavailable_since is None
        assert store.is_blacklisted(_URL, now=_NOW) is False

    async def test_failure_keeps_blacklist(self) -> None:
        store = PerformanceStore()
        await store.blacklist(_URL, "network_error", now=_NOW)
        await store.record(_URL, False, 100.0, now=_NOW)

        assert store.is_blacklisted(_URL, now=_NOW) is True

    async def test_validation_reason_counts(self) -> None:
        store = PerformanceStore()
        await store.blacklist(_URL, "url_validation_error:malformed", now=_NOW)
        info = await store.blacklist(_URL, "network_error", now=_NOW)

        assert info.validation_errors == 1
        assert info.unavailable_reason == "network_error"


class TestEviction:
    async def test_prunes_least_recently_used(self) -> None:
        store = PerformanceStore(max_entries=2)
        await store.record("https://a.example.com/1", True, 1.0, now=_NOW)
        await store.record("https://b.example.com/1", True, 1.0, now=_NOW + timedelta(seconds=1))
        store.touch("https://a.example.com/1", now=_NOW + timedelta(seconds=2))
        await store.record("https://c.example.com/1", True, 1.0, now=_NOW + timedelta(seconds=3))

        urls = {info.url for info in store.entries()}
        assert urls == {"https://a.example.com/1", "https://c.example.com/1"}


class TestPersistence:
    async def test_save_writes_json_map(self, mock_cache: AsyncMock) -> None:
        store = PerformanceStore(mock_cache, autosave=False)
        await store.record(_URL, True, 120.0, now=_NOW)
        await store.save()

        key, payload = mock_cache.set.await_args.args
        assert key == STORE_KEY
        data = json.loads(payload)
        assert len(data) == 1
        assert next(iter(data.values()))["url"] == _URL

    async def test_autosave_on_record(self, mock_cache: AsyncMock) -> None:
        store = PerformanceStore(mock_cache)
        await store.record(_URL, True, 120.0, now=_NOW)

        mock_cache.set.assert_awaited_once()

    async def test_load_restores_entries(self, mock_cache: AsyncMock) -> None:
        source = PerformanceStore(mock_cache, autosave=False)
        await source.record(_URL, True, 120.0, quality="1080p", now=_NOW)
        await source.blacklist("https://bad.example.com/x", "player_error", now=_NOW)
        await source.save()
        mock_cache.get.return_value = mock_cache.set.await_args.args[1]

        target = PerformanceStore(mock_cache)
        assert await target.load() == 2
        info = target.get(_URL, now=_NOW)
        assert info.last_test.quality == "1080p"
        assert info.updated_at == _NOW
        assert target.is_blacklisted("https://bad.example.com/x", now=_NOW) is True

    async def test_load_corrupt_payload(self, mock_cache: AsyncMock) -> None:
        mock_cache.get.return_value = "{not json"
        store = PerformanceStore(mock_cache)

        assert await store.load() == 0
        assert len(store) == 0

    async def test_no_cache_is_memory_only(self) -> None:
        store = PerformanceStore()
        await store.record(_URL, True, 1.0)

        assert await store.load() == 0
        await store.save()

    async def test_export_ranked_by_score(self) -> None:
        store = PerformanceStore()
        await store.record("https://a.example.com/1", False, 1.0, now=_NOW)
        await store.record("https://b.example.com/1", True, 1.0, now=_NOW)

        assert [row["url"] for row in store.export()] == [
            "https://b.example.com/1",
            "https://a.example.com/1",
        ]

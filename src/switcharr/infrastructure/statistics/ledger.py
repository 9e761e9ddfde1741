"""Bounded switch history with per-source rollups."""

from __future__ import annotations

import json
from collections import deque
from datetime import datetime
from typing import Any

import structlog

from switcharr.domain.entities.switching import SourceStats, SwitchRecord
from switcharr.domain.ports.cache import CachePort

log = structlog.get_logger(__name__)

HISTORY_KEY: str = "switcharr:switch_history"

DEFAULT_MAX_HISTORY: int = 100


def _serialize_record(record: SwitchRecord) -> dict:
    return {
        "timestamp": record.timestamp.isoformat(),
        "from_source": record.from_source,
        "to_source": record.to_source,
        "reason": record.reason,
        "duration_ms": record.duration_ms,
        "success": record.success,
        "error_type": record.error_type,
        "error_message": record.error_message,
        "network_quality": record.network_quality,
    }


def _deserialize_record(data: dict) -> SwitchRecord:
    return SwitchRecord(
        timestamp=datetime.fromisoformat(data["timestamp"]),
        from_source=data["from_source"],
        to_source=data["to_source"],
        reason=data["reason"],
        duration_ms=data["duration_ms"],
        success=data["success"],
        error_type=data.get("error_type"),
        error_message=data.get("error_message"),
        network_quality=data.get("network_quality"),
    )


def _serialize_stats(stats: SourceStats) -> dict:
    return {
        "source": stats.source,
        "attempts": stats.attempts,
        "successes": stats.successes,
        "failures": stats.failures,
        "average_load_time_ms": stats.average_load_time_ms,
        "last_used": stats.last_used.isoformat() if stats.last_used else None,
        "error_reasons": stats.error_reasons,
    }


def _deserialize_stats(data: dict) -> SourceStats:
    last_used = data.get("last_used")
    return SourceStats(
        source=data["source"],
        attempts=data["attempts"],
        successes=data["successes"],
        failures=data["failures"],
        average_load_time_ms=data["average_load_time_ms"],
        last_used=datetime.fromisoformat(last_used) if last_used else None,
        error_reasons=dict(data.get("error_reasons", {})),
    )


class StatisticsLedger:
    """Ring buffer of the last ``max_history`` SwitchRecords.

    Per-target rollups live outside the ring, so they keep counting
    after old records fall off the buffer.  Persisted (optionally) as one
    JSON document under ``HISTORY_KEY``.
    """

    def __init__(
        self,
        cache: CachePort | None = None,
        *,
        max_history: int = DEFAULT_MAX_HISTORY,
        persist_ttl_days: int = 30,
        autosave: bool = True,
    ) -> None:
        self.cache = cache
        self._history: deque[SwitchRecord] = deque(maxlen=max_history)
        self._stats: dict[str, SourceStats] = {}
        self._persist_ttl = persist_ttl_days * 86_400
        self._autosave = autosave and cache is not None

    def __len__(self) -> int:
        return len(self._history)

    async def record(self, record: SwitchRecord) -> None:
        self._history.append(record)

        stats = self._stats.get(record.to_source)
        if stats is None:
            stats = self._stats[record.to_source] = SourceStats(source=record.to_source)
        stats.attempts += 1
        stats.average_load_time_ms = (
            stats.average_load_time_ms * (stats.attempts - 1) + record.duration_ms
        ) / stats.attempts
        stats.last_used = record.timestamp
        if record.success:
            stats.successes += 1
        else:
            stats.failures += 1
            reason = record.error_message or record.error_type or "unknown"
            stats.error_reasons[reason] = stats.error_reasons.get(reason, 0) + 1

        log.debug(
            "switch_recorded",
            to_source=record.to_source,
            success=record.success,
            reason=record.reason,
            duration_ms=round(record.duration_ms, 1),
        )
        if self._autosave:
            await self.save()

    # -- queries -------------------------------------------------------------

    def history(self, limit: int | None = None) -> list[SwitchRecord]:
        """Records oldest first; *limit* keeps only the most recent ones."""
        records = list(self._history)
        if limit is not None:
            return records[-limit:] if limit > 0 else []
        return records

    def failed_switches(self) -> list[SwitchRecord]:
        return [r for r in self._history if not r.success]

    def source_stats(self, source: str) -> SourceStats | None:
        return self._stats.get(source)

    def all_source_stats(self) -> list[SourceStats]:
        return list(self._stats.values())

    def overall_success_rate(self) -> float:
        if not self._history:
            return 0.0
        return sum(1 for r in self._history if r.success) / len(self._history)

    def average_switch_duration(self) -> float:
        if not self._history:
            return 0.0
        return sum(r.duration_ms for r in self._history) / len(self._history)

    def reason_histogram(self) -> dict[str, int]:
        histogram: dict[str, int] = {}
        for r in self._history:
            histogram[r.reason] = histogram.get(r.reason, 0) + 1
        return histogram

    def top_failing_sources(self, n: int = 5) -> list[SourceStats]:
        failing = [s for s in self._stats.values() if s.failures > 0]
        failing.sort(key=lambda s: (-s.failures, s.success_rate))
        return failing[:n]

    def export(self) -> dict[str, Any]:
        """Plain-data summary (CLI output, diagnostics)."""
        return {
            "total_switches": len(self._history),
            "overall_success_rate": self.overall_success_rate(),
            "average_switch_duration_ms": self.average_switch_duration(),
            "reasons": self.reason_histogram(),
            "top_failing_sources": [
                _serialize_stats(s) for s in self.top_failing_sources()
            ],
            "sources": {
                name: _serialize_stats(s) for name, s in self._stats.items()
            },
            "history": [_serialize_record(r) for r in self._history],
        }

    def clear(self) -> None:
        self._history.clear()
        self._stats.clear()

    # -- persistence -----------------------------------------------------------

    async def load(self) -> int:
        if self.cache is None:
            return 0
        data = await self.cache.get(HISTORY_KEY)
        if data is None:
            return 0
        try:
            raw = json.loads(data)
            records = [_deserialize_record(r) for r in raw["records"]]
            stats = {s["source"]: _deserialize_stats(s) for s in raw["stats"]}
        except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
            log.error("switch_history_deserialize_error", error=str(e))
            return 0

        self._history.clear()
        self._history.extend(records)
        self._stats = stats
        log.info("switch_history_loaded", records=len(self._history))
        return len(self._history)

    async def save(self) -> None:
        if self.cache is None:
            return
        payload = json.dumps(
            {
                "records": [_serialize_record(r) for r in self._history],
                "stats": [_serialize_stats(s) for s in self._stats.values()],
            }
        )
        await self.cache.set(HISTORY_KEY, payload, ttl=self._persist_ttl)

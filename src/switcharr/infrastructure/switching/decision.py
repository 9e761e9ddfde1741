"""Gate deciding *when* a live failover may happen.

All timestamps come from ``time.monotonic``.  A timestamp that was never
set counts as infinitely long ago, so the very first stall is not held
back by cooldown or minimum-attempt time.  The forced-timeout path needs
a recorded load start.
"""

from __future__ import annotations

import math
import time

import structlog

from switcharr.domain.entities.switching import SwitchConditions

log = structlog.get_logger(__name__)


class SwitchDecisionMaker:
    """Cooldown / error-count / backup-availability state machine.

    ``should_switch`` answers True when:

    - the error is fatal (and fatal errors switch immediately), or
    - the load has been stalled for at least ``force_timeout_seconds``
      (ignores every other gate, including backup availability), or
    - every gate holds: stalled, cooldown elapsed, minimum attempt time
      elapsed, error threshold reached, at least one backup.

    Thread-safety note: not thread-safe; safe for single-threaded asyncio.
    """

    def __init__(
        self,
        *,
        cooldown_seconds: float = 10.0,
        min_attempt_seconds: float = 5.0,
        error_threshold: int = 3,
        force_timeout_seconds: float = 6.0,
        fatal_error_immediate_switch: bool = True,
    ) -> None:
        self._cooldown = cooldown_seconds
        self._min_attempt = min_attempt_seconds
        self._error_threshold = error_threshold
        self._force_timeout = force_timeout_seconds
        self._fatal_immediate = fatal_error_immediate_switch

        self._last_switch_time: float | None = None
        self._load_start_time: float | None = None
        self._error_count = 0
        self._available_backups = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def error_count(self) -> int:
        return self._error_count

    @property
    def available_backup_count(self) -> int:
        return self._available_backups

    def should_switch(self, is_timeout: bool, is_fatal: bool = False) -> bool:
        conditions = self.conditions(is_timeout, is_fatal)

        if conditions.is_fatal and self._fatal_immediate:
            log.info("switch_decision", decision=True, cause="fatal_error")
            return True

        if conditions.forced:
            log.info(
                "switch_decision",
                decision=True,
                cause="force_timeout",
                backups=conditions.available_backup_count,
            )
            return True

        failed = conditions.failed
        if failed:
            log.debug("switch_decision", decision=False, failed_conditions=failed)
            return False

        log.info(
            "switch_decision",
            decision=True,
            cause="conditions_met",
            errors=conditions.error_count,
        )
        return True

    def conditions(self, is_timeout: bool, is_fatal: bool = False) -> SwitchConditions:
        now = time.monotonic()
        since_load = self._elapsed(self._load_start_time, now)
        return SwitchConditions(
            is_timeout=is_timeout,
            is_fatal=is_fatal,
            forced=(
                is_timeout
                and self._load_start_time is not None
                and since_load >= self._force_timeout
            ),
            cooldown_passed=self._elapsed(self._last_switch_time, now) >= self._cooldown,
            min_attempt_passed=since_load >= self._min_attempt,
            error_threshold_reached=self._error_count >= self._error_threshold,
            has_backups=self._available_backups > 0,
            error_count=self._error_count,
            available_backup_count=self._available_backups,
        )

    def record_switch(self) -> None:
        """A switch happened: restart cooldown and the new source's attempt."""
        now = time.monotonic()
        self._last_switch_time = now
        self._load_start_time = now
        self._error_count = 0

    def record_load_start(self) -> None:
        self._load_start_time = time.monotonic()

    def record_error(self) -> None:
        self._error_count += 1

    def update_available_backup_count(self, count: int) -> None:
        self._available_backups = max(0, count)

    def cooldown_remaining(self) -> float:
        """Seconds until the cooldown gate opens (0 when open)."""
        elapsed = self._elapsed(self._last_switch_time, time.monotonic())
        return max(0.0, self._cooldown - elapsed)

    def min_attempt_remaining(self) -> float:
        elapsed = self._elapsed(self._load_start_time, time.monotonic())
        return max(0.0, self._min_attempt - elapsed)

    def reset(self) -> None:
        self._last_switch_time = None
        self._load_start_time = None
        self._error_count = 0
        self._available_backups = 0

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _elapsed(since: float | None, now: float) -> float:
        if since is None:
            return math.inf
        return now - since

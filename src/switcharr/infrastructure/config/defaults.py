"""Hardcoded default configuration values."""

from __future__ import annotations

from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {
    "app_name": "switcharr",
    "environment": "dev",
    "http": {
        "timeout_seconds": 10.0,
        "follow_redirects": True,
        "user_agent": "Switcharr/0.1.0",
    },
    "logging": {
        "level": "INFO",
        "format": None,  # Derived from environment in schema.py
    },
    "cache": {
        "backend": "diskcache",
        "dir": "./.cache/switcharr",
        "redis_url": "redis://localhost:6379/0",
        "persist_ttl_days": 30,
    },
    "store": {
        "ttl_seconds": 1800,
        "max_entries": 1000,
        "blacklist_expiry_seconds": 3600,
        "retest_interval_seconds": 300,
    },
    "prober": {
        "quick_timeout_seconds": 2.0,
        "deep_timeout_seconds": 5.0,
        "freshness_seconds": 300,
        "deep_probe_enabled": False,
        "deep_probe_threshold": 80,
        "deep_probe_bytes": 10_240,
    },
    "scheduler": {
        "max_concurrency": 6,
        "early_termination": True,
        "min_available_sources": 3,
        "mode": "balanced",
    },
    "switching": {
        "cooldown_seconds": 10.0,
        "min_attempt_seconds": 5.0,
        "error_threshold": 3,
        "force_timeout_seconds": 6.0,
        "fatal_error_immediate_switch": True,
        "max_switch_attempts": 5,
        "poll_interval_seconds": 1.0,
        "swap_timeout_seconds": 2.0,
        "ready_timeout_seconds": 5.0,
    },
    "statistics": {
        "max_history": 100,
    },
    "selection": {
        "default_priority": 50,
        "advanced_dedup": False,
    },
}

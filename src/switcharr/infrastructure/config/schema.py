"""Pydantic configuration models with validation."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import (
    AliasChoices,
    AliasPath,
    BaseModel,
    Field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from switcharr.domain.entities.sources import ProbeMode, ScheduleOptions

Environment = Literal["dev", "test", "prod"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console"]
CacheBackendName = Literal["memory", "diskcache", "redis"]


def _normalize_path(value: Any) -> Path:
    """
    Normalize a path-like value without causing filesystem side-effects.

    This function MUST NOT create directories or files.
    """
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise TypeError(f"Expected path-like value, got: {type(value)!r}")


def _positive(name: str, v: float) -> float:
    if v <= 0:
        raise ValueError(f"{name} must be > 0")
    return v


class CacheConfig(BaseModel):
    """Where the performance store and the switch history are persisted."""

    backend: CacheBackendName = Field(
        default="diskcache",
        description="'memory' (no persistence), 'diskcache' (SQLite) or 'redis'.",
    )
    directory: Path = Field(
        default=Path("./.cache/switcharr"),
        validation_alias=AliasChoices("directory", "dir"),
        description="Diskcache directory (only when backend=diskcache).",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL (only when backend=redis).",
    )
    persist_ttl_days: int = Field(
        default=30,
        description="How long persisted state survives without being rewritten.",
    )

    @field_validator("directory", mode="before")
    @classmethod
    def _validate_directory(cls, v: Any) -> Path:
        return _normalize_path(v)

    @field_validator("persist_ttl_days")
    @classmethod
    def _validate_persist_ttl(cls, v: int) -> int:
        return int(_positive("persist_ttl_days", v))

    @property
    def persist_ttl_seconds(self) -> int:
        return self.persist_ttl_days * 86_400


class StoreConfig(BaseModel):
    """Performance store retention and blacklist policy."""

    ttl_seconds: float = Field(
        default=1800.0, description="Entries older than this are ignored on lookup."
    )
    max_entries: int = Field(
        default=1000, description="Oldest-used entries are pruned above this count."
    )
    blacklist_expiry_seconds: float = Field(
        default=3600.0, description="Blacklisted sources become eligible again after this."
    )
    retest_interval_seconds: float = Field(
        default=300.0, description="Minimum gap between network tests of one source."
    )

    @field_validator("ttl_seconds", "blacklist_expiry_seconds", "max_entries")
    @classmethod
    def _validate_positive(cls, v: float, info: Any) -> float:
        return _positive(info.field_name, v)


class ProberConfig(BaseModel):
    """Multi-layer availability probing."""

    quick_timeout_seconds: float = Field(default=2.0, description="Layer 2 timeout.")
    deep_timeout_seconds: float = Field(default=5.0, description="Layer 3 timeout.")
    freshness_seconds: float = Field(
        default=300.0, description="Cached verdicts younger than this skip the network."
    )
    deep_probe_enabled: bool = Field(
        default=False, description="Run the ranged-download bandwidth probe."
    )
    deep_probe_threshold: int = Field(
        default=80, description="Minimum candidate priority that gets a deep probe."
    )
    deep_probe_bytes: int = Field(
        default=10_240, description="Bytes read by the deep probe."
    )

    @field_validator("quick_timeout_seconds", "deep_timeout_seconds", "deep_probe_bytes")
    @classmethod
    def _validate_positive(cls, v: float, info: Any) -> float:
        return _positive(info.field_name, v)


class SchedulerConfig(BaseModel):
    """Default options of a progressive probing run."""

    max_concurrency: int = Field(default=6, description="Probes in flight at once.")
    early_termination: bool = Field(default=True)
    min_available_sources: int = Field(
        default=3, description="Balanced mode stops once this many sources answered."
    )
    mode: ProbeMode = Field(default="balanced")

    @field_validator("max_concurrency", "min_available_sources")
    @classmethod
    def _validate_positive(cls, v: int, info: Any) -> int:
        return int(_positive(info.field_name, v))

    def to_options(self) -> ScheduleOptions:
        return ScheduleOptions(
            max_concurrency=self.max_concurrency,
            early_termination=self.early_termination,
            min_available_sources=self.min_available_sources,
            mode=self.mode,
        )


class SwitchingConfig(BaseModel):
    """Live failover gates and switch execution timeouts."""

    cooldown_seconds: float = Field(default=10.0)
    min_attempt_seconds: float = Field(default=5.0)
    error_threshold: int = Field(default=3)
    force_timeout_seconds: float = Field(default=6.0)
    fatal_error_immediate_switch: bool = Field(default=True)
    max_switch_attempts: int = Field(default=5)
    poll_interval_seconds: float = Field(default=1.0)
    swap_timeout_seconds: float = Field(default=2.0)
    ready_timeout_seconds: float = Field(default=5.0)

    @field_validator(
        "error_threshold",
        "force_timeout_seconds",
        "max_switch_attempts",
        "poll_interval_seconds",
        "swap_timeout_seconds",
        "ready_timeout_seconds",
    )
    @classmethod
    def _validate_positive(cls, v: float, info: Any) -> float:
        return _positive(info.field_name, v)

    @field_validator("cooldown_seconds", "min_attempt_seconds")
    @classmethod
    def _validate_non_negative(cls, v: float, info: Any) -> float:
        if v < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return v


class StatisticsConfig(BaseModel):
    max_history: int = Field(default=100, description="Switch records kept (FIFO).")

    @field_validator("max_history")
    @classmethod
    def _validate_max_history(cls, v: int) -> int:
        return int(_positive("max_history", v))


class SelectionConfig(BaseModel):
    default_priority: int = Field(
        default=50, description="Base priority of candidates without an explicit one."
    )
    advanced_dedup: bool = Field(
        default=False, description="Also collapse candidates sharing a base domain."
    )


class AppConfig(BaseModel):
    """
    Canonical application configuration (validated, final).

    Note:
    - YAML is expected to be sectioned (http/logging/cache/store/prober/...).
    - Environment variables are handled by EnvOverrides(BaseSettings) to allow strict
      precedence control (defaults < YAML < ENV < CLI) in load.py.
    """

    app_name: str = Field(default="switcharr", description="Application name.")
    environment: Environment = Field(
        default="dev",
        description="Runtime environment (affects defaults like log format).",
    )

    # HTTP client shared by the prober (YAML section: http.*)
    http_timeout_seconds: float = Field(
        default=10.0,
        validation_alias=AliasChoices(
            "http_timeout_seconds",
            AliasPath("http", "timeout_seconds"),
        ),
        description="Client-wide timeout; probe layers apply tighter ones.",
    )
    http_follow_redirects: bool = Field(
        default=True,
        validation_alias=AliasChoices(
            "http_follow_redirects",
            AliasPath("http", "follow_redirects"),
        ),
    )
    http_user_agent: str = Field(
        default="Switcharr/0.1.0",
        validation_alias=AliasChoices(
            "http_user_agent",
            AliasPath("http", "user_agent"),
        ),
        description="User-Agent for probe requests.",
    )

    # Logging (YAML section: logging.*)
    log_level: LogLevel = Field(
        default="INFO",
        validation_alias=AliasChoices(
            "log_level",
            AliasPath("logging", "level"),
        ),
    )
    log_format: Optional[LogFormat] = Field(
        default=None,
        validation_alias=AliasChoices(
            "log_format",
            AliasPath("logging", "format"),
        ),
        description=(
            "Log renderer format (console/json). If unset, derived from environment."
        ),
    )

    cache: CacheConfig = Field(default_factory=CacheConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    prober: ProberConfig = Field(default_factory=ProberConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    switching: SwitchingConfig = Field(default_factory=SwitchingConfig)
    statistics: StatisticsConfig = Field(default_factory=StatisticsConfig)
    selection: SelectionConfig = Field(default_factory=SelectionConfig)

    @field_validator("http_timeout_seconds")
    @classmethod
    def _validate_http_timeout(cls, v: float) -> float:
        return _positive("http_timeout_seconds", v)

    @model_validator(mode="after")
    def _derive_defaults(self) -> "AppConfig":
        # Default log format: console in dev/test, json in prod.
        if self.log_format is None:
            self.log_format = "json" if self.environment == "prod" else "console"
        return self

    def to_sectioned_dict(self) -> dict[str, Any]:
        """Dump configuration in the sectioned shape used by config.yaml."""
        return {
            "app_name": self.app_name,
            "environment": self.environment,
            "http": {
                "timeout_seconds": self.http_timeout_seconds,
                "follow_redirects": self.http_follow_redirects,
                "user_agent": self.http_user_agent,
            },
            "logging": {"level": self.log_level, "format": self.log_format},
            "cache": {
                "backend": self.cache.backend,
                "dir": str(self.cache.directory),
                "redis_url": self.cache.redis_url,
                "persist_ttl_days": self.cache.persist_ttl_days,
            },
            "store": self.store.model_dump(),
            "prober": self.prober.model_dump(),
            "scheduler": self.scheduler.model_dump(),
            "switching": self.switching.model_dump(),
            "statistics": self.statistics.model_dump(),
            "selection": self.selection.model_dump(),
        }


class EnvOverrides(BaseSettings):
    """
    Environment-variable overrides (all optional).

    load.py reads SWITCHARR_* variables, keeps the ones that are set,
    maps them onto their section and merges them over YAML/defaults.

    Supported env var examples (flat, explicit):
    - SWITCHARR_LOG_LEVEL
    - SWITCHARR_CACHE_BACKEND
    - SWITCHARR_PROBE_MODE
    - SWITCHARR_MAX_CONCURRENCY
    """

    model_config = SettingsConfigDict(
        env_prefix="SWITCHARR_",
        extra="ignore",
        case_sensitive=False,
    )

    app_name: Optional[str] = None
    environment: Optional[Environment] = None

    http_timeout_seconds: Optional[float] = None
    http_follow_redirects: Optional[bool] = None
    http_user_agent: Optional[str] = None

    log_level: Optional[LogLevel] = None
    log_format: Optional[LogFormat] = None

    cache_backend: Optional[CacheBackendName] = None
    cache_dir: Optional[Path] = None
    redis_url: Optional[str] = None

    store_ttl_seconds: Optional[float] = None
    blacklist_expiry_seconds: Optional[float] = None

    quick_timeout_seconds: Optional[float] = None
    deep_probe_enabled: Optional[bool] = None

    probe_mode: Optional[ProbeMode] = None
    max_concurrency: Optional[int] = None

    cooldown_seconds: Optional[float] = None
    max_switch_attempts: Optional[int] = None

    @field_validator("cache_dir", mode="before")
    @classmethod
    def _validate_paths(cls, v: Any) -> Any:
        if v is None:
            return None
        return _normalize_path(v)

    def to_update_dict(self) -> dict[str, Any]:
        """Return only values that were actually provided (non-None), for merging."""
        return self.model_dump(exclude_none=True)

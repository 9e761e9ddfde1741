from .sources import (
    CacheCheckResult,
    CachedSourceInfo,
    DeduplicationStats,
    DeepProbeResult,
    LayeredTestResult,
    PriorityScore,
    ProbeMode,
    QualityTier,
    QuickProbeResult,
    ScheduleOptions,
    SourceCandidate,
    SourceResult,
    SourceTestResult,
)
from .switching import (
    AllSourcesFailed,
    ErrorClass,
    FailoverEventName,
    LoadingStage,
    NetworkQuality,
    PlayerState,
    SourceStats,
    SwitchConditions,
    SwitchContext,
    SwitchRecord,
    URLErrorKind,
    URLValidationResult,
)

__all__ = [
    "AllSourcesFailed",
    "CacheCheckResult",
    "CachedSourceInfo",
    "DeduplicationStats",
    "DeepProbeResult",
    "ErrorClass",
    "FailoverEventName",
    "LayeredTestResult",
    "LoadingStage",
    "NetworkQuality",
    "PlayerState",
    "PriorityScore",
    "ProbeMode",
    "QualityTier",
    "QuickProbeResult",
    "ScheduleOptions",
    "SourceCandidate",
    "SourceResult",
    "SourceStats",
    "SourceTestResult",
    "SwitchConditions",
    "SwitchContext",
    "SwitchRecord",
    "URLErrorKind",
    "URLValidationResult",
]

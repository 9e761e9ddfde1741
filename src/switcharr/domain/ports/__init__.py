from .cache import CachePort
from .loading_monitor import LoadingMonitorPort, LoadingState
from .player import NoticeHandle, PlayerHandle, SubtitleHandle
from .url_validator import URLValidatorPort

__all__ = [
    "CachePort",
    "LoadingMonitorPort",
    "LoadingState",
    "NoticeHandle",
    "PlayerHandle",
    "SubtitleHandle",
    "URLValidatorPort",
]

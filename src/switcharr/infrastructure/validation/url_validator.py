"""Syntactic validation of candidate playback URLs."""

from __future__ import annotations

from urllib.parse import urlsplit

import structlog

from switcharr.domain.entities.sources import SourceCandidate
from switcharr.domain.entities.switching import URLErrorKind, URLValidationResult

log = structlog.get_logger(__name__)

MAX_URL_LENGTH: int = 2048

_ALLOWED_SCHEMES: frozenset[str] = frozenset({"http", "https", "blob"})
_HOST_REQUIRED: frozenset[str] = frozenset({"http", "https"})


def _invalid(kind: URLErrorKind, message: str, url: str | None = None) -> URLValidationResult:
    log.debug("url_invalid", error_kind=kind, message=message)
    return URLValidationResult(valid=False, url=url, error_kind=kind, message=message)


class SourceURLValidator:
    """Classifies a candidate URL without touching the network.

    Error kinds:
    - ``missing``: no candidate or no URL at all
    - ``invalid_type``: URL is not a string
    - ``empty``: blank string
    - ``malformed``: too long, unparseable, unsupported scheme or no host
    """

    def __init__(
        self,
        *,
        max_length: int = MAX_URL_LENGTH,
        allowed_schemes: frozenset[str] = _ALLOWED_SCHEMES,
    ) -> None:
        self._max_length = max_length
        self._schemes = allowed_schemes

    def validate(self, candidate: SourceCandidate | None) -> URLValidationResult:
        if candidate is None:
            return _invalid("missing", "candidate is missing")
        return self.validate_url(getattr(candidate, "episode_url", None))

    def validate_url(self, url: object) -> URLValidationResult:
        if url is None:
            return _invalid("missing", "episode URL is missing")
        if not isinstance(url, str):
            return _invalid(
                "invalid_type", f"episode URL must be a string, got {type(url).__name__}"
            )

        stripped = url.strip()
        if not stripped:
            return _invalid("empty", "episode URL is empty")
        if len(stripped) > self._max_length:
            return _invalid(
                "malformed",
                f"episode URL exceeds {self._max_length} characters",
                stripped,
            )

        try:
            parts = urlsplit(stripped)
            host = parts.hostname
        except ValueError as e:
            return _invalid("malformed", f"unparseable URL: {e}", stripped)

        scheme = parts.scheme.lower()
        if scheme not in self._schemes:
            return _invalid(
                "malformed", f"unsupported scheme {scheme or '(none)'!r}", stripped
            )
        if scheme in _HOST_REQUIRED and not host:
            return _invalid("malformed", "URL has no host", stripped)

        return URLValidationResult(valid=True, url=stripped)

    @staticmethod
    def display_name(url: str) -> str:
        """Short label for a URL: its host, or a truncated form."""
        try:
            host = urlsplit(url).hostname
        except ValueError:
            host = None
        if host:
            return host
        return url if len(url) <= 50 else f"{url[:47]}..."

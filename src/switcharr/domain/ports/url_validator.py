"""Port for validating a candidate's playback URL before use."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from switcharr.domain.entities.sources import SourceCandidate
from switcharr.domain.entities.switching import URLValidationResult


@runtime_checkable
class URLValidatorPort(Protocol):
    def validate(self, candidate: SourceCandidate) -> URLValidationResult:
        """Classify the candidate's URL as valid or as missing/invalid_type/empty/malformed."""
        ...

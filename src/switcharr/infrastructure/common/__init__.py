"""Common infrastructure utilities."""

from __future__ import annotations

from .urls import CACHE_BUSTING_PARAMS, base_domain, normalize_url, url_key

__all__ = [
    "CACHE_BUSTING_PARAMS",
    "base_domain",
    "normalize_url",
    "url_key",
]

"""URL normalisation helpers shared by the store and the deduplicator."""

from __future__ import annotations

import hashlib
import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

# Query keys that only defeat caches and never select different media.
CACHE_BUSTING_PARAMS: frozenset[str] = frozenset(
    {"t", "r", "_", "timestamp", "random", "cache"}
)

_IPV4_RE = re.compile(r"^\d{1,3}(\.\d{1,3}){3}$")


def normalize_url(url: str) -> str:
    """Return the canonical form of *url* used for identity comparisons.

    - drops cache-busting query keys
    - upgrades ``http`` to ``https``
    - strips one trailing slash from a non-root path
    - sorts the remaining query pairs by key

    Input that does not parse as an absolute URL is returned unchanged.
    """
    try:
        parts = urlsplit(url.strip())
        # Accessing .port validates the netloc.
        _ = parts.port
    except (ValueError, AttributeError):
        return url
    if not parts.scheme or not parts.netloc:
        return url

    scheme = "https" if parts.scheme.lower() == "http" else parts.scheme.lower()

    path = parts.path
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]

    pairs = [
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if k not in CACHE_BUSTING_PARAMS
    ]
    pairs.sort(key=lambda kv: kv[0])

    return urlunsplit(
        (scheme, parts.netloc.lower(), path, urlencode(pairs), parts.fragment)
    )


def url_key(url: str) -> str:
    """Stable storage key for a URL (hash of its normalized form)."""
    return hashlib.sha256(normalize_url(url).encode()).hexdigest()[:24]


def base_domain(url: str) -> str | None:
    """Registrable-ish domain of *url*: last two labels, or the IPv4 literal.

    Returns ``None`` when no host can be extracted.
    """
    try:
        host = urlsplit(url.strip()).hostname
    except (ValueError, AttributeError):
        return None
    if not host:
        return None
    if _IPV4_RE.match(host):
        return host
    labels = host.split(".")
    return ".".join(labels[-2:])

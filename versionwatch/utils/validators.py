"""Validation helpers for tracked job URLs."""

from __future__ import annotations

from urllib.parse import urlsplit

TRACKABLE_SCHEMES = frozenset({"http", "https"})


def is_valid_url(url: str) -> bool:
    """True for absolute http(s) URLs with a host and no embedded whitespace."""
    if not url or any(char.isspace() for char in url):
        return False
    try:
        parts = urlsplit(url)
        host = parts.hostname
        parts.port  # noqa: B018 - raises ValueError for an out-of-range port
    except ValueError:
        return False
    return parts.scheme.lower() in TRACKABLE_SCHEMES and bool(host)

"""URL helpers for capture requests."""

from __future__ import annotations

import urllib.parse

HTTP_SCHEMES = ("http", "https")


def is_http_url(url: str | None) -> bool:
    if not url:
        return False
    try:
        parsed = urllib.parse.urlparse(url.strip())
    except ValueError:
        return False
    return parsed.scheme.lower() in HTTP_SCHEMES and bool(parsed.netloc)


def require_http_url(url: str | None, field_name: str) -> str:
    """Return ``url`` stripped, or raise ``ValueError`` naming ``field_name``."""

    if not is_http_url(url):
        raise ValueError(f"{field_name} must be an http(s) URL, got {url!r}")
    return (url or "").strip()


__all__ = ["is_http_url", "require_http_url"]

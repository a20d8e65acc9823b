"""Shared URL utilities — resolve goto targets and derive URL paths."""

from __future__ import annotations

from urllib.parse import urlparse


def resolve_url(base_url: str, target: str) -> str:
    """Resolve a goto target against the configured base URL.

    Root-relative paths are appended to the base URL as-is, so a base of
    ``http://localhost:8080/app`` and ``/login`` gives ``.../app/login``.
    """
    if target.startswith("/"):
        return f"{base_url.rstrip('/')}{target}"
    return target


def url_path(url: str) -> str:
    """Path component of a URL (empty for data:, about: and similar)."""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https", "file"):
        return ""
    return parsed.path

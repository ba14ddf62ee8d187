"""Utilities to normalize and sanitize window titles."""

from __future__ import annotations

import re
from typing import Optional

REDACTED = "[REDACTED]"
ELLIPSIS = "..."

_BROWSER_SUFFIXES: dict[str, tuple[str, ...]] = {
    "msedge.exe": (" - Microsoft Edge",),
    "chrome.exe": (" - Google Chrome",),
    "firefox.exe": (" - Mozilla Firefox",),
    "brave.exe": (" - Brave",),
    "opera.exe": (" - Opera",),
}


def normalize_window_title(process_name: Optional[str], window_title: Optional[str]) -> Optional[str]:
    """Remove common browser suffixes to surface tab names."""
    if not window_title:
        return None
    normalized = window_title.strip()
    if not process_name:
        return normalized or None

    suffixes = _BROWSER_SUFFIXES.get(process_name.lower())
    if suffixes:
        for suffix in suffixes:
            if normalized.endswith(suffix):
                normalized = normalized[: -len(suffix)].rstrip(" -")
                break

    normalized = _strip_tab_count(normalized)
    normalized = re.sub(r"\s{2,}", " ", normalized).strip()
    return normalized or None


_EXTRA_TAB_COUNT_PATTERN = re.compile(r"\s+and\s+\d+\s+more\s+pages?", re.IGNORECASE)


def _strip_tab_count(value: str) -> str:
    cleaned = _EXTRA_TAB_COUNT_PATTERN.sub("", value)
    return cleaned.strip(" -|")


_SENSITIVE_PATTERNS: tuple[re.Pattern[str], ...] = (
    # Windows and POSIX paths
    re.compile(r"[A-Za-z]:\\[^\\]*\\"),
    re.compile(r"/[^/]*/[^/]*/"),
    re.compile(r"https?://\S+"),
    re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
)


def redact_sensitive(value: str) -> str:
    for pattern in _SENSITIVE_PATTERNS:
        value = pattern.sub(REDACTED, value)
    return value


def sanitize_window_title(window_title: Optional[str], max_length: int) -> str:
    """Strip paths, URLs and e-mail addresses and cap the title length.

    Redaction runs before and after truncation: cutting a title can expose a
    fragment that matches a pattern the full title did not.
    """
    if not window_title:
        return ""
    sanitized = redact_sensitive(window_title)
    sanitized = _truncate(sanitized, max_length)
    sanitized = redact_sensitive(sanitized)
    return sanitized[:max_length].strip()


def _truncate(value: str, max_length: int) -> str:
    if len(value) <= max_length:
        return value
    return value[: max_length - len(ELLIPSIS)] + ELLIPSIS

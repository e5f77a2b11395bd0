"""
Human-readable formatting for sizes, timestamps and digests.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

PLACEHOLDER = "N/A"

_UNITS = (
    ("year", 365 * 86400),
    ("month", 30 * 86400),
    ("week", 7 * 86400),
    ("day", 86400),
    ("hour", 3600),
    ("minute", 60),
)


def format_size(size_bytes: int) -> str:
    """
    Format byte count as human-readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted string (e.g., "1.5 MB", "42 KB")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"
    else:
        return f"{size_bytes / (1024 * 1024 * 1024):.1f} GB"


def format_timestamp(timestamp: datetime, now: Optional[datetime] = None) -> str:
    """Relative time such as ``3 days ago`` or ``in 2 hours``."""
    now = now or datetime.now(timezone.utc)
    seconds = int((now - timestamp).total_seconds())
    past = seconds >= 0
    seconds = abs(seconds)
    if seconds < 60:
        return "just now"
    for unit, size in _UNITS:
        if seconds >= size:
            count = seconds // size
            label = f"{count} {unit}{'s' if count != 1 else ''}"
            return f"{label} ago" if past else f"in {label}"
    return "just now"


def short_digest(digest: str) -> str:
    """First 12 hex characters of a sha256 digest, for tables."""
    if digest == PLACEHOLDER:
        return PLACEHOLDER
    if digest.startswith("sha256:") and len(digest) >= 19:
        return digest[7:19]
    return digest[:12]


def format_platforms(platforms: list) -> str:
    """Comma-separated list, or a count when there are more than two."""
    if not platforms:
        return PLACEHOLDER
    if len(platforms) <= 2:
        return ", ".join(platforms)
    return f"{len(platforms)} platforms"


__all__ = ["PLACEHOLDER", "format_size", "format_timestamp", "short_digest", "format_platforms"]

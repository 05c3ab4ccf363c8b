"""Shared utility functions for the upload services."""

import math
from datetime import UTC, datetime


def format_file_size(size_bytes: int) -> str:
    """Format a file size in bytes to a human-readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        Human-readable size string (e.g., "1.5 GB")
    """
    size_float = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if abs(size_float) < 1024.0:
            return f"{size_float:.1f} {unit}"
        size_float = size_float / 1024.0
    return f"{size_float:.1f} PB"


def normalize_relative_path(raw_path: str) -> str:
    """Normalize a path relative to a submission root.

    Backslashes become forward slashes; leading slashes, empty segments and
    ``.``/``..`` segments are dropped.

    Args:
        raw_path: Relative path as produced by the filesystem

    Returns:
        Forward-slash path such as ``"s01/e01.mp4"``
    """
    segments = raw_path.replace("\\", "/").split("/")
    return "/".join(segment for segment in segments if segment and segment not in (".", ".."))


def get_extension(file_path: str) -> str:
    """Get the lower-cased extension of a path without the dot ("unknown" if none)."""
    name = file_path.rsplit("/", 1)[-1]
    if "." not in name:
        return "unknown"
    return name.rsplit(".", 1)[-1].lower()


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves rounding up (0.5 -> 1)."""
    return int(math.floor(value + 0.5))


def percent(part: float, whole: float) -> int:
    """Integer percentage of ``part`` in ``whole``, clamped to 0..100."""
    if whole <= 0:
        return 0
    return max(0, min(100, round_half_up(part / whole * 100)))


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(UTC).isoformat()

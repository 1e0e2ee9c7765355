"""Utility functions for CLI output."""

import time
from typing import Optional


def format_file_size(size_bytes: int) -> str:
    """
    Format file size in bytes to human-readable format with appropriate unit.

    Uses binary units (1024-based) and automatically selects the most
    appropriate unit (B, KiB, MiB, GiB, TiB).

    Args:
        size_bytes: File size in bytes

    Returns:
        Formatted string with size and unit (e.g., "1.50 MiB", "512 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"

    units = ['KiB', 'MiB', 'GiB', 'TiB']
    size = size_bytes / 1024.0

    for unit in units:
        if size < 1024.0:
            return f"{size:.2f} {unit}"
        size /= 1024.0

    return f"{size:.2f} PiB"


def format_age(timestamp: Optional[float], now: Optional[float] = None) -> str:
    """
    Format the age of a timestamp, e.g. "3h 12m ago".

    Args:
        timestamp: Epoch seconds, or None
        now: Reference time (defaults to time.time())
    """
    if timestamp is None:
        return "never"

    seconds = int((now if now is not None else time.time()) - timestamp)
    if seconds < 0:
        return "in the future"
    if seconds < 60:
        return f"{seconds}s ago"

    minutes, seconds = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m {seconds}s ago"

    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m ago"

"""Duration formatting and clock helpers (stdlib-only)."""

from __future__ import annotations

import time


def now_ms() -> float:
    """Current wall-clock time in epoch milliseconds."""
    return time.time() * 1000


def format_duration(ms: float) -> str:
    """Human-readable duration.

    >>> format_duration(45)
    '45ms'
    >>> format_duration(1500)
    '1.5s'
    >>> format_duration(119_999)
    '2m'
    """
    if ms < 1000:
        return f"{round(ms)}ms"
    if ms < 60_000:
        seconds = round(ms / 1000, 1)
        if seconds < 60:
            return f"{seconds:.1f}s"
    # Round to whole seconds first so 59.9s rolls over into the next minute
    total_seconds = round(ms / 1000)
    minutes, seconds = divmod(total_seconds, 60)
    if seconds == 0:
        return f"{minutes}m"
    return f"{minutes}m {seconds}s"


__all__ = ["now_ms", "format_duration"]

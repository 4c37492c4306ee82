"""Timestamp formatting helpers shared by the derived views."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def _format_datetime_utc(value: datetime) -> str:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt.isoformat().replace("+00:00", "Z")


def epoch_ms_to_datetime(ms: float) -> datetime:
    return datetime.fromtimestamp(float(ms) / 1000.0, timezone.utc)


def format_iso_no_ms(ms: float) -> str:
    """ISO-8601 UTC timestamp without fractional seconds, e.g. 1970-01-01T00:00:01Z.

    Returns "" for timestamps `datetime` cannot represent.
    """
    try:
        dt = epoch_ms_to_datetime(ms)
    except (OverflowError, OSError, ValueError):
        return ""
    return _format_datetime_utc(dt)


def format_iso_label(ms: Any) -> str:
    """Label for a last-updated timestamp; "never" when missing or unrepresentable."""
    if not ms or isinstance(ms, bool) or not isinstance(ms, (int, float)):
        return "never"
    try:
        dt = epoch_ms_to_datetime(ms)
    except (OverflowError, OSError, ValueError):
        return "never"
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_elapsed(ms: float) -> str:
    """Render a duration in the coarsest unit that fits: Ns, NmNs, NhNm or NdNh."""
    total_seconds = max(0, int(ms // 1000))
    seconds = total_seconds % 60
    total_minutes = total_seconds // 60
    minutes = total_minutes % 60
    total_hours = total_minutes // 60
    hours = total_hours % 24
    days = total_hours // 24

    if days > 0:
        return f"{days}d{hours}h" if hours > 0 else f"{days}d"
    if total_hours > 0:
        return f"{total_hours}h{minutes}m" if minutes > 0 else f"{total_hours}h"
    if total_minutes > 0:
        return f"{total_minutes}m{seconds}s" if seconds > 0 else f"{total_minutes}m"
    return f"{seconds}s"


def format_timeline(start_ms: float | None, end_ms: float) -> str:
    if start_ms is None:
        return ""
    started = format_iso_no_ms(start_ms)
    if not started:
        return ""
    return f"{started}: {format_elapsed(end_ms - start_ms)}"

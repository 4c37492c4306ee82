"""Bucketed tool-call activity over a trailing window."""
from __future__ import annotations

from typing import Iterable, Optional

from ocdash import config
from ocdash.ingest.artifacts import read_all_sessions, read_messages, read_tool_parts
from ocdash.models import Message, TimeSeries, TimeSeriesSeries
from ocdash.paths import StorageRoots, get_message_dir

# Fixed series order: (id, label, tone).
SERIES_DEFINITIONS = (
    ("overall-main", "Overall", "muted"),
    ("agent:sisyphus", "Sisyphus", "teal"),
    ("agent:prometheus", "Prometheus", "red"),
    ("agent:atlas", "Atlas", "green"),
    ("background-total", "Background tasks (total)", "muted"),
)
KNOWN_AGENTS = ("sisyphus", "prometheus", "atlas")


def _bucket_count(window_ms: int, bucket_ms: int, buckets: Optional[int]) -> int:
    if buckets is not None and buckets > 0:
        return buckets
    return max(1, window_ms // bucket_ms)


def normalize_series_values(values: Optional[Iterable[object]], buckets: int) -> list[int]:
    """Coerce values to non-negative ints and pad or trim to exactly `buckets` entries."""
    normalized: list[int] = []
    for value in values or []:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value != value:
            normalized.append(0)
        else:
            normalized.append(max(0, int(value)))
    if len(normalized) >= buckets:
        return normalized[-buckets:] if buckets > 0 else []
    return [0] * (buckets - len(normalized)) + normalized


def zero_time_series(
    now_ms: float,
    window_ms: int = config.TIMESERIES_WINDOW_MS,
    bucket_ms: int = config.TIMESERIES_BUCKET_MS,
    buckets: Optional[int] = None,
) -> TimeSeries:
    count = _bucket_count(window_ms, bucket_ms, buckets)
    anchor = int(now_ms // bucket_ms) * bucket_ms
    return TimeSeries(
        windowMs=window_ms,
        bucketMs=bucket_ms,
        buckets=count,
        anchorMs=anchor,
        serverNowMs=int(now_ms),
        series=[
            TimeSeriesSeries(id=series_id, label=label, tone=tone, values=[0] * count)
            for series_id, label, tone in SERIES_DEFINITIONS
        ],
    )


def bucket_index(timestamp_ms: float, anchor_ms: int, window_ms: int, bucket_ms: int, buckets: int) -> Optional[int]:
    """Bucket for a timestamp, or None when it falls outside [anchor - window, anchor]."""
    if timestamp_ms > anchor_ms or timestamp_ms < anchor_ms - window_ms:
        return None
    index = buckets - 1 - int((anchor_ms - timestamp_ms) // bucket_ms)
    if index < 0 or index >= buckets:
        return None
    return index


def agent_series_id(agent: Optional[str]) -> Optional[str]:
    if not agent:
        return None
    name = agent.split("(", 1)[0].strip().lower()
    if name in KNOWN_AGENTS:
        return f"agent:{name}"
    return None


def _tool_event_times(storage: StorageRoots, messages: Iterable[Message]) -> list[tuple[float, Optional[str]]]:
    events: list[tuple[float, Optional[str]]] = []
    for message in messages:
        if message.createdAt is None:
            continue
        for _ in read_tool_parts(storage.part, message.id):
            events.append((message.createdAt, message.agent))
    return events


def derive_time_series_activity(
    storage: StorageRoots,
    main_session_id: Optional[str],
    now_ms: float,
    window_ms: int = config.TIMESERIES_WINDOW_MS,
    bucket_ms: int = config.TIMESERIES_BUCKET_MS,
    buckets: Optional[int] = None,
) -> TimeSeries:
    """Count tool invocations per bucket for the main session and its children.

    Main-session events land in "overall-main" and, when the owning message
    belongs to a known agent, in that agent's series. Events from child
    sessions are summed into "background-total" only.
    """
    series = zero_time_series(now_ms, window_ms, bucket_ms, buckets)
    if not main_session_id:
        return series

    by_id = {s.id: s.values for s in series.series}
    count = series.buckets
    anchor = series.anchorMs

    def _add(series_id: str, timestamp: float) -> None:
        index = bucket_index(timestamp, anchor, window_ms, bucket_ms, count)
        if index is not None:
            by_id[series_id][index] += 1

    main_messages = read_messages(get_message_dir(storage.message, main_session_id))
    for timestamp, agent in _tool_event_times(storage, main_messages):
        _add("overall-main", timestamp)
        agent_id = agent_series_id(agent)
        if agent_id:
            _add(agent_id, timestamp)

    for child in read_all_sessions(storage.session):
        if child.parentId != main_session_id:
            continue
        child_messages = read_messages(get_message_dir(storage.message, child.id))
        for timestamp, _ in _tool_event_times(storage, child_messages):
            _add("background-total", timestamp)

    return series

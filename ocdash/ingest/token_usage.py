"""Token usage per model across the main session and its linked child sessions."""
from __future__ import annotations

import math
from typing import Any, Iterable, Optional

from ocdash.ingest.artifacts import read_messages
from ocdash.model_identity import UNKNOWN_MODEL, extract_model_string
from ocdash.models import Message, TokenUsagePayload, TokenUsageRow, TokenUsageTotals
from ocdash.paths import StorageRoots, get_message_dir

TOKEN_FIELDS = ("input", "output", "reasoning", "cacheRead", "cacheWrite")


def clamp_token(value: Any) -> int | float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if not math.isfinite(value) or value < 0:
        return 0
    return value


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _message_fields(record: Any) -> tuple[str, str, dict[str, Any]]:
    if isinstance(record, Message):
        return record.role, record.id, _as_dict(record.tokens)
    if isinstance(record, dict):
        role = record.get("role")
        message_id = record.get("id")
        return (
            role.strip() if isinstance(role, str) else "",
            message_id.strip() if isinstance(message_id, str) else "",
            _as_dict(record.get("tokens")),
        )
    return "", "", {}


def message_token_counts(tokens: dict[str, Any]) -> dict[str, int | float]:
    """Clamped counters for one message, plus its total.

    The embedded total is trusted when it is a finite, non-negative number;
    otherwise the total is the sum of the five counters.
    """
    cache = _as_dict(tokens.get("cache"))
    counts: dict[str, int | float] = {
        "input": clamp_token(tokens.get("input")),
        "output": clamp_token(tokens.get("output")),
        "reasoning": clamp_token(tokens.get("reasoning")),
        "cacheRead": clamp_token(cache.get("read")),
        "cacheWrite": clamp_token(cache.get("write")),
    }
    embedded = tokens.get("total")
    if (
        not isinstance(embedded, bool)
        and isinstance(embedded, (int, float))
        and math.isfinite(embedded)
        and embedded >= 0
    ):
        counts["total"] = embedded
    else:
        counts["total"] = sum(counts[field] for field in TOKEN_FIELDS)
    return counts


def aggregate_token_usage(messages: Iterable[Any]) -> TokenUsagePayload:
    """Sum assistant token usage per "provider/model".

    Messages are deduplicated by id with the first occurrence winning;
    messages without an id are never deduplicated. Rows are ordered by total
    descending, then model ascending.
    """
    rows_by_model: dict[str, dict[str, int | float]] = {}
    seen_ids: set[str] = set()

    for record in messages:
        role, message_id, tokens = _message_fields(record)
        if role != "assistant":
            continue
        if message_id:
            if message_id in seen_ids:
                continue
            seen_ids.add(message_id)

        model = extract_model_string(record) or UNKNOWN_MODEL
        counts = message_token_counts(tokens)
        row = rows_by_model.setdefault(model, dict.fromkeys((*TOKEN_FIELDS, "total"), 0))
        for field, value in counts.items():
            row[field] += value

    ordered = sorted(rows_by_model.items(), key=lambda item: (-item[1]["total"], item[0]))
    rows = [TokenUsageRow(model=model, **counts) for model, counts in ordered]

    totals = dict.fromkeys((*TOKEN_FIELDS, "total"), 0)
    for row in rows:
        for field in totals:
            totals[field] += getattr(row, field)

    return TokenUsagePayload(rows=rows, totals=TokenUsageTotals(**totals))


def _normalize_session_ids(main_session_id: Optional[str], others: Iterable[Optional[str]]) -> list[str]:
    ids: list[str] = []
    seen: set[str] = set()
    for value in (main_session_id, *others):
        if not isinstance(value, str):
            continue
        session_id = value.strip()
        if session_id and session_id not in seen:
            seen.add(session_id)
            ids.append(session_id)
    return ids


def derive_token_usage(
    storage: StorageRoots,
    main_session_id: Optional[str],
    background_session_ids: Optional[Iterable[Optional[str]]] = None,
) -> TokenUsagePayload:
    messages: list[Message] = []
    for session_id in _normalize_session_ids(main_session_id, background_session_ids or []):
        message_dir = get_message_dir(storage.message, session_id)
        if message_dir is None:
            continue
        messages.extend(read_messages(message_dir, cap=None))
    return aggregate_token_usage(messages)

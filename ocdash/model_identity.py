"""Model identity helpers: provider/model strings taken from message records."""
from __future__ import annotations

from typing import Any, Iterable

UNKNOWN_MODEL = "unknown/unknown"


def _read_string(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip()


def _field(record: Any, *names: str) -> Any:
    if isinstance(record, dict):
        for name in names:
            if name in record:
                return record[name]
        return None
    for name in names:
        value = getattr(record, name, None)
        if value is not None:
            return value
    return None


def extract_model_string(record: Any) -> str | None:
    """Return "provider/model" for a message record, or None when either part is missing.

    Accepts raw artifact dicts (providerID/modelID) as well as Message models.
    """
    provider = _read_string(_field(record, "providerId", "providerID"))
    model = _read_string(_field(record, "modelId", "modelID"))
    if not provider or not model:
        return None
    return f"{provider}/{model}"


def _created_at(record: Any) -> float:
    value = _field(record, "createdAt")
    if value is None and isinstance(record, dict):
        time_info = record.get("time")
        if isinstance(time_info, dict):
            value = time_info.get("created")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return value


def _record_id(record: Any) -> str:
    return _read_string(_field(record, "id"))


def pick_latest_model_string(records: Iterable[Any]) -> str | None:
    """Model string of the most recent record (createdAt desc, id desc) that carries one."""
    ordered = sorted(records, key=lambda r: (_created_at(r), _record_id(r)), reverse=True)
    for record in ordered:
        model = extract_model_string(record)
        if model:
            return model
    return None

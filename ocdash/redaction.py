"""Output boundary that strips raw tool payload keys from derived structures."""
from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger("ocdash.redaction")

SENSITIVE_KEYS = frozenset({"prompt", "input", "output", "error", "state"})


def redact(value: Any) -> Any:
    """Deep copy of `value` with every sensitive key removed at any depth.

    Pydantic models are dumped to plain dicts first; tuples come back as lists.
    """
    if isinstance(value, BaseModel):
        value = value.model_dump()
    if isinstance(value, dict):
        return {key: redact(item) for key, item in value.items() if key not in SENSITIVE_KEYS}
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


def find_sensitive_keys(value: Any, prefix: str = "") -> list[str]:
    """Dotted paths of every sensitive key found in `value`."""
    if isinstance(value, BaseModel):
        value = value.model_dump()
    found: list[str] = []
    if isinstance(value, dict):
        for key, item in value.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            if key in SENSITIVE_KEYS:
                found.append(path)
            found.extend(find_sensitive_keys(item, path))
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            found.extend(find_sensitive_keys(item, f"{prefix}[{index}]"))
    return found


def ensure_redacted(value: Any, context: str) -> Any:
    """Check a structure about to leave the process; strip any sensitive key that slipped through."""
    leaked = find_sensitive_keys(value)
    if not leaked:
        return value
    logger.error("Sensitive keys reached the %s output boundary: %s", context, leaked)
    return redact(value)

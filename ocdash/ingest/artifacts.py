"""Best-effort readers for session, message and part artifact files.

Every function here treats missing directories, unreadable files and
malformed JSON as "no data": callers get an empty result, never an exception.
Records are validated into the typed models at this boundary.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from ocdash import config
from ocdash.models import Message, Session, ToolPart
from ocdash.observability import record_artifact_skip
from ocdash.paths import PathLike, canonical_project_root

logger = logging.getLogger("ocdash.ingest")

M = TypeVar("M", bound=BaseModel)


def read_json_file(path: PathLike) -> Optional[dict[str, Any]]:
    try:
        content = Path(path).read_text(encoding="utf-8")
        parsed = json.loads(content)
    except (OSError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def list_json_files(directory: PathLike) -> list[str]:
    try:
        return [name for name in os.listdir(directory) if name.endswith(".json")]
    except OSError:
        return []


def _validate(model: type[M], payload: Optional[dict[str, Any]], path: Path) -> Optional[M]:
    if payload is None or not isinstance(payload.get("id"), str):
        logger.debug("Skipping unreadable artifact %s", path)
        record_artifact_skip(model.__name__)
        return None
    try:
        return model.model_validate(payload)
    except ValidationError:
        logger.debug("Skipping malformed %s artifact %s", model.__name__, path)
        record_artifact_skip(model.__name__)
        return None


def read_dir_json(directory: PathLike, model: type[M]) -> list[M]:
    """Read every *.json record in a directory, skipping anything malformed."""
    root = Path(directory)
    records: list[M] = []
    for name in sorted(list_json_files(root)):
        path = root / name
        record = _validate(model, read_json_file(path), path)
        if record is not None:
            records.append(record)
    return records


def _mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except OSError:
        return 0.0


def read_recent(directory: PathLike, model: type[M], cap: int = config.RECENT_MESSAGE_CAP) -> list[M]:
    """Read at most `cap` records, newest file modification time first."""
    root = Path(directory)
    files = [(name, _mtime(root / name)) for name in list_json_files(root)]
    files.sort(key=lambda item: (-item[1], item[0]))

    records: list[M] = []
    for name, _ in files[: max(0, cap)]:
        path = root / name
        record = _validate(model, read_json_file(path), path)
        if record is not None:
            records.append(record)
    return records


def read_all_sessions(session_root: PathLike) -> list[Session]:
    """Read session records from every project directory under the session root."""
    root = Path(session_root)
    try:
        project_dirs = sorted(entry.name for entry in os.scandir(root) if entry.is_dir())
    except OSError:
        return []

    sessions: list[Session] = []
    for project_dir in project_dirs:
        sessions.extend(read_dir_json(root / project_dir, Session))
    return sessions


def read_project_sessions(session_root: PathLike, project_root: PathLike) -> list[Session]:
    """Sessions whose directory canonicalizes to exactly the given project root."""
    target = canonical_project_root(project_root)
    matched: list[Session] = []
    for session in read_all_sessions(session_root):
        if not session.directory:
            continue
        if canonical_project_root(session.directory) == target:
            matched.append(session)
    return matched


def read_messages(message_dir: Optional[PathLike], cap: Optional[int] = config.RECENT_MESSAGE_CAP) -> list[Message]:
    """Messages of one session dir; capped by recency unless cap is None."""
    if not message_dir:
        return []
    if cap is None:
        return read_dir_json(message_dir, Message)
    return read_recent(message_dir, Message, cap)


def read_tool_parts(part_root: PathLike, message_id: str) -> list[ToolPart]:
    """Tool-invocation parts of one message, ordered by file name."""
    if not message_id:
        return []
    part_dir = Path(part_root) / message_id
    parts: list[ToolPart] = []
    for name in sorted(list_json_files(part_dir)):
        path = part_dir / name
        payload = read_json_file(path)
        if payload is None or payload.get("type") != "tool":
            continue
        if not isinstance(payload.get("tool"), str) or not isinstance(payload.get("state"), dict):
            continue
        part = _validate(ToolPart, payload, path)
        if part is not None:
            parts.append(part)
    return parts


def message_dir_has_entries(directory: Optional[PathLike]) -> bool:
    if not directory:
        return False
    try:
        with os.scandir(directory) as entries:
            return any(True for _ in entries)
    except OSError:
        return False

"""Main-session selection and the live main-session view."""
from __future__ import annotations

import logging
import os
from typing import Iterable, Optional

from ocdash import config
from ocdash.ingest.artifacts import (
    message_dir_has_entries,
    read_all_sessions,
    read_messages,
    read_project_sessions,
    read_tool_parts,
)
from ocdash.model_identity import pick_latest_model_string
from ocdash.models import MainSessionView, Message, Session
from ocdash.paths import PathEscapeError, PathLike, StorageRoots, assert_allowed_path, get_message_dir

logger = logging.getLogger("ocdash.ingest")

# Activity newer than this counts as "busy" rather than "idle".
BUSY_WINDOW_MS = 15_000
_IN_FLIGHT_TOOL_STATUSES = {"running", "pending"}


def _recency_key(session: Session) -> tuple[float, str]:
    # Ties on updatedAt resolve to the lexicographically greatest id.
    return (session.updatedAt, session.id)


def _most_recent(sessions: Iterable[Session]) -> Optional[Session]:
    return max(sessions, key=_recency_key, default=None)


def _normalize_ids(candidate_ids: Optional[Iterable[object]]) -> list[str]:
    ids: list[str] = []
    seen: set[str] = set()
    for raw in candidate_ids or []:
        if not isinstance(raw, str):
            continue
        value = raw.strip()
        if value and value not in seen:
            seen.add(value)
            ids.append(value)
    return ids


def _message_dir_updated_ms(message_dir) -> float:
    try:
        return os.stat(message_dir).st_mtime * 1000.0
    except OSError:
        return 0.0


def _pick_from_candidates(storage: StorageRoots, candidate_ids: list[str]) -> Optional[str]:
    by_id = {session.id: session for session in read_all_sessions(storage.session)}
    existing: list[Session] = []
    for session_id in candidate_ids:
        known = by_id.get(session_id)
        if known is not None:
            existing.append(known)
            continue
        message_dir = get_message_dir(storage.message, session_id)
        if message_dir is None:
            continue
        try:
            assert_allowed_path(message_dir, [storage.message])
        except PathEscapeError:
            logger.warning("Ignoring candidate session id that escapes the message root")
            continue
        if message_dir_has_entries(message_dir):
            updated = _message_dir_updated_ms(message_dir)
            existing.append(Session(id=session_id, createdAt=updated, updatedAt=updated))
    chosen = _most_recent(existing)
    return chosen.id if chosen else None


def pick_active_session_id(
    project_root: PathLike,
    storage: StorageRoots,
    candidate_ids: Optional[Iterable[object]] = None,
) -> Optional[str]:
    """Select the main session for a project root, or None when there is none.

    Candidate ids from the plan state win when any of them still exists on
    disk. Otherwise the newest top-level session whose directory is exactly
    the project root is chosen.
    """
    normalized = _normalize_ids(candidate_ids)
    if normalized:
        picked = _pick_from_candidates(storage, normalized)
        if picked:
            return picked
        logger.debug("No candidate session ids exist on disk; scanning project sessions")

    main_sessions = [s for s in read_project_sessions(storage.session, project_root) if not s.parentId]
    chosen = _most_recent(main_sessions)
    return chosen.id if chosen else None


def find_session(storage: StorageRoots, session_id: str) -> Optional[Session]:
    for session in read_all_sessions(storage.session):
        if session.id == session_id:
            return session
    return None


def _newest_first(messages: Iterable[Message]) -> list[Message]:
    return sorted(messages, key=lambda m: (m.createdAt or 0, m.id), reverse=True)


def read_main_session_messages(storage: StorageRoots, session_id: str) -> list[Message]:
    message_dir = get_message_dir(storage.message, session_id)
    return _newest_first(read_messages(message_dir, config.RECENT_MESSAGE_CAP))


def get_main_session_view(
    storage: StorageRoots,
    session_id: str,
    session: Optional[Session] = None,
    now_ms: float = 0,
) -> MainSessionView:
    """Summarize what the main session is doing right now."""
    messages = read_main_session_messages(storage, session_id)
    label = (session.title if session and session.title else None) or session_id

    if not messages:
        last_updated = session.updatedAt if session and session.updatedAt else None
        return MainSessionView(sessionLabel=label, lastUpdated=last_updated, status="unknown")

    agent = next((m.agent.strip() for m in messages if m.agent and m.agent.strip()), "unknown")
    latest = messages[0]
    parts = read_tool_parts(storage.part, latest.id)

    current_tool = parts[-1].tool if parts else None
    in_flight = [p for p in parts if p.status in _IN_FLIGHT_TOOL_STATUSES]
    last_updated = latest.completedAt or latest.createdAt
    if last_updated is None and session is not None:
        last_updated = session.updatedAt or None

    if in_flight:
        status = "running_tool"
        current_tool = in_flight[-1].tool
    elif latest.role == "assistant" and latest.completedAt is None:
        status = "thinking"
    elif last_updated is not None and now_ms - last_updated <= BUSY_WINDOW_MS:
        status = "busy"
    else:
        status = "idle"

    return MainSessionView(
        agent=agent,
        currentTool=current_tool,
        currentModel=pick_latest_model_string(messages),
        lastUpdated=last_updated,
        sessionLabel=label,
        status=status,
    )

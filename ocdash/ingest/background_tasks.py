"""Correlate delegate_task tool calls in the main session with child sessions.

A delegation is linked to at most one child session by heuristic matching on
parent id, a title prefix, and a creation-time window. Matching is a pure
function over in-memory sessions with a fixed comparator so that results are
reproducible for identical artifact trees.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from ocdash import config
from ocdash.date_utils import format_timeline
from ocdash.ingest.artifacts import (
    message_dir_has_entries,
    read_all_sessions,
    read_messages,
    read_tool_parts,
)
from ocdash.model_identity import pick_latest_model_string
from ocdash.models import DELEGATE_TOOL_NAME, BackgroundTaskRow, Message, Session
from ocdash.observability import record_tie_break
from ocdash.paths import PathEscapeError, StorageRoots, assert_allowed_path, get_message_dir

logger = logging.getLogger("ocdash.ingest")

DESCRIPTION_MAX = 120
AGENT_MAX = 30
MATCH_WINDOW_MS = 60_000
RUNNING_WINDOW_MS = 15_000
MAX_ROWS = 50

BACKGROUND_TITLE_PREFIX = "Background: "
TASK_TITLE_PREFIX = "Task: "


@dataclass(frozen=True)
class DelegationEvent:
    call_id: str
    description: str
    agent: str
    run_in_background: bool
    resume: Optional[str]
    started_at: float


@dataclass(frozen=True)
class SessionStats:
    tool_calls: int
    last_tool: Optional[str]
    last_update_at: Optional[float]


def clamp_string(value: object, max_len: int) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed:
        return None
    return trimmed[:max_len]


def resolve_agent(subagent_type: Optional[str], category: Optional[str]) -> str:
    if subagent_type:
        return subagent_type
    if category:
        return f"sisyphus-junior ({category})"
    return "unknown"


def _newest_first(messages: Iterable[Message]) -> list[Message]:
    return sorted(messages, key=lambda m: (m.createdAt or 0, m.id), reverse=True)


def _oldest_first(messages: Iterable[Message]) -> list[Message]:
    return sorted(messages, key=lambda m: (m.createdAt or 0, m.id))


def extract_delegation_events(storage: StorageRoots, messages: Iterable[Message]) -> list[DelegationEvent]:
    """Delegation events from the given messages, newest message first.

    Only the allowlisted delegation fields are consulted; a call without a
    boolean run_in_background or without a description is not a delegation.
    """
    events: list[DelegationEvent] = []
    for message in _newest_first(messages):
        if message.createdAt is None:
            continue
        for part in read_tool_parts(storage.part, message.id):
            if part.tool != DELEGATE_TOOL_NAME or part.delegation is None:
                continue
            delegation = part.delegation
            if delegation.run_in_background is None:
                continue
            description = clamp_string(delegation.description, DESCRIPTION_MAX)
            if not description:
                continue
            agent = resolve_agent(
                clamp_string(delegation.subagent_type, AGENT_MAX),
                clamp_string(delegation.category, AGENT_MAX),
            )
            resume = delegation.resume.strip() if delegation.resume else None
            events.append(
                DelegationEvent(
                    call_id=part.callId or part.id,
                    description=description,
                    agent=agent,
                    run_in_background=delegation.run_in_background,
                    resume=resume or None,
                    started_at=message.createdAt,
                )
            )
    return events


def match_child_session(
    sessions: Iterable[Session],
    parent_id: str,
    title: str,
    started_at: float,
) -> Optional[str]:
    """Pick the child session created for a delegation, if any.

    Candidates share the parent id and exact title and were created within
    [started_at, started_at + MATCH_WINDOW_MS]. The latest createdAt wins;
    equal createdAt resolves to the lexicographically greatest id.
    """
    window_end = started_at + MATCH_WINDOW_MS
    candidates = [
        s
        for s in sessions
        if s.parentId == parent_id and s.title == title and started_at <= s.createdAt <= window_end
    ]
    if not candidates:
        return None
    chosen = max(candidates, key=lambda s: (s.createdAt, s.id))
    if len(candidates) > 1:
        logger.info(
            "Tie-break among %d candidate sessions for parent %s (%s): picked %s",
            len(candidates),
            parent_id,
            title.split(":", 1)[0],
            chosen.id,
        )
        record_tie_break(title.split(":", 1)[0].lower(), len(candidates))
    return chosen.id


def find_background_session_id(sessions: Iterable[Session], parent_id: str, description: str, started_at: float) -> Optional[str]:
    return match_child_session(sessions, parent_id, f"{BACKGROUND_TITLE_PREFIX}{description}", started_at)


def find_task_session_id(sessions: Iterable[Session], parent_id: str, description: str, started_at: float) -> Optional[str]:
    return match_child_session(sessions, parent_id, f"{TASK_TITLE_PREFIX}{description}", started_at)


def correlate_delegation(
    event: DelegationEvent,
    sessions: list[Session],
    parent_id: str,
    resume_exists: Callable[[str], bool],
) -> Optional[str]:
    """Linked session id for one delegation event.

    Background calls use the background title search only. Synchronous calls
    try, in order: an explicit resume id with messages on disk, the background
    title search (the runtime may promote a waited call to a background
    session), then the task title search.
    """
    if event.run_in_background:
        return find_background_session_id(sessions, parent_id, event.description, event.started_at)

    if event.resume and resume_exists(event.resume):
        return event.resume

    return find_background_session_id(
        sessions, parent_id, event.description, event.started_at
    ) or find_task_session_id(sessions, parent_id, event.description, event.started_at)


def derive_session_stats(storage: StorageRoots, messages: Iterable[Message]) -> SessionStats:
    """Replay a child session oldest-first, counting its tool calls."""
    tool_calls = 0
    last_tool: Optional[str] = None
    last_update_at: Optional[float] = None
    for message in _oldest_first(messages):
        if message.createdAt is not None:
            last_update_at = message.createdAt
        for part in read_tool_parts(storage.part, message.id):
            tool_calls += 1
            last_tool = part.tool
    return SessionStats(tool_calls=tool_calls, last_tool=last_tool, last_update_at=last_update_at)


def derive_task_status(session_id: Optional[str], stats: SessionStats, now_ms: float) -> str:
    if not session_id:
        return "queued"
    if stats.last_update_at and now_ms - stats.last_update_at <= RUNNING_WINDOW_MS:
        return "running"
    if stats.tool_calls > 0:
        return "completed"
    return "unknown"


def _resume_checker(storage: StorageRoots) -> Callable[[str], bool]:
    def _exists(session_id: str) -> bool:
        message_dir = get_message_dir(storage.message, session_id)
        if message_dir is None:
            return False
        try:
            assert_allowed_path(message_dir, [storage.message])
        except PathEscapeError:
            logger.warning("Ignoring resume session id that escapes the message root")
            return False
        return message_dir_has_entries(message_dir)

    return _exists


def derive_background_tasks(
    storage: StorageRoots,
    main_session_id: str,
    now_ms: Optional[float] = None,
) -> list[BackgroundTaskRow]:
    """Background/delegated task rows for the main session, newest first."""
    now = now_ms if now_ms is not None else time.time() * 1000
    main_messages = read_messages(get_message_dir(storage.message, main_session_id), config.RECENT_MESSAGE_CAP)
    events = extract_delegation_events(storage, main_messages)
    if not events:
        return []

    all_sessions = read_all_sessions(storage.session)
    resume_exists = _resume_checker(storage)

    messages_cache: dict[str, list[Message]] = {}
    stats_cache: dict[str, SessionStats] = {}

    def _child_messages(session_id: str) -> list[Message]:
        if session_id not in messages_cache:
            child_dir = get_message_dir(storage.message, session_id)
            messages_cache[session_id] = read_messages(child_dir, config.RECENT_MESSAGE_CAP)
        return messages_cache[session_id]

    def _child_stats(session_id: str) -> SessionStats:
        if session_id not in stats_cache:
            stats_cache[session_id] = derive_session_stats(storage, _child_messages(session_id))
        return stats_cache[session_id]

    rows: list[BackgroundTaskRow] = []
    for event in events:
        if len(rows) >= MAX_ROWS:
            break

        session_id = correlate_delegation(event, all_sessions, main_session_id, resume_exists)
        if session_id:
            stats = _child_stats(session_id)
            last_model = pick_latest_model_string(_child_messages(session_id))
        else:
            stats = SessionStats(tool_calls=0, last_tool=None, last_update_at=event.started_at)
            last_model = None

        status = derive_task_status(session_id, stats, now)
        if status == "unknown":
            timeline = ""
        else:
            end_ms = (stats.last_update_at or now) if status == "completed" else now
            timeline = format_timeline(event.started_at, end_ms)

        rows.append(
            BackgroundTaskRow(
                id=event.call_id,
                description=event.description,
                agent=event.agent,
                status=status,
                toolCalls=stats.tool_calls if session_id else None,
                lastTool=stats.last_tool,
                lastModel=last_model,
                timeline=timeline,
                sessionId=session_id,
            )
        )

    return rows

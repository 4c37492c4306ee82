"""Per-session tool-call listing for the detail endpoint."""
from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from ocdash.ingest.artifacts import list_json_files, read_messages, read_tool_parts
from ocdash.models import ToolCallSummary
from ocdash.paths import PathLike, StorageRoots, assert_allowed_path, get_message_dir

logger = logging.getLogger("ocdash.ingest")

MAX_TOOL_CALL_MESSAGES = 200
MAX_TOOL_CALLS = 300


def derive_tool_calls(
    storage: StorageRoots,
    session_id: str,
    allowed_roots: Optional[Iterable[PathLike]] = None,
) -> dict[str, Any]:
    """Tool calls of one session, newest message first.

    At most MAX_TOOL_CALL_MESSAGES recent messages are scanned and at most
    MAX_TOOL_CALLS calls returned; `truncated` reports whether either cap cut
    anything off. When allowed_roots is given every directory read is guarded
    and PathEscapeError propagates to the caller.
    """
    roots = list(allowed_roots) if allowed_roots is not None else None
    message_dir = get_message_dir(storage.message, session_id)
    if message_dir is None:
        return {"toolCalls": [], "truncated": False}
    if roots is not None:
        assert_allowed_path(message_dir, roots)

    truncated = len(list_json_files(message_dir)) > MAX_TOOL_CALL_MESSAGES
    messages = read_messages(message_dir, MAX_TOOL_CALL_MESSAGES)
    messages.sort(key=lambda m: (m.createdAt or 0, m.id), reverse=True)

    calls: list[ToolCallSummary] = []
    for message in messages:
        if roots is not None:
            assert_allowed_path(storage.part / message.id, roots)
        for part in read_tool_parts(storage.part, message.id):
            if len(calls) >= MAX_TOOL_CALLS:
                truncated = True
                break
            calls.append(
                ToolCallSummary(
                    sessionId=session_id,
                    messageId=message.id,
                    callId=part.callId or part.id,
                    tool=part.tool,
                    status=part.status,
                    createdAtMs=message.createdAt,
                )
            )
        if truncated and len(calls) >= MAX_TOOL_CALLS:
            break

    logger.debug("Derived %d tool calls for session %s (truncated=%s)", len(calls), session_id, truncated)
    return {"toolCalls": [call.model_dump() for call in calls], "truncated": truncated}

"""Dashboard + tool-call detail API."""
from __future__ import annotations

import logging
import re
from typing import Any, Callable, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from ocdash.dashboard import StoreRegistry
from ocdash.ingest.tool_calls import MAX_TOOL_CALL_MESSAGES, MAX_TOOL_CALLS, derive_tool_calls
from ocdash.paths import PathEscapeError, get_message_dir, get_storage_roots

logger = logging.getLogger("ocdash.api")

dashboard_router = APIRouter(prefix="/api", tags=["dashboard"])

SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")

# Maps an external source id to a project root, or None when unknown.
SourceResolver = Callable[[str], Optional[str]]


def _get_registry(request: Request) -> StoreRegistry:
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise HTTPException(status_code=503, detail="Dashboard registry not initialized")
    return registry


@dashboard_router.get("/health")
def health() -> dict[str, Any]:
    return {"ok": True}


@dashboard_router.get("/dashboard")
def get_dashboard(request: Request, sourceId: Optional[str] = Query(default=None)):
    registry = _get_registry(request)
    source_id = (sourceId or "").strip()
    if source_id:
        resolve_source: Optional[SourceResolver] = getattr(request.app.state, "resolve_source", None)
        project_root = resolve_source(source_id) if resolve_source else None
        if not project_root:
            logger.info("Unknown dashboard source requested: %s", source_id)
            return JSONResponse(status_code=400, content={"ok": False, "sourceId": source_id})
        return registry.get_store(project_root, source_id=source_id).get_snapshot()

    return registry.get_store(request.app.state.project_root).get_snapshot()


@dashboard_router.get("/tool-calls/{session_id}")
def get_tool_calls(session_id: str, request: Request):
    if not SESSION_ID_PATTERN.match(session_id):
        return JSONResponse(status_code=400, content={"ok": False, "sessionId": session_id, "toolCalls": []})

    registry = _get_registry(request)
    storage = get_storage_roots(registry.storage_root)
    if get_message_dir(storage.message, session_id) is None:
        return JSONResponse(status_code=404, content={"ok": False, "sessionId": session_id, "toolCalls": []})

    try:
        result = derive_tool_calls(storage, session_id, allowed_roots=[registry.storage_root])
    except PathEscapeError:
        logger.warning("Rejected tool-call lookup outside storage root for session %s", session_id)
        return JSONResponse(status_code=403, content={"ok": False, "sessionId": session_id, "toolCalls": []})

    return {
        "ok": True,
        "sessionId": session_id,
        "toolCalls": result["toolCalls"],
        "caps": {
            "maxMessages": MAX_TOOL_CALL_MESSAGES,
            "maxToolCalls": MAX_TOOL_CALLS,
        },
        "truncated": result["truncated"],
    }

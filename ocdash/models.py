"""Pydantic models for runtime artifacts and the derived dashboard payload."""
from __future__ import annotations

import math
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, model_validator

# Only these keys are ever copied out of a delegate_task tool input.
DELEGATION_INPUT_ALLOWLIST = ("description", "subagent_type", "category", "run_in_background", "resume")
DELEGATE_TOOL_NAME = "delegate_task"


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def _as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _pick(data: dict[str, Any], *names: str) -> Any:
    for name in names:
        if name in data:
            return data[name]
    return None


# ── Artifact records (read-only views of producer files) ───────────
#
# Each record maps the producer's field names (projectID, time.created, ...)
# onto a flat internal shape. Unknown keys are dropped at this boundary.

class Session(BaseModel):
    id: str
    projectId: str = ""
    directory: str = ""
    parentId: Optional[str] = None
    title: Optional[str] = None
    createdAt: float = 0
    updatedAt: float = 0

    @model_validator(mode="before")
    @classmethod
    def _from_artifact(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        time_info = _as_dict(data.get("time"))
        created = _as_number(time_info.get("created") if time_info else data.get("createdAt"))
        updated = _as_number(time_info.get("updated") if time_info else data.get("updatedAt"))
        return {
            "id": data.get("id"),
            "projectId": _as_str(_pick(data, "projectID", "projectId")) or "",
            "directory": _as_str(data.get("directory")) or "",
            "parentId": _as_str(_pick(data, "parentID", "parentId")) or None,
            "title": _as_str(data.get("title")),
            "createdAt": created or 0,
            "updatedAt": updated if updated is not None else (created or 0),
        }


class Message(BaseModel):
    id: str
    sessionId: str = ""
    role: str = ""
    createdAt: Optional[float] = None
    completedAt: Optional[float] = None
    agent: Optional[str] = None
    providerId: Optional[str] = None
    modelId: Optional[str] = None
    tokens: Optional[dict[str, Any]] = None

    @model_validator(mode="before")
    @classmethod
    def _from_artifact(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        time_info = _as_dict(data.get("time"))
        tokens = data.get("tokens")
        return {
            "id": data.get("id"),
            "sessionId": _as_str(_pick(data, "sessionID", "sessionId")) or "",
            "role": _as_str(data.get("role")) or "",
            "createdAt": _as_number(time_info.get("created") if time_info else data.get("createdAt")),
            "completedAt": _as_number(time_info.get("completed") if time_info else data.get("completedAt")),
            "agent": _as_str(data.get("agent")),
            "providerId": _as_str(_pick(data, "providerID", "providerId")),
            "modelId": _as_str(_pick(data, "modelID", "modelId")),
            "tokens": tokens if isinstance(tokens, dict) else None,
        }


class DelegationInput(BaseModel):
    description: Optional[str] = None
    subagent_type: Optional[str] = None
    category: Optional[str] = None
    run_in_background: Optional[bool] = None
    resume: Optional[str] = None


def _delegation_from_input(raw_input: Any) -> Optional[dict[str, Any]]:
    if not isinstance(raw_input, dict):
        return None
    flag = raw_input.get("run_in_background")
    return {
        "description": _as_str(raw_input.get("description")),
        "subagent_type": _as_str(raw_input.get("subagent_type")),
        "category": _as_str(raw_input.get("category")),
        "run_in_background": flag if isinstance(flag, bool) else None,
        "resume": _as_str(raw_input.get("resume")),
    }


class ToolPart(BaseModel):
    id: str
    sessionId: str = ""
    messageId: str = ""
    callId: str = ""
    tool: str
    status: str = ""
    delegation: Optional[DelegationInput] = None

    @model_validator(mode="before")
    @classmethod
    def _from_artifact(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "state" not in data:
            return data
        state = _as_dict(data.get("state"))
        tool = data.get("tool")
        delegation = None
        if tool == DELEGATE_TOOL_NAME:
            delegation = _delegation_from_input(state.get("input"))
        return {
            "id": data.get("id"),
            "sessionId": _as_str(data.get("sessionID")) or "",
            "messageId": _as_str(data.get("messageID")) or "",
            "callId": _as_str(data.get("callID")) or "",
            "tool": tool,
            "status": _as_str(state.get("status")) or "",
            "delegation": delegation,
        }


# ── Derived payload models ─────────────────────────────────────────

TaskStatus = Literal["queued", "running", "completed", "error", "unknown"]


class BackgroundTaskRow(BaseModel):
    id: str
    description: str
    agent: str
    status: TaskStatus = "unknown"
    toolCalls: Optional[int] = None
    lastTool: Optional[str] = None
    lastModel: Optional[str] = None
    timeline: str = ""
    sessionId: Optional[str] = None


class TokenUsageTotals(BaseModel):
    input: int | float = 0
    output: int | float = 0
    reasoning: int | float = 0
    cacheRead: int | float = 0
    cacheWrite: int | float = 0
    total: int | float = 0


class TokenUsageRow(TokenUsageTotals):
    model: str


class TokenUsagePayload(BaseModel):
    rows: list[TokenUsageRow] = Field(default_factory=list)
    totals: TokenUsageTotals = Field(default_factory=TokenUsageTotals)


class TimeSeriesSeries(BaseModel):
    id: str
    label: str
    tone: str = "muted"
    values: list[int] = Field(default_factory=list)


class TimeSeries(BaseModel):
    windowMs: int
    bucketMs: int
    buckets: int
    anchorMs: int
    serverNowMs: int
    series: list[TimeSeriesSeries] = Field(default_factory=list)


MainSessionStatus = Literal["running_tool", "thinking", "busy", "idle", "unknown"]


class MainSessionView(BaseModel):
    agent: str = "unknown"
    currentTool: Optional[str] = None
    currentModel: Optional[str] = None
    lastUpdated: Optional[float] = None
    sessionLabel: str = "(no session)"
    status: MainSessionStatus = "unknown"


class ToolCallSummary(BaseModel):
    sessionId: str
    messageId: str
    callId: str
    tool: str
    status: str = ""
    createdAtMs: Optional[float] = None

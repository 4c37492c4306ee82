"""Dashboard snapshot composition and the per-project snapshot cache."""
from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Protocol

from ocdash import config
from ocdash.date_utils import format_iso_label, format_timeline
from ocdash.ingest.background_tasks import derive_background_tasks
from ocdash.ingest.sessions import find_session, get_main_session_view, pick_active_session_id
from ocdash.ingest.timeseries import derive_time_series_activity
from ocdash.ingest.token_usage import derive_token_usage
from ocdash.ingest.tool_calls import derive_tool_calls
from ocdash.models import MainSessionView
from ocdash.observability import record_snapshot_build, start_span
from ocdash.paths import PathLike, StorageRoots, canonical_project_root, get_storage_roots
from ocdash.redaction import ensure_redacted, redact

logger = logging.getLogger("ocdash.dashboard")

_STATUS_PILLS = {
    "running_tool": "running tool",
    "thinking": "thinking",
    "busy": "busy",
    "idle": "idle",
}

EMPTY_PLAN_PROGRESS: dict[str, Any] = {
    "name": "(no active plan)",
    "completed": 0,
    "total": 0,
    "path": "",
    "statusPill": "not started",
    "steps": [],
}

# Sections mirrored under "raw"; all of them pass the redaction boundary.
_PUBLIC_SECTIONS = ("mainSession", "planProgress", "backgroundTasks", "mainSessionTasks", "timeSeries")


class PlanReader(Protocol):
    """Plan-state collaborator: known session ids plus a planProgress section."""

    def __call__(self, project_root: str) -> tuple[list[str], Optional[dict[str, Any]]]:
        ...


def _now_ms() -> float:
    return time.time() * 1000


def main_status_pill(status: str) -> str:
    return _STATUS_PILLS.get(status, "unknown")


def _main_session_section(view: MainSessionView, session_id: Optional[str]) -> dict[str, Any]:
    return {
        "agent": view.agent,
        "currentModel": view.currentModel,
        "currentTool": view.currentTool or "-",
        "lastUpdatedLabel": format_iso_label(view.lastUpdated),
        "session": view.sessionLabel,
        "sessionId": session_id,
        "statusPill": main_status_pill(view.status),
    }


def _main_session_task(
    storage: StorageRoots,
    session_id: str,
    view: MainSessionView,
    started_at: Optional[float],
    now_ms: float,
) -> dict[str, Any]:
    if view.status in ("running_tool", "thinking", "busy"):
        status = "running"
    elif view.status == "idle":
        status = "idle"
    else:
        status = "unknown"

    tool_calls = derive_tool_calls(storage, session_id)["toolCalls"]
    end_ms = now_ms if status == "running" else (view.lastUpdated or now_ms)
    return {
        "id": "main-session",
        "description": "Main session",
        "subline": session_id,
        "agent": view.agent,
        "lastModel": view.currentModel,
        "status": status,
        "toolCalls": len(tool_calls),
        "lastTool": tool_calls[0]["tool"] if tool_calls else "-",
        "timeline": format_timeline(started_at, end_ms),
        "sessionId": session_id,
    }


def build_snapshot(
    project_root: PathLike,
    storage: StorageRoots,
    now_ms: float,
    candidate_session_ids: Optional[Iterable[object]] = None,
    plan_progress: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Compose the dashboard payload for one project root.

    Deterministic for a given artifact tree and `now_ms`. Every section except
    tokenUsage passes the redaction boundary, so no `prompt`, `input`,
    `output`, `error` or `state` key appears anywhere else in the payload.

    tokenUsage is the one exception: it is attached after redaction and its
    rows and totals carry numeric `input` and `output` token counters. It is a
    typed model of counts only and never holds tool payloads.
    """
    session_id = pick_active_session_id(project_root, storage, candidate_session_ids)
    session = find_session(storage, session_id) if session_id else None

    if session_id:
        view = get_main_session_view(storage, session_id, session=session, now_ms=now_ms)
        tasks = derive_background_tasks(storage, session_id, now_ms=now_ms)
        main_tasks = [
            _main_session_task(storage, session_id, view, session.createdAt if session else None, now_ms)
        ]
    else:
        view = MainSessionView()
        tasks = []
        main_tasks = []

    time_series = derive_time_series_activity(storage, session_id, now_ms)
    token_usage = derive_token_usage(storage, session_id, [task.sessionId for task in tasks])

    sections: dict[str, Any] = {
        "mainSession": _main_session_section(view, session_id),
        "planProgress": {**EMPTY_PLAN_PROGRESS, **(plan_progress or {})},
        "backgroundTasks": [
            {
                "id": task.id,
                "description": task.description,
                "agent": task.agent,
                "lastModel": task.lastModel,
                "status": task.status,
                "toolCalls": task.toolCalls or 0,
                "lastTool": task.lastTool or "-",
                "timeline": task.timeline,
                "sessionId": task.sessionId,
            }
            for task in tasks
        ],
        "mainSessionTasks": main_tasks,
        "timeSeries": time_series.model_dump(),
    }
    public = ensure_redacted(redact(sections), "dashboard")

    payload = dict(public)
    payload["tokenUsage"] = token_usage.model_dump()
    payload["raw"] = {name: public[name] for name in _PUBLIC_SECTIONS}
    return payload


class DashboardStore:
    """Cached snapshot for one project root, rebuilt lazily on read.

    The snapshot is rebuilt when none exists yet, when `mark_dirty()` has been
    called since the last build, or when `poll_interval_ms` has elapsed.
    """

    def __init__(
        self,
        project_root: PathLike,
        storage_root: PathLike,
        poll_interval_ms: int = config.POLL_INTERVAL_MS,
        clock: Optional[Callable[[], float]] = None,
        plan_reader: Optional[PlanReader] = None,
    ):
        self.project_root = canonical_project_root(project_root)
        self.storage = get_storage_roots(storage_root)
        self.poll_interval_ms = poll_interval_ms
        self.dirty = True
        self.last_computed_at = 0.0
        self._clock = clock or _now_ms
        self._plan_reader = plan_reader
        self._snapshot: Optional[dict[str, Any]] = None
        self._lock = threading.Lock()

    def mark_dirty(self) -> None:
        self.dirty = True

    def watch_paths(self) -> list[Path]:
        return [p for p in (self.storage.session, self.storage.message, self.storage.part) if p.exists()]

    def _is_fresh(self, now_ms: float) -> bool:
        return (
            self._snapshot is not None
            and not self.dirty
            and now_ms - self.last_computed_at <= self.poll_interval_ms
        )

    def get_snapshot(self) -> dict[str, Any]:
        now_ms = self._clock()
        if self._is_fresh(now_ms):
            return self._snapshot

        with self._lock:
            # Another reader may have rebuilt while we waited.
            if self._is_fresh(now_ms):
                return self._snapshot
            self.dirty = False
            started = time.perf_counter()
            try:
                with start_span("dashboard.build_snapshot", {"project_root": self.project_root}):
                    snapshot = self._build(now_ms)
            except Exception:
                self.dirty = True
                record_snapshot_build("error", (time.perf_counter() - started) * 1000)
                logger.exception("Snapshot build failed for %s", self.project_root)
                raise
            duration_ms = (time.perf_counter() - started) * 1000
            record_snapshot_build("ok", duration_ms)
            logger.debug("Rebuilt snapshot for %s in %.1fms", self.project_root, duration_ms)
            self._snapshot = snapshot
            self.last_computed_at = now_ms
            return snapshot

    def _build(self, now_ms: float) -> dict[str, Any]:
        candidate_ids: list[str] = []
        plan_progress = None
        if self._plan_reader is not None:
            candidate_ids, plan_progress = self._plan_reader(self.project_root)
        return build_snapshot(
            self.project_root,
            self.storage,
            now_ms,
            candidate_session_ids=candidate_ids,
            plan_progress=plan_progress,
        )


class StoreRegistry:
    """One DashboardStore per canonical project root.

    Several external source ids may resolve to the same root and therefore
    share a store.
    """

    def __init__(
        self,
        storage_root: PathLike,
        poll_interval_ms: int = config.POLL_INTERVAL_MS,
        clock: Optional[Callable[[], float]] = None,
        plan_reader: Optional[PlanReader] = None,
    ):
        self.storage_root = Path(storage_root)
        self.poll_interval_ms = poll_interval_ms
        self._clock = clock
        self._plan_reader = plan_reader
        self._stores: dict[str, DashboardStore] = {}
        self._source_roots: dict[str, str] = {}
        self._lock = threading.Lock()

    def get_store(self, project_root: PathLike, source_id: Optional[str] = None) -> DashboardStore:
        key = canonical_project_root(project_root)
        with self._lock:
            store = self._stores.get(key)
            if store is None:
                store = DashboardStore(
                    key,
                    self.storage_root,
                    poll_interval_ms=self.poll_interval_ms,
                    clock=self._clock,
                    plan_reader=self._plan_reader,
                )
                self._stores[key] = store
                logger.info("Registered dashboard store for %s", key)
            if source_id:
                self._source_roots[source_id] = key
        return store

    def store_for_source(self, source_id: str) -> Optional[DashboardStore]:
        with self._lock:
            key = self._source_roots.get(source_id)
            return self._stores.get(key) if key else None

    def stores(self) -> list[DashboardStore]:
        with self._lock:
            return list(self._stores.values())

    def mark_all_dirty(self) -> None:
        for store in self.stores():
            store.mark_dirty()

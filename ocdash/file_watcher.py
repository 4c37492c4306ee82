"""File watcher service using watchfiles.

Watches the artifact storage roots and marks every dashboard store dirty when
a JSON artifact is added, modified or deleted. Snapshots are never rebuilt
from here; the next read does that.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Iterable, Optional

from watchfiles import Change, awatch

from ocdash.dashboard import StoreRegistry

logger = logging.getLogger("ocdash.watcher")


class FileWatcher:
    """Background file watcher that invalidates cached snapshots on change."""

    def __init__(self):
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False

    async def start(self, registry: StoreRegistry, watch_paths: Iterable[Path]) -> None:
        """Start watching the given directories in a background task."""
        if self._running:
            logger.warning("File watcher already running")
            return

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop(registry, list(watch_paths)))
        logger.info("File watcher started")

    async def stop(self) -> None:
        """Stop the file watcher."""
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("File watcher stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _watch_loop(self, registry: StoreRegistry, paths: list[Path]) -> None:
        watch_paths = [p for p in paths if p.exists()]
        if not watch_paths:
            logger.warning("No watch paths exist, watcher has nothing to monitor")
            self._running = False
            return

        logger.info("Watching %d directories: %s", len(watch_paths), [str(p) for p in watch_paths])

        try:
            async for changes in awatch(*watch_paths, stop_event=self._stop_event):
                if not self._running:
                    break
                relevant = relevant_changes(changes)
                if relevant:
                    deleted = sum(1 for kind, _ in relevant if kind == "deleted")
                    logger.info(
                        "Artifact changes (%d modified, %d deleted), marking stores dirty",
                        len(relevant) - deleted,
                        deleted,
                    )
                    for kind, path in relevant:
                        logger.debug("  %s %s", kind, path)
                    registry.mark_all_dirty()
        except asyncio.CancelledError:
            logger.info("File watcher task cancelled")
        except Exception as e:
            logger.error(f"File watcher error: {e}")
        finally:
            self._running = False


def relevant_changes(changes: Iterable[tuple[Change, str]]) -> list[tuple[str, Path]]:
    """Classify raw watchfiles changes into (change_type, path) pairs for JSON artifacts."""
    result = []
    for change_type, path_str in changes:
        path = Path(path_str)
        if path.suffix != ".json":
            continue
        if change_type == Change.deleted:
            result.append(("deleted", path))
        elif change_type in (Change.modified, Change.added):
            result.append(("modified", path))
    return result

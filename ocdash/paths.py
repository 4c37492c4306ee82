"""Storage layout helpers and the path guard for externally keyed lookups."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Union

from ocdash import config

logger = logging.getLogger("ocdash.paths")

PathLike = Union[str, os.PathLike]


class PathEscapeError(ValueError):
    """Raised when a candidate path resolves outside every allowed root."""

    def __init__(self, candidate: str, allowed_roots: list[str]):
        self.candidate = candidate
        self.allowed_roots = allowed_roots
        super().__init__(f"Path outside allowed roots: {candidate}")


@dataclass(frozen=True)
class StorageRoots:
    root: Path
    session: Path
    message: Path
    part: Path


def get_storage_roots(storage_root: PathLike) -> StorageRoots:
    root = Path(storage_root)
    return StorageRoots(
        root=root,
        session=root / "session",
        message=root / "message",
        part=root / "part",
    )


def default_storage_root() -> Path:
    return config.STORAGE_ROOT


def realpath_safe(path: PathLike) -> str | None:
    try:
        return os.path.realpath(os.fspath(path))
    except (OSError, ValueError):
        return None


def canonical_project_root(path: PathLike) -> str:
    """Absolute, symlink-resolved, normalized form of a project root."""
    absolute = os.path.abspath(os.fspath(path))
    return os.path.normpath(realpath_safe(absolute) or absolute)


def _is_under(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False


def assert_allowed_path(candidate: PathLike, allowed_roots: Iterable[PathLike]) -> str:
    """Return the canonical candidate path, or raise PathEscapeError.

    Symlinks are followed before the containment check, so a link inside a
    root that points outside of it is rejected.
    """
    raw_candidate = os.fspath(candidate)
    resolved = realpath_safe(raw_candidate)
    roots = [r for r in (realpath_safe(root) for root in allowed_roots) if r]
    if resolved is None or not roots:
        raise PathEscapeError(raw_candidate, roots)

    resolved_path = Path(resolved)
    if any(_is_under(resolved_path, Path(root)) for root in roots):
        return resolved

    logger.warning("Rejected path outside allowed roots: %s", raw_candidate)
    raise PathEscapeError(raw_candidate, roots)


def get_message_dir(message_root: PathLike, session_id: str) -> Path | None:
    """Locate the message directory for a session, or None when absent.

    Older runtimes nest message dirs one level deeper, so that layout is
    checked after the direct one.
    """
    if not session_id:
        return None
    root = Path(message_root)
    direct = root / session_id
    if direct.is_dir():
        return direct
    try:
        children = sorted(os.scandir(root), key=lambda entry: entry.name)
    except OSError:
        return None
    for entry in children:
        if not entry.is_dir():
            continue
        nested = Path(entry.path) / session_id
        if nested.is_dir():
            return nested
    return None

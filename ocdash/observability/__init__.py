"""Observability helpers."""

from ocdash.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_artifact_skip,
    record_snapshot_build,
    record_tie_break,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_artifact_skip",
    "record_snapshot_build",
    "record_tie_break",
]

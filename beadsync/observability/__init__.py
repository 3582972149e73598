"""Observability helpers."""

from beadsync.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_cli_invocation,
    record_snapshot_reload,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_cli_invocation",
    "record_snapshot_reload",
]

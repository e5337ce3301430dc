"""Database helpers for the capture pipeline."""

from .postgres import (
    CaptureStore,
    PostgresCaptureStore,
    ensure_schema,
    fetch_capture,
    insert_pending_captures,
    list_capture_ids,
    mark_completed,
    mark_failed,
    mark_processing,
    sql_connect,
)

__all__ = [
    "CaptureStore",
    "PostgresCaptureStore",
    "ensure_schema",
    "fetch_capture",
    "insert_pending_captures",
    "list_capture_ids",
    "mark_completed",
    "mark_failed",
    "mark_processing",
    "sql_connect",
]

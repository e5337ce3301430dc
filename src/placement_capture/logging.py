"""Structured JSON logging for the capture pipeline and CLI.

Every record is one JSON object on the ``capture`` logger. Fields come from
three layers, later ones winning: process-wide context set once by the CLI,
the ``logging_context`` blocks active in the current task, and the call itself.
"""

from __future__ import annotations

import json
import logging
import os
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Mapping

UTC = getattr(datetime, "UTC", timezone.utc)
LOGGER_NAME = "capture"
DEFAULT_LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

_configured = False
_base_context: dict[str, Any] = {}
# Per-task so concurrent captures never see each other's capture_id.
_task_context: ContextVar[Mapping[str, Any]] = ContextVar("capture_log_context", default={})


def configure_logging(level: int | str | None = None) -> None:
    """Install the root handler once; ``LOG_LEVEL`` picks the level when none is given."""

    global _configured
    if _configured:
        return
    resolved = level if level is not None else DEFAULT_LOG_LEVEL
    if isinstance(resolved, str):
        resolved = logging.getLevelName(resolved.upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO
    logging.basicConfig(level=resolved, format="%(asctime)s %(levelname)s %(message)s")
    _configured = True


def set_global_context(**fields: Any) -> None:
    """Add fields that appear on every record for the rest of the process."""

    _base_context.update({k: v for k, v in fields.items() if v is not None})


@contextmanager
def logging_context(**fields: Any) -> Iterator[None]:
    """Layer ``fields`` onto records emitted inside the ``with`` block."""

    merged = {**_task_context.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _task_context.set(merged)
    try:
        yield
    finally:
        _task_context.reset(token)


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


def jlog(level: str, /, **fields: Any) -> None:
    log = logging.getLogger(LOGGER_NAME)
    record = {"ts": _utcnow_iso(), **_base_context, **_task_context.get(), **fields}
    getattr(log, level.lower())(json.dumps(record, ensure_ascii=False, sort_keys=True, default=str))


def log_exception(event: str, exc: BaseException, *, level: str = "error", **fields: Any) -> None:
    """Record ``exc`` with its type name so failures group cleanly in log search."""

    jlog(level, event=event, error_type=type(exc).__name__, error=str(exc), **fields)


def capture_log(event: str, *, capture_id: str, channel: str, url: str, **kw: Any) -> None:
    jlog("info", event=event, capture_id=capture_id, channel=channel, url=url, **kw)


__all__ = [
    "LOGGER_NAME",
    "capture_log",
    "configure_logging",
    "jlog",
    "log_exception",
    "logging_context",
    "set_global_context",
]

"""Capture pipeline version resolution helpers."""

from __future__ import annotations

import os

PIPELINE_NAME = "placement"
PIPELINE_VERSION = "2026-10-12.1"


def get_capture_version(pipeline_name: str = PIPELINE_NAME, pipeline_version: str = PIPELINE_VERSION) -> str:
    """Return a human-readable version string with an env override."""

    return os.getenv("CAPTURE_VERSION", f"{pipeline_name}:{pipeline_version}")


__all__ = ["PIPELINE_NAME", "PIPELINE_VERSION", "get_capture_version"]

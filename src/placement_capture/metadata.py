"""Metadata helpers for capture uploads."""

from __future__ import annotations

from collections import OrderedDict
from typing import OrderedDict as OrderedDictType


def build_capture_metadata(
    *,
    capture_id: str,
    channel: str,
    kind: str,
    width: int,
    height: int,
    sha256: str,
    capture_version: str,
    captured_at: str,
    page_url: str,
    creative_url: str | None = None,
    click_url: str | None = None,
    slots_injected: int | None = None,
    fallback_used: bool | None = None,
) -> OrderedDictType[str, str]:
    """Return metadata with deterministic ordering for auditability."""

    md: OrderedDictType[str, str] = OrderedDict()
    md["capture_id"] = capture_id
    md["channel"] = channel
    md["kind"] = kind
    md["width"] = str(width)
    md["height"] = str(height)
    md["sha256"] = sha256
    md["capture_version"] = capture_version
    md["captured_at"] = captured_at
    md["page_url"] = page_url
    if creative_url:
        md["creative_url"] = creative_url
    if click_url:
        md["click_url"] = click_url
    if slots_injected is not None:
        md["slots_injected"] = str(slots_injected)
    if fallback_used is not None:
        md["fallback_used"] = "true" if fallback_used else "false"
    return md


__all__ = ["build_capture_metadata"]

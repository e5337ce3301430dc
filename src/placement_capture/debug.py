"""Debug artifact helpers for capture runs."""

from __future__ import annotations

import json
import os
from typing import Sequence

from .detector import DetectedSlot
from .engine import PageHandle
from .logging import jlog

DEBUG_DIR = os.getenv("CAPTURE_DEBUG_DIR", "media/debug")


def ensure_debug_dir() -> str:
    """Create the debug directory if it does not exist and return the path."""

    try:
        os.makedirs(DEBUG_DIR, exist_ok=True)
    except Exception:
        pass
    return DEBUG_DIR


async def ensure_debug_html(page: PageHandle, capture_id: str) -> None:
    """Persist the current page HTML for later debugging (best effort)."""

    try:
        ensure_debug_dir()
        html = await page.content()
        with open(os.path.join(DEBUG_DIR, f"page_{capture_id}.html"), "w", encoding="utf-8") as f:
            f.write(html)
    except Exception as exc:  # pragma: no cover - logging only
        jlog("error", event="debug_save_html_error", capture_id=capture_id, error=str(exc))


def dump_slot_inventory(capture_id: str, slots: Sequence[DetectedSlot]) -> None:
    """Write the detected slots, best first, as JSON next to the page dump."""

    try:
        ensure_debug_dir()
        inventory = [{"selector": s.selector, "tag": s.tag_name, "x": s.x, "y": s.y, **s.describe()} for s in slots]
        with open(os.path.join(DEBUG_DIR, f"slots_{capture_id}.json"), "w", encoding="utf-8") as fh:
            json.dump(inventory, fh, ensure_ascii=False, indent=2)
    except Exception as exc:  # pragma: no cover - logging only
        jlog("error", event="debug_save_slots_error", capture_id=capture_id, error=str(exc))


async def dump_debug_artifacts(page: PageHandle, capture_id: str, slots: Sequence[DetectedSlot]) -> None:
    await ensure_debug_html(page, capture_id)
    dump_slot_inventory(capture_id, slots)


__all__ = [
    "DEBUG_DIR",
    "dump_debug_artifacts",
    "dump_slot_inventory",
    "ensure_debug_dir",
    "ensure_debug_html",
]

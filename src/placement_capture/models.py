"""Request, result and diagnostics records for one capture run."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Mapping

from .urls import is_http_url, require_http_url


class InjectionMode(str, Enum):
    SINGLE = "single"
    ALL = "all"
    CUSTOM = "custom"


@dataclass(frozen=True)
class CaptureRequest:
    """What to capture: a publisher page, the creative to force into it, and options."""

    publisher_url: str
    creative_url: str
    channel: str = "gdn"
    click_url: str | None = None
    capture_landing: bool = False
    injection_mode: InjectionMode = InjectionMode.SINGLE
    slot_count: int = 1
    capture_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "publisher_url", require_http_url(self.publisher_url, "publisher_url"))
        object.__setattr__(self, "creative_url", require_http_url(self.creative_url, "creative_url"))
        if self.click_url is not None and not is_http_url(self.click_url):
            raise ValueError(f"click_url must be an http(s) URL, got {self.click_url!r}")
        object.__setattr__(self, "injection_mode", InjectionMode(self.injection_mode))
        if not isinstance(self.slot_count, int) or self.slot_count < 1:
            raise ValueError(f"slot_count must be >= 1, got {self.slot_count!r}")

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> CaptureRequest:
        """Build a request from a ``captures`` table row."""

        return cls(
            publisher_url=row["publisher_url"],
            creative_url=row["creative_url"],
            channel=row.get("channel") or "gdn",
            click_url=row.get("click_url") or None,
            capture_landing=bool(row.get("capture_landing")),
            injection_mode=InjectionMode(row.get("injection_mode") or InjectionMode.SINGLE.value),
            slot_count=int(row.get("slot_count") or 1),
            capture_id=str(row["id"]) if row.get("id") is not None else None,
        )


@dataclass
class SlotDiagnostics:
    kind: str
    width: int
    height: int
    confidence: int
    is_fixed: bool
    success: bool
    method: str
    error: str | None = None


@dataclass
class CaptureDiagnostics:
    """Counters and per-slot outcomes collected while a capture runs."""

    slots_detected: int = 0
    slots_attempted: int = 0
    slots_injected: int = 0
    creative_downloaded: bool = False
    creative_bytes: int = 0
    creative_content_type: str | None = None
    fallback_used: bool = False
    fallback_injected: bool = False
    challenge_detected: bool = False
    challenge_wait_ms: int = 0
    lazy_images_promoted: int = 0
    obstructions_hidden: int = 0
    slots: list[SlotDiagnostics] = field(default_factory=list)
    capture_version: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CaptureResult:
    placement_screenshot: bytes
    captured_at: str
    page_url: str
    diagnostics: CaptureDiagnostics
    landing_screenshot: bytes | None = None
    landing_url: str | None = None
    duration_ms: int = 0


__all__ = [
    "CaptureDiagnostics",
    "CaptureRequest",
    "CaptureResult",
    "InjectionMode",
    "SlotDiagnostics",
]

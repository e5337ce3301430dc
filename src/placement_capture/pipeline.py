"""Capture orchestration: load, prepare, detect, inject, stabilize, screenshot.

One run walks a fixed sequence of stages on a single page::

    loading -> lazy-load forcing -> challenge wait -> detecting
            -> injecting -> stabilizing -> capturing

Navigation failures abort the run with :class:`NavigationError`. Everything
after loading degrades instead of failing: a page with no detectable slot, a
slot that refuses the creative, or a challenge that never clears still yields
a screenshot, and :class:`CaptureDiagnostics` records what happened.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Sequence

import requests

from .challenge import wait_for_challenge
from .channels import ChannelPolicy, get_channel
from .config import CaptureSettings
from .creative import CreativeAsset, fetch_creative
from .debug import dump_debug_artifacts
from .detector import DetectedSlot, detect_ad_slots
from .engine import BrowserEngine, PageHandle
from .errors import NavigationError
from .injector import InjectionResult, inject_creative, inject_fallback_banner
from .lazyload import force_lazy_load
from .logging import capture_log, jlog, log_exception
from .models import CaptureDiagnostics, CaptureRequest, CaptureResult, InjectionMode, SlotDiagnostics
from .obstructions import clear_obstructions
from .versioning import get_capture_version

UTC = getattr(datetime, "UTC", timezone.utc)

SINGLE_MAX_CANDIDATES = 5
MULTI_MAX_CANDIDATES = 10
STABILIZE_SCROLL_PASSES = 3
STABILIZE_SCROLL_PAUSE_MS = 100

STABILIZE_SCROLL_SCRIPT = r"""
() => {
  window.scrollTo(0, 0);
  document.documentElement.scrollTop = 0;
  if (document.body) document.body.scrollTop = 0;
  return window.scrollY;
}
"""

InjectFn = Callable[..., Awaitable[InjectionResult]]


@dataclass(frozen=True)
class InjectionPlan:
    """How many ranked candidates to try and how many successes end the loop."""

    max_candidates: int
    target: int | None

    @classmethod
    def for_mode(cls, mode: InjectionMode | str, slot_count: int = 1) -> InjectionPlan:
        mode = InjectionMode(mode)
        if mode is InjectionMode.SINGLE:
            return cls(max_candidates=SINGLE_MAX_CANDIDATES, target=1)
        if mode is InjectionMode.ALL:
            return cls(max_candidates=MULTI_MAX_CANDIDATES, target=None)
        return cls(max_candidates=MULTI_MAX_CANDIDATES, target=max(1, slot_count))

    def reached(self, injected: int) -> bool:
        return self.target is not None and injected >= self.target


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


async def inject_slots(
    page: PageHandle,
    slots: Sequence[DetectedSlot],
    creative_src: str,
    plan: InjectionPlan,
    diagnostics: CaptureDiagnostics,
    *,
    settings: CaptureSettings,
    inject_fn: InjectFn = inject_creative,
) -> int:
    """Try candidates best-first until ``plan`` is satisfied; returns the success count."""

    injected = 0
    for index, slot in enumerate(slots[: plan.max_candidates]):
        if plan.reached(injected):
            break
        diagnostics.slots_attempted += 1
        try:
            result = await inject_fn(
                page,
                slot,
                creative_src,
                fit_to_slot=True,
                remove_obstructions=index == 0,
                image_timeout_ms=settings.image_timeout_ms,
            )
        except Exception as exc:
            result = InjectionResult.failed(str(exc))
        diagnostics.slots.append(
            SlotDiagnostics(
                kind=slot.kind.value,
                width=slot.width,
                height=slot.height,
                confidence=slot.confidence,
                is_fixed=slot.is_fixed,
                success=result.success,
                method=result.method.value,
                error=result.error,
            )
        )
        if result.success:
            injected += 1
            jlog("info", event="slot_injected", rank=index, method=result.method.value, **slot.describe())
        else:
            jlog("warning", event="slot_injection_failed", rank=index, error=result.error, **slot.describe())
    diagnostics.slots_injected = injected
    return injected


async def stabilize(page: PageHandle, settings: CaptureSettings) -> int:
    """Hide late obstructions, let the layout settle and pin the viewport to the top."""

    hidden = await clear_obstructions(page, policy=settings.obstruction)
    await page.wait(settings.stabilize_ms)
    for _ in range(STABILIZE_SCROLL_PASSES):
        try:
            await page.evaluate(STABILIZE_SCROLL_SCRIPT)
        except Exception as exc:
            jlog("warning", event="scroll_reset_error", error=str(exc))
        await page.wait(STABILIZE_SCROLL_PAUSE_MS)
    return hidden


async def _goto(page: PageHandle, url: str, *, wait_until: str, timeout_ms: int) -> None:
    try:
        await page.goto(url, wait_until=wait_until, timeout_ms=timeout_ms)
    except Exception as exc:
        raise NavigationError(f"failed to load {url}: {exc}") from exc


async def capture_placement(
    page: PageHandle,
    request: CaptureRequest,
    creative: CreativeAsset,
    *,
    settings: CaptureSettings | None = None,
    policy: ChannelPolicy | None = None,
    diagnostics: CaptureDiagnostics | None = None,
    inject_fn: InjectFn = inject_creative,
) -> tuple[bytes, CaptureDiagnostics]:
    """Load the publisher page, force the creative into its ad slots and screenshot it."""

    settings = settings or CaptureSettings()
    policy = policy or get_channel(request.channel)
    diagnostics = diagnostics or CaptureDiagnostics(capture_version=get_capture_version())

    await _goto(page, request.publisher_url, wait_until=settings.wait_until, timeout_ms=settings.page_timeout_ms)
    await page.wait(settings.settle_ms)

    diagnostics.lazy_images_promoted = await force_lazy_load(
        page, viewports=settings.scroll_sweep_viewports, pause_ms=settings.scroll_step_pause_ms
    )
    challenge = await wait_for_challenge(
        page, max_wait_ms=settings.challenge_max_wait_ms, poll_ms=settings.challenge_poll_ms
    )
    diagnostics.challenge_detected = challenge.detected
    diagnostics.challenge_wait_ms = challenge.waited_ms

    diagnostics.obstructions_hidden += await clear_obstructions(page, policy=settings.obstruction)

    try:
        slots = await detect_ad_slots(page, policy=settings.detection)
    except Exception as exc:
        log_exception("slot_detection_error", exc, level="warning")
        slots = []
    diagnostics.slots_detected = len(slots)
    if settings.debug_html:
        await dump_debug_artifacts(page, request.capture_id or "adhoc", slots)

    plan = InjectionPlan.for_mode(request.injection_mode, request.slot_count)
    injected = await inject_slots(page, slots, creative.src, plan, diagnostics, settings=settings, inject_fn=inject_fn)
    if not slots or injected == 0:
        diagnostics.fallback_used = True
        fallback = await inject_fallback_banner(
            page, creative.src, policy=settings.fallback, image_timeout_ms=settings.image_timeout_ms
        )
        diagnostics.fallback_injected = fallback.success
        if fallback.success:
            diagnostics.slots_injected += 1
        else:
            jlog("warning", event="fallback_not_injected", error=fallback.error)

    diagnostics.obstructions_hidden += await stabilize(page, settings)
    screenshot = await page.screenshot(full_page=policy.full_page, type="png")
    return screenshot, diagnostics


async def capture_landing(page: PageHandle, click_url: str, *, settings: CaptureSettings) -> tuple[bytes, str]:
    """Follow ``click_url`` on the same page and return a full-page shot plus the final URL."""

    await _goto(page, click_url, wait_until=settings.landing_wait_until, timeout_ms=settings.page_timeout_ms)
    await clear_obstructions(page, policy=settings.obstruction)
    await page.wait(settings.landing_settle_ms)
    screenshot = await page.screenshot(full_page=True, type="png")
    return screenshot, page.url()


async def execute_capture(
    engine: BrowserEngine,
    request: CaptureRequest,
    *,
    settings: CaptureSettings | None = None,
    http: requests.Session | None = None,
    creative: CreativeAsset | None = None,
) -> CaptureResult:
    """Run one capture on a fresh page of an already launched ``engine``."""

    settings = settings or CaptureSettings()
    policy = get_channel(request.channel)
    started = time.monotonic()
    capture_id = request.capture_id or "adhoc"
    capture_log("capture_start", capture_id=capture_id, channel=policy.name, url=request.publisher_url)

    if creative is None:
        creative = fetch_creative(request.creative_url, http=http)
    diagnostics = CaptureDiagnostics(
        capture_version=get_capture_version(),
        creative_downloaded=creative.downloaded,
        creative_bytes=creative.size_bytes,
        creative_content_type=creative.content_type,
    )

    page = await engine.new_page()
    try:
        placement, diagnostics = await capture_placement(
            page, request, creative, settings=settings, policy=policy, diagnostics=diagnostics
        )
        landing: bytes | None = None
        landing_url: str | None = None
        if request.capture_landing and request.click_url:
            landing, landing_url = await capture_landing(page, request.click_url, settings=settings)
    finally:
        try:
            await page.close()
        except Exception as exc:
            jlog("warning", event="page_close_error", capture_id=capture_id, error=str(exc))

    duration_ms = int((time.monotonic() - started) * 1000)
    capture_log(
        "capture_done",
        capture_id=capture_id,
        channel=policy.name,
        url=request.publisher_url,
        duration_ms=duration_ms,
        slots_detected=diagnostics.slots_detected,
        slots_injected=diagnostics.slots_injected,
        fallback_used=diagnostics.fallback_used,
    )
    return CaptureResult(
        placement_screenshot=placement,
        captured_at=_utcnow_iso(),
        page_url=request.publisher_url,
        diagnostics=diagnostics,
        landing_screenshot=landing,
        landing_url=landing_url,
        duration_ms=duration_ms,
    )


__all__ = [
    "InjectionPlan",
    "capture_landing",
    "capture_placement",
    "execute_capture",
    "inject_slots",
    "stabilize",
]

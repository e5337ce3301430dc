"""Force a creative image into a detected ad slot.

The slot is first resolved into one of three targets and each target kind has
its own DOM mutation:

* ``iframe``     -> swap the frame for a sized wrapper holding the creative
* ``element``    -> empty the container, force it visible and sized, append the image
* ``unresolved`` -> absolutely positioned overlay at the slot's last known box

A slot inside or around an already injected node is refused, so an iframe and
its parent container never both count as placements.

Every injected node carries ``data-pc-injected`` so obstruction passes leave it
alone. :func:`inject_creative` never raises; failures come back as an
:class:`InjectionResult`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Literal

from .config import DEFAULT_FALLBACK_POLICY, DEFAULT_IMAGE_TIMEOUT_MS, FallbackPolicy
from .detector import DetectedSlot
from .engine import PageHandle
from .logging import jlog
from .obstructions import INJECTED_ATTRIBUTE, clear_obstructions

OVERLAY_Z_INDEX = 2147483000


class InjectionMethod(str, Enum):
    REPLACE_CONTENT = "replace-content"
    REPLACE_IFRAME = "replace-iframe"
    OVERLAY = "overlay"
    NONE = "none"


@dataclass(frozen=True)
class InjectionResult:
    success: bool
    method: InjectionMethod
    error: str | None = None
    image_state: str | None = None

    @classmethod
    def failed(cls, error: str, method: InjectionMethod = InjectionMethod.NONE) -> InjectionResult:
        return cls(success=False, method=method, error=error)


TargetKind = Literal["iframe", "element", "unresolved", "injected"]

ALREADY_INJECTED = "already injected"


@dataclass(frozen=True)
class InjectionTarget:
    kind: TargetKind
    selector: str


# Shared by every mutation script: sized image factory and a bounded load wait.
_IMAGE_HELPERS = r"""
  const makeImage = () => {
    const img = document.createElement('img');
    img.alt = '';
    img.style.cssText = [
      'display: block !important',
      args.fit ? 'width: ' + args.width + 'px !important' : '',
      args.fit ? 'height: ' + args.height + 'px !important' : '',
      'object-fit: cover !important',
      'border: none !important',
      'margin: 0 !important',
      'padding: 0 !important',
      'max-width: none !important',
      'max-height: none !important',
      'visibility: visible !important',
      'opacity: 1 !important',
    ].filter(Boolean).join('; ');
    return img;
  };
  const waitForImage = (img) => new Promise((resolve) => {
    if (img.complete && img.naturalWidth > 0) return resolve('loaded');
    const timer = setTimeout(() => resolve('timeout'), args.timeoutMs);
    img.addEventListener('load', () => {
      clearTimeout(timer);
      const done = () => resolve('loaded');
      if (img.decode) img.decode().then(done, done); else done();
    }, { once: true });
    img.addEventListener('error', () => { clearTimeout(timer); resolve('error'); }, { once: true });
  });
  const wrapperCss = (extra) => [
    'display: block !important',
    'visibility: visible !important',
    'opacity: 1 !important',
    'overflow: hidden !important',
    'border: none !important',
    'margin: 0 !important',
    'padding: 0 !important',
    'background: transparent !important',
    'width: ' + args.width + 'px !important',
    'height: ' + args.height + 'px !important',
    ...extra,
  ].join('; ');
"""

RESOLVE_TARGET_SCRIPT = r"""
(args) => {
  let el = null;
  try {
    el = document.querySelector(args.selector);
  } catch (e) {
    return 'unresolved';
  }
  if (!el) return 'unresolved';
  const marker = '[' + args.injectedAttribute + ']';
  if (el.closest(marker) || el.querySelector(marker)) return 'injected';
  return el.tagName.toLowerCase() === 'iframe' ? 'iframe' : 'element';
}
"""

REPLACE_CONTENT_SCRIPT = (
    r"""
async (args) => {
/*HELPERS*/
  const el = document.querySelector(args.selector);
  if (!el) return { ok: false, error: 'slot not found: ' + args.selector };
  if (el.closest('[' + args.injectedAttribute + ']') || el.querySelector('[' + args.injectedAttribute + ']')) {
    return { ok: false, error: 'already injected' };
  }
  el.innerHTML = '';
  el.style.cssText += ';' + [
    'overflow: hidden !important',
    'background: transparent !important',
    'border: none !important',
    'display: block !important',
    'visibility: visible !important',
    'opacity: 1 !important',
    'position: relative !important',
    'z-index: 10 !important',
    args.fit ? 'width: ' + args.width + 'px !important' : '',
    args.fit ? 'height: ' + args.height + 'px !important' : '',
    'min-height: 0 !important',
    'max-height: none !important',
  ].filter(Boolean).join('; ');
  const img = makeImage();
  img.setAttribute(args.injectedAttribute, '1');
  el.setAttribute(args.injectedAttribute, '1');
  el.appendChild(img);
  img.src = args.src;
  return { ok: true, imageState: await waitForImage(img) };
}
"""
).replace("/*HELPERS*/", _IMAGE_HELPERS)

REPLACE_IFRAME_SCRIPT = (
    r"""
async (args) => {
/*HELPERS*/
  const frame = document.querySelector(args.selector);
  if (!frame) return { ok: false, error: 'iframe not found: ' + args.selector };
  if (frame.closest('[' + args.injectedAttribute + ']')) return { ok: false, error: 'already injected' };
  const wrapper = document.createElement('div');
  wrapper.setAttribute(args.injectedAttribute, '1');
  wrapper.style.cssText = wrapperCss(['position: relative !important']);
  const img = makeImage();
  img.setAttribute(args.injectedAttribute, '1');
  wrapper.appendChild(img);
  img.src = args.src;
  frame.replaceWith(wrapper);
  return { ok: true, imageState: await waitForImage(img) };
}
"""
).replace("/*HELPERS*/", _IMAGE_HELPERS)

OVERLAY_SCRIPT = (
    r"""
async (args) => {
/*HELPERS*/
  const host = document.body || document.documentElement;
  if (!host) return { ok: false, error: 'document has no body' };
  const wrapper = document.createElement('div');
  wrapper.setAttribute(args.injectedAttribute, '1');
  wrapper.style.cssText = wrapperCss([
    'position: absolute !important',
    'left: ' + (args.x + (window.scrollX || 0)) + 'px !important',
    'top: ' + (args.y + (window.scrollY || 0)) + 'px !important',
    'z-index: ' + args.zIndex + ' !important',
    'pointer-events: none !important',
  ]);
  const img = makeImage();
  img.setAttribute(args.injectedAttribute, '1');
  wrapper.appendChild(img);
  img.src = args.src;
  host.appendChild(wrapper);
  return { ok: true, imageState: await waitForImage(img) };
}
"""
).replace("/*HELPERS*/", _IMAGE_HELPERS)

FALLBACK_BANNER_SCRIPT = (
    r"""
async (args) => {
  const candidates = [];
  for (const el of document.querySelectorAll('iframe, img')) {
    if (el.closest('[' + args.injectedAttribute + ']')) continue;
    const rect = el.getBoundingClientRect();
    if (rect.width < args.minWidth || rect.width > args.maxWidth) continue;
    if (rect.height < args.minHeight || rect.height > args.maxHeight) continue;
    const style = window.getComputedStyle(el);
    if (style.display === 'none' || style.visibility === 'hidden' || style.opacity === '0') continue;
    candidates.push({ el, rect });
  }
  if (!candidates.length) return { ok: false, error: 'no banner-sized iframe or image' };
  candidates.sort((a, b) => b.rect.width * b.rect.height - a.rect.width * a.rect.height);
  const { el, rect } = candidates[0];
  args.width = Math.round(rect.width);
  args.height = Math.round(rect.height);
  args.fit = true;
/*HELPERS*/
  const tag = el.tagName.toLowerCase();
  let img;
  if (tag === 'iframe') {
    const wrapper = document.createElement('div');
    wrapper.setAttribute(args.injectedAttribute, '1');
    wrapper.style.cssText = wrapperCss(['position: relative !important']);
    img = makeImage();
    wrapper.appendChild(img);
    img.src = args.src;
    el.replaceWith(wrapper);
  } else {
    img = el;
    const picture = img.closest('picture');
    if (picture) picture.querySelectorAll('source').forEach((s) => s.remove());
    img.removeAttribute('srcset');
    img.removeAttribute('sizes');
    img.style.cssText += ';' + makeImage().style.cssText;
    img.src = args.src;
  }
  img.setAttribute(args.injectedAttribute, '1');
  return { ok: true, tag, width: args.width, height: args.height, imageState: await waitForImage(img) };
}
"""
).replace("/*HELPERS*/", _IMAGE_HELPERS)


async def resolve_target(page: PageHandle, slot: DetectedSlot) -> InjectionTarget:
    kind = await page.evaluate(
        RESOLVE_TARGET_SCRIPT, {"selector": slot.selector, "injectedAttribute": INJECTED_ATTRIBUTE}
    )
    if kind not in ("iframe", "element", "injected"):
        kind = "unresolved"
    return InjectionTarget(kind=kind, selector=slot.selector)


def _script_args(slot: DetectedSlot, creative_src: str, *, fit_to_slot: bool, image_timeout_ms: int) -> dict[str, Any]:
    return {
        "selector": slot.selector,
        "src": creative_src,
        "width": slot.width,
        "height": slot.height,
        "x": slot.x,
        "y": slot.y,
        "fit": fit_to_slot,
        "timeoutMs": image_timeout_ms,
        "zIndex": OVERLAY_Z_INDEX,
        "injectedAttribute": INJECTED_ATTRIBUTE,
    }


def _result(payload: Any, method: InjectionMethod) -> InjectionResult:
    payload = payload if isinstance(payload, dict) else {}
    if not payload.get("ok"):
        return InjectionResult.failed(str(payload.get("error") or "injection script reported failure"), method)
    image_state = payload.get("imageState")
    if image_state and image_state != "loaded":
        # The DOM mutation is what matters; an undecoded image still counts.
        jlog("warning", event="creative_image_not_loaded", method=method.value, image_state=image_state)
    return InjectionResult(success=True, method=method, image_state=image_state)


async def _inject_overlay(page: PageHandle, args: dict[str, Any]) -> InjectionResult:
    payload = await page.evaluate(OVERLAY_SCRIPT, args)
    return _result(payload, InjectionMethod.OVERLAY)


async def _inject_iframe(page: PageHandle, args: dict[str, Any]) -> InjectionResult:
    try:
        payload = await page.evaluate(REPLACE_IFRAME_SCRIPT, args)
        result = _result(payload, InjectionMethod.REPLACE_IFRAME)
        if not result.success and result.error != ALREADY_INJECTED:
            raise RuntimeError(result.error)
        return result
    except Exception as exc:
        jlog("warning", event="iframe_replace_failed", selector=args["selector"], error=str(exc))
        overlay = await _inject_overlay(page, args)
        return replace(overlay, error=f"replace-iframe failed: {exc}")


async def _inject_content(page: PageHandle, args: dict[str, Any]) -> InjectionResult:
    payload = await page.evaluate(REPLACE_CONTENT_SCRIPT, args)
    result = _result(payload, InjectionMethod.REPLACE_CONTENT)
    if result.success or result.error == ALREADY_INJECTED:
        return result
    overlay = await _inject_overlay(page, args)
    return replace(overlay, error=result.error)


async def inject_creative(
    page: PageHandle,
    slot: DetectedSlot,
    creative_src: str,
    *,
    fit_to_slot: bool = True,
    remove_obstructions: bool = True,
    image_timeout_ms: int = DEFAULT_IMAGE_TIMEOUT_MS,
) -> InjectionResult:
    """Inject ``creative_src`` into ``slot``; returns the outcome instead of raising."""

    args = _script_args(slot, creative_src, fit_to_slot=fit_to_slot, image_timeout_ms=image_timeout_ms)
    try:
        if remove_obstructions:
            await clear_obstructions(page)
        target = await resolve_target(page, slot)
        if target.kind == "injected":
            # Another candidate already carries the creative, e.g. the parent of a replaced iframe.
            jlog("info", event="slot_already_injected", selector=slot.selector)
            return InjectionResult.failed(ALREADY_INJECTED)
        if target.kind == "unresolved":
            jlog("info", event="slot_unresolved", selector=slot.selector, x=slot.x, y=slot.y)
            return await _inject_overlay(page, args)
        if target.kind == "iframe":
            return await _inject_iframe(page, args)
        return await _inject_content(page, args)
    except Exception as exc:
        jlog("warning", event="slot_injection_error", selector=slot.selector, error=str(exc))
        return InjectionResult.failed(str(exc))


async def inject_fallback_banner(
    page: PageHandle,
    creative_src: str,
    *,
    policy: FallbackPolicy = DEFAULT_FALLBACK_POLICY,
    image_timeout_ms: int = DEFAULT_IMAGE_TIMEOUT_MS,
) -> InjectionResult:
    """Replace the largest banner-sized iframe or image on the page, whatever its confidence."""

    args = {
        "src": creative_src,
        "minWidth": policy.min_width,
        "maxWidth": policy.max_width,
        "minHeight": policy.min_height,
        "maxHeight": policy.max_height,
        "timeoutMs": image_timeout_ms,
        "injectedAttribute": INJECTED_ATTRIBUTE,
    }
    try:
        payload = await page.evaluate(FALLBACK_BANNER_SCRIPT, args)
    except Exception as exc:
        jlog("warning", event="fallback_injection_error", error=str(exc))
        return InjectionResult.failed(str(exc))
    payload = payload if isinstance(payload, dict) else {}
    method = InjectionMethod.REPLACE_IFRAME if payload.get("tag") == "iframe" else InjectionMethod.REPLACE_CONTENT
    result = _result(payload, method)
    if not result.success:
        return InjectionResult.failed(result.error or "fallback found nothing to replace")
    jlog("info", event="fallback_injected", tag=payload.get("tag"), width=payload.get("width"), height=payload.get("height"))
    return result


__all__ = [
    "ALREADY_INJECTED",
    "FALLBACK_BANNER_SCRIPT",
    "InjectionMethod",
    "InjectionResult",
    "InjectionTarget",
    "OVERLAY_SCRIPT",
    "REPLACE_CONTENT_SCRIPT",
    "REPLACE_IFRAME_SCRIPT",
    "RESOLVE_TARGET_SCRIPT",
    "inject_creative",
    "inject_fallback_banner",
    "resolve_target",
]

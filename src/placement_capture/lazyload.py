"""Coax lazy-loaded images and ad slots into rendering before detection."""

from __future__ import annotations

from .config import DEFAULT_SCROLL_STEP_PAUSE_MS, DEFAULT_SCROLL_SWEEP_VIEWPORTS
from .engine import PageHandle
from .logging import jlog

LAZY_SRC_ATTRIBUTES = ("data-src", "data-lazy-src", "data-original")
LAZY_SRCSET_ATTRIBUTES = ("data-srcset", "data-lazy-srcset")

PROMOTE_LAZY_SCRIPT = r"""
(args) => {
  let promoted = 0;
  for (const img of document.querySelectorAll('img')) {
    if (img.loading === 'lazy') img.loading = 'eager';
    if (!img.getAttribute('src') || img.getAttribute('src').startsWith('data:')) {
      for (const attr of args.srcAttributes) {
        const value = img.getAttribute(attr);
        if (value) {
          img.setAttribute('src', value);
          promoted += 1;
          break;
        }
      }
    }
    if (!img.getAttribute('srcset')) {
      for (const attr of args.srcsetAttributes) {
        const value = img.getAttribute(attr);
        if (value) {
          img.setAttribute('srcset', value);
          break;
        }
      }
    }
  }
  for (const frame of document.querySelectorAll('iframe[loading="lazy"]')) {
    frame.loading = 'eager';
  }
  return promoted;
}
"""

SCROLL_STEP_SCRIPT = r"""
(step) => {
  const vh = window.innerHeight || 800;
  window.scrollTo(0, step * vh);
  return Math.max(document.body ? document.body.scrollHeight : 0, document.documentElement.scrollHeight);
}
"""

RESET_SCROLL_SCRIPT = "() => { window.scrollTo(0, 0); return window.scrollY; }"


async def reset_scroll(page: PageHandle) -> None:
    try:
        await page.evaluate(RESET_SCROLL_SCRIPT)
    except Exception:
        pass


async def force_lazy_load(
    page: PageHandle,
    *,
    viewports: int = DEFAULT_SCROLL_SWEEP_VIEWPORTS,
    pause_ms: int = DEFAULT_SCROLL_STEP_PAUSE_MS,
) -> int:
    """Promote lazy images, sweep down ``viewports`` screens, then return to the top.

    Returns how many images had a lazy ``src`` copied into place. Failures are
    logged and swallowed: a page that refuses the sweep is still captured.
    """

    promoted = 0
    try:
        promoted = int(
            await page.evaluate(
                PROMOTE_LAZY_SCRIPT,
                {"srcAttributes": list(LAZY_SRC_ATTRIBUTES), "srcsetAttributes": list(LAZY_SRCSET_ATTRIBUTES)},
            )
            or 0
        )
        for step in range(1, viewports + 1):
            await page.evaluate(SCROLL_STEP_SCRIPT, step)
            await page.wait(pause_ms)
    except Exception as exc:
        jlog("warning", event="lazy_load_error", error=str(exc))
    finally:
        await reset_scroll(page)
    jlog("info", event="lazy_load_forced", promoted=promoted, viewports=viewports)
    return promoted


__all__ = ["LAZY_SRCSET_ATTRIBUTES", "LAZY_SRC_ATTRIBUTES", "force_lazy_load", "reset_scroll"]

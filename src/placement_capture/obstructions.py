"""Hide cookie banners, popups, paywalls and backdrops before capturing.

Matched elements are hidden, never removed: publishers reuse "popup"-like class
names on structural containers, and deleting those collapses the layout. A
protect-list keeps injected creatives, ad markup, structural tags and real
content visible. Hidden elements are marked so a second pass is a no-op.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from typing import Any

from .config import DEFAULT_OBSTRUCTION_POLICY, ObstructionPolicy
from .engine import PageHandle
from .logging import jlog

HIDDEN_ATTRIBUTE = "data-pc-hidden"
INJECTED_ATTRIBUTE = "data-pc-injected"
REF_ATTRIBUTE = "data-pc-ob"

OBSTRUCTION_SELECTORS = (
    # cookie / consent / privacy notices
    '[class*="cookie"]', '[id*="cookie"]',
    '[class*="consent"]', '[id*="consent"]',
    '[class*="gdpr"]', '[id*="gdpr"]',
    ".cc-banner", ".cc-window",
    '[class*="privacy"]', '[id*="privacy"]',
    # modals, popups and overlays
    '[class*="popup"]', '[id*="popup"]',
    '[class*="modal"]', '[class*="overlay"]',
    '[class*="layer_popup"]', '[class*="layerPopup"]',
    '[id*="layer_popup"]', '[id*="layerPopup"]',
    '[class*="dim_layer"]', '[class*="dimLayer"]',
    ".news_alert_wrap", "#news_alert",
    '[class*="floating"]',
    # paywalls and subscription walls
    '[class*="paywall"]', '[id*="paywall"]',
    '[class*="regwall"]', '[class*="subscription-wall"]', '[class*="subscribe-modal"]',
    # app install banners
    '[class*="app-banner"]', '[class*="appBanner"]', '[class*="app_banner"]',
    '[class*="smart-banner"]', '[class*="smartBanner"]',
)

STRUCTURAL_TAGS = frozenset({"html", "body", "header", "nav", "main", "article", "section", "footer", "aside"})
CONTENT_TOKENS = ("content", "article", "main", "container", "wrapper", "body", "post", "news")

OBSTRUCTION_SNAPSHOT_SCRIPT = r"""
(args) => {
  const nodes = [];
  const seen = new Set();
  const attrOf = (el, name) => el.getAttribute(name) || '';
  const vw = window.innerWidth || document.documentElement.clientWidth || 0;
  const vh = window.innerHeight || document.documentElement.clientHeight || 0;

  const collect = (el, matched, style) => {
    if (seen.has(el)) return;
    seen.add(el);
    const ref = nodes.length;
    const st = style || window.getComputedStyle(el);
    const rect = el.getBoundingClientRect();
    el.setAttribute(args.refAttribute, args.token + '-' + ref);
    nodes.push({
      ref,
      tag: el.tagName.toLowerCase(),
      id: el.id || '',
      className: attrOf(el, 'class'),
      matched,
      childCount: el.children.length,
      textLength: (el.textContent || '').trim().length,
      position: st.position,
      zIndex: st.zIndex,
      opacity: st.opacity,
      backgroundColor: st.backgroundColor,
      width: rect.width,
      height: rect.height,
      hidden: el.hasAttribute(args.hiddenAttribute),
      injected: !!el.closest('[' + args.injectedAttribute + ']') || !!el.querySelector('[' + args.injectedAttribute + ']'),
      adMarkup: el.tagName.toLowerCase() === 'ins'
        || el.classList.contains('adsbygoogle')
        || (el.id || '').includes('google_ads')
        || (el.id || '').includes('ad-slot')
        || el.hasAttribute('data-ad-slot'),
    });
  };

  for (const sel of args.selectors) {
    try {
      document.querySelectorAll(sel).forEach((el) => collect(el, true));
    } catch (e) {}
  }
  for (const el of document.querySelectorAll('body *')) {
    if (seen.has(el)) continue;
    const st = window.getComputedStyle(el);
    if (st.position === 'fixed' || st.position === 'absolute') collect(el, false, st);
  }

  return { viewportWidth: vw, viewportHeight: vh, nodes };
}
"""

HIDE_SCRIPT = r"""
(args) => {
  let hidden = 0;
  for (const marker of args.markers) {
    const el = document.querySelector('[' + args.refAttribute + '="' + marker + '"]');
    if (!el || el.hasAttribute(args.hiddenAttribute)) continue;
    el.style.setProperty('display', 'none', 'important');
    el.style.setProperty('visibility', 'hidden', 'important');
    el.setAttribute(args.hiddenAttribute, '1');
    hidden += 1;
  }
  for (const el of [document.documentElement, document.body]) {
    if (!el) continue;
    el.style.setProperty('overflow', 'auto', 'important');
    el.style.setProperty('overflow-y', 'auto', 'important');
  }
  return hidden;
}
"""

_RGBA_RE = re.compile(r"rgba?\(\s*[\d.]+\s*,\s*[\d.]+\s*,\s*[\d.]+\s*(?:,\s*([\d.]+)\s*)?\)")


def _background_alpha(color: str) -> float:
    match = _RGBA_RE.match((color or "").strip())
    if not match:
        return 1.0
    return float(match.group(1)) if match.group(1) is not None else 1.0


def _z_index(value: str) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class OverlayNode:
    """One obstruction candidate captured by :data:`OBSTRUCTION_SNAPSHOT_SCRIPT`."""

    ref: int
    tag: str
    id: str = ""
    class_name: str = ""
    matched: bool = False
    child_count: int = 0
    text_length: int = 0
    position: str = "static"
    z_index: int | None = None
    opacity: float = 1.0
    background_alpha: float = 1.0
    width: float = 0.0
    height: float = 0.0
    hidden: bool = False
    injected: bool = False
    ad_markup: bool = False

    @classmethod
    def from_payload(cls, item: dict[str, Any]) -> OverlayNode:
        try:
            opacity = float(item.get("opacity", 1))
        except (TypeError, ValueError):
            opacity = 1.0
        return cls(
            ref=int(item["ref"]),
            tag=str(item.get("tag") or "").lower(),
            id=str(item.get("id") or ""),
            class_name=str(item.get("className") or ""),
            matched=bool(item.get("matched")),
            child_count=int(item.get("childCount") or 0),
            text_length=int(item.get("textLength") or 0),
            position=str(item.get("position") or "static"),
            z_index=_z_index(item.get("zIndex")),
            opacity=opacity,
            background_alpha=_background_alpha(str(item.get("backgroundColor") or "")),
            width=float(item.get("width") or 0),
            height=float(item.get("height") or 0),
            hidden=bool(item.get("hidden")),
            injected=bool(item.get("injected")),
            ad_markup=bool(item.get("adMarkup")),
        )


@dataclass(frozen=True)
class OverlaySnapshot:
    viewport_width: int
    viewport_height: int
    nodes: tuple[OverlayNode, ...] = ()
    token: str = ""

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None, token: str = "") -> OverlaySnapshot:
        payload = payload or {}
        return cls(
            viewport_width=int(payload.get("viewportWidth") or 0),
            viewport_height=int(payload.get("viewportHeight") or 0),
            nodes=tuple(OverlayNode.from_payload(item) for item in payload.get("nodes") or ()),
            token=token,
        )


def is_protected(node: OverlayNode, policy: ObstructionPolicy = DEFAULT_OBSTRUCTION_POLICY) -> bool:
    """Return True when ``node`` must stay visible whatever it matched."""

    if node.hidden or node.injected or node.ad_markup:
        return True
    if node.tag in STRUCTURAL_TAGS:
        return True
    if node.child_count >= policy.content_min_children:
        names = f"{node.id} {node.class_name}".lower()
        if any(token in names for token in CONTENT_TOKENS):
            return True
    return node.text_length > policy.content_text_threshold


def _is_high_layer(node: OverlayNode, policy: ObstructionPolicy) -> bool:
    return node.position == "fixed" and node.z_index is not None and node.z_index > policy.fixed_z_index_threshold


def _is_backdrop(node: OverlayNode, snapshot: OverlaySnapshot, policy: ObstructionPolicy) -> bool:
    if node.position not in ("fixed", "absolute"):
        return False
    translucent = 0 < node.opacity < 1 or 0 < node.background_alpha < 1
    if not translucent or not snapshot.viewport_width or not snapshot.viewport_height:
        return False
    return (
        node.width >= snapshot.viewport_width * policy.backdrop_width_ratio
        and node.height >= snapshot.viewport_height * policy.backdrop_height_ratio
    )


def plan_hidden_refs(snapshot: OverlaySnapshot, policy: ObstructionPolicy = DEFAULT_OBSTRUCTION_POLICY) -> list[int]:
    """Pick the refs to hide: curated matches, high fixed layers and backdrops, minus protected nodes."""

    refs: list[int] = []
    for node in snapshot.nodes:
        if is_protected(node, policy):
            continue
        if node.matched or _is_high_layer(node, policy) or _is_backdrop(node, snapshot, policy):
            refs.append(node.ref)
    return refs


async def clear_obstructions(page: PageHandle, *, policy: ObstructionPolicy = DEFAULT_OBSTRUCTION_POLICY) -> int:
    """Hide obstructions on ``page`` (best effort) and return how many were newly hidden."""

    token = uuid.uuid4().hex[:8]
    try:
        payload = await page.evaluate(
            OBSTRUCTION_SNAPSHOT_SCRIPT,
            {
                "token": token,
                "selectors": list(OBSTRUCTION_SELECTORS),
                "refAttribute": REF_ATTRIBUTE,
                "hiddenAttribute": HIDDEN_ATTRIBUTE,
                "injectedAttribute": INJECTED_ATTRIBUTE,
            },
        )
        snapshot = OverlaySnapshot.from_payload(payload, token)
        refs = plan_hidden_refs(snapshot, policy)
        hidden = await page.evaluate(
            HIDE_SCRIPT,
            {
                "markers": [f"{token}-{ref}" for ref in refs],
                "refAttribute": REF_ATTRIBUTE,
                "hiddenAttribute": HIDDEN_ATTRIBUTE,
            },
        )
    except Exception as exc:
        jlog("warning", event="obstruction_clear_error", error=str(exc))
        return 0
    jlog("info", event="obstructions_cleared", candidates=len(snapshot.nodes), hidden=int(hidden or 0))
    return int(hidden or 0)


__all__ = [
    "HIDDEN_ATTRIBUTE",
    "INJECTED_ATTRIBUTE",
    "OBSTRUCTION_SELECTORS",
    "OverlayNode",
    "OverlaySnapshot",
    "clear_obstructions",
    "is_protected",
    "plan_hidden_refs",
]

"""Ad slot detection over a live publisher page.

Detection runs in two halves. ``SNAPSHOT_SCRIPT`` walks the DOM once inside
the page and returns a compact record for every element that could plausibly
be an ad slot (ad tags, iframes and their parents, ad-looking containers and
IAB-sized boxes). :func:`rank_slots` then applies the detection strategies and
the confidence adjustments in pure Python, so the heuristics can be exercised
against serialized fixtures without a browser.

Strategies, in claim order (an element contributes to at most one slot):

A. ``ins.adsbygoogle`` tags                               base 100
B. Google ad-network iframes (90) and their parents (85)
B2. banner-sized non-embed iframes (60, 80 with an ad hint) and parents (55/75)
C. class/id/data-attribute ad containers                  base 70
D. ``div/section/aside/figure`` boxes near an IAB size     base 50
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .config import DEFAULT_DETECTION_POLICY, DetectionPolicy
from .engine import PageHandle
from .logging import jlog


class SlotKind(str, Enum):
    GOOGLE_AD_TAG = "google-ad-tag"
    GOOGLE_AD_IFRAME = "google-ad-iframe"
    GENERIC_AD_CONTAINER = "generic-ad-container"
    IAB_SIZE_MATCH = "iab-size-match"


BASE_GOOGLE_AD_TAG = 100
BASE_GOOGLE_AD_IFRAME = 90
BASE_GOOGLE_AD_IFRAME_PARENT = 85
BASE_HINTED_IFRAME = 80
BASE_HINTED_IFRAME_PARENT = 75
BASE_AD_CONTAINER = 70
BASE_PLAIN_IFRAME = 60
BASE_PLAIN_IFRAME_PARENT = 55
BASE_SIZE_MATCH = 50

GOOGLE_IFRAME_ID_MARKERS = ("google_ads", "aswift_")
GOOGLE_IFRAME_SRC_MARKERS = ("doubleclick.net", "googlesyndication")
CONTENT_EMBED_MARKERS = ("youtube.com", "vimeo.com", "tv.naver.com", "play.naver.com")
SRC_AD_HINTS = ("ad", "banner", "mobon", "cauly", "dable", "criteo")
CLASS_AD_HINTS = ("ad", "banner")

AD_CLASS_PATTERNS = (
    "ad-slot", "adSlot", "ad_slot",
    "ad-banner", "adBanner", "ad_banner",
    "ad-container", "adContainer", "ad_container",
    "ad-wrapper", "adWrapper", "ad_wrapper",
    "ad-box", "adBox", "ad_box",
    "advertisement", "google-ad",
    "banner",
    "zc-banner", "zdk", "mobon", "cauly", "dable",
    "ad_content", "adContent",
    "sponsor", "commercial",
)
AD_ID_PATTERNS = (
    "ad-slot", "ad_slot", "adSlot",
    "ad-banner", "ad_banner", "adBanner",
    "ad-container", "ad_container",
    "advertisement", "banner",
    "div-gpt-ad",
    "sponsor", "commercial",
)
AD_EXACT_CLASSES = ("ads_area", "ad_area", "ads-area", "ad-area")
AD_EXACT_IDS = ("ad_area", "ad-area")
AD_DATA_ATTRIBUTES = ("data-ad", "data-ad-slot", "data-ad-unit", "data-google-query-id")
SIZE_MATCH_TAGS = ("div", "section", "aside", "figure")

SLOT_ATTRIBUTE = "data-pc-slot"

SNAPSHOT_SCRIPT = r"""
(args) => {
  const nodes = [];
  const refs = new Map();
  const attrOf = (el, name) => el.getAttribute(name) || '';

  const looksAdRelated = (el) => {
    const cls = attrOf(el, 'class');
    const id = el.id || '';
    if (args.classPatterns.some((p) => cls.includes(p))) return true;
    if (args.idPatterns.some((p) => id.includes(p))) return true;
    if (args.dataAttrs.some((a) => el.hasAttribute(a))) return true;
    const classList = cls.split(/\s+/);
    if (args.exactClasses.some((c) => classList.includes(c))) return true;
    return args.exactIds.includes(id);
  };

  const nearStandardSize = (rect) =>
    args.sizes.some(([w, h, tol]) => Math.abs(rect.width - w) <= tol && Math.abs(rect.height - h) <= tol);

  const register = (el, rect) => {
    if (refs.has(el)) return refs.get(el);
    const ref = nodes.length;
    refs.set(el, ref);
    const box = rect || el.getBoundingClientRect();
    const style = window.getComputedStyle(el);
    const marker = args.token + '-' + ref;
    el.setAttribute(args.slotAttribute, marker);
    nodes.push({
      ref,
      tag: el.tagName.toLowerCase(),
      id: el.id || '',
      className: attrOf(el, 'class'),
      src: typeof el.src === 'string' ? el.src : attrOf(el, 'src'),
      dataAttrs: args.dataAttrs.filter((a) => el.hasAttribute(a)),
      x: box.x,
      y: box.y,
      width: box.width,
      height: box.height,
      position: style.position,
      display: style.display,
      visibility: style.visibility,
      opacity: style.opacity,
      mediaCount: el.querySelectorAll('img, iframe, canvas').length,
      textLength: (el.textContent || '').trim().length,
      parentRef: null,
      selector: '[' + args.slotAttribute + '="' + marker + '"]',
    });
    return ref;
  };

  for (const el of document.querySelectorAll('*')) {
    const tag = el.tagName.toLowerCase();
    if (tag === 'ins' || tag === 'iframe' || looksAdRelated(el)) {
      register(el);
    } else if (args.boxTags.includes(tag)) {
      const rect = el.getBoundingClientRect();
      if (rect.width >= args.minBoxWidth && rect.height >= args.minBoxHeight && nearStandardSize(rect)) {
        register(el, rect);
      }
    }
    if (tag === 'iframe' && el.parentElement) {
      const parentRef = register(el.parentElement);
      nodes[refs.get(el)].parentRef = parentRef;
    }
  }

  return { viewportHeight: window.innerHeight || 0, nodes };
}
"""


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class DomNode:
    """One element captured by :data:`SNAPSHOT_SCRIPT`."""

    ref: int
    tag: str
    selector: str = ""
    id: str = ""
    class_name: str = ""
    src: str = ""
    data_attrs: tuple[str, ...] = ()
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    position: str = "static"
    display: str = "block"
    visibility: str = "visible"
    opacity: float = 1.0
    media_count: int = 0
    text_length: int = 0
    parent_ref: int | None = None

    @classmethod
    def from_payload(cls, item: dict[str, Any]) -> DomNode:
        return cls(
            ref=int(item["ref"]),
            tag=str(item.get("tag") or "").lower(),
            selector=str(item.get("selector") or ""),
            id=str(item.get("id") or ""),
            class_name=str(item.get("className") or ""),
            src=str(item.get("src") or ""),
            data_attrs=tuple(item.get("dataAttrs") or ()),
            x=_to_float(item.get("x")),
            y=_to_float(item.get("y")),
            width=_to_float(item.get("width")),
            height=_to_float(item.get("height")),
            position=str(item.get("position") or "static"),
            display=str(item.get("display") or "block"),
            visibility=str(item.get("visibility") or "visible"),
            opacity=_to_float(item.get("opacity"), 1.0),
            media_count=int(item.get("mediaCount") or 0),
            text_length=int(item.get("textLength") or 0),
            parent_ref=item.get("parentRef"),
        )

    @property
    def classes(self) -> list[str]:
        return self.class_name.split()

    @property
    def is_fixed(self) -> bool:
        return self.position in ("fixed", "sticky")

    @property
    def is_hidden(self) -> bool:
        return self.display == "none" or self.visibility == "hidden" or self.opacity == 0


@dataclass(frozen=True)
class DomSnapshot:
    viewport_height: int
    nodes: tuple[DomNode, ...] = ()

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> DomSnapshot:
        payload = payload or {}
        nodes = tuple(DomNode.from_payload(item) for item in payload.get("nodes") or ())
        return cls(viewport_height=int(payload.get("viewportHeight") or 0), nodes=nodes)


@dataclass(frozen=True)
class DetectedSlot:
    """A candidate ad placement, ready to be handed to the injector."""

    selector: str
    tag_name: str
    width: int
    height: int
    x: int
    y: int
    kind: SlotKind
    confidence: int
    is_fixed: bool

    @property
    def area(self) -> int:
        return self.width * self.height

    def describe(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "width": self.width,
            "height": self.height,
            "confidence": self.confidence,
            "is_fixed": self.is_fixed,
        }


def score_confidence(
    base: int,
    *,
    width: float,
    height: float,
    top: float,
    is_fixed: bool,
    viewport_height: int,
    policy: DetectionPolicy = DEFAULT_DETECTION_POLICY,
) -> int:
    """Apply the area, fixed-position and viewport adjustments to ``base``."""

    area = width * height
    if area >= 200 * 200:
        area_bonus = 30
    elif area >= 600 * 80:
        area_bonus = 25
    elif area >= 200 * 80:
        area_bonus = 15
    else:
        area_bonus = -20
    fixed_penalty = policy.fixed_penalty if is_fixed else 0
    in_viewport = 0 <= top < viewport_height
    visibility_bonus = policy.in_viewport_bonus if in_viewport else policy.out_of_viewport_penalty
    return base + area_bonus + fixed_penalty + visibility_bonus


@dataclass
class _SlotCollector:
    viewport_height: int
    policy: DetectionPolicy
    claimed: set[int] = field(default_factory=set)
    slots: list[DetectedSlot] = field(default_factory=list)

    def add(self, node: DomNode | None, kind: SlotKind, base: int) -> None:
        if node is None or node.ref in self.claimed:
            return
        self.claimed.add(node.ref)
        if node.width < self.policy.min_raw_width or node.height < self.policy.min_raw_height:
            return
        if node.is_hidden:
            return
        self.slots.append(
            DetectedSlot(
                selector=node.selector,
                tag_name=node.tag,
                width=round(node.width),
                height=round(node.height),
                x=round(node.x),
                y=round(node.y),
                kind=kind,
                confidence=score_confidence(
                    base,
                    width=node.width,
                    height=node.height,
                    top=node.y,
                    is_fixed=node.is_fixed,
                    viewport_height=self.viewport_height,
                    policy=self.policy,
                ),
                is_fixed=node.is_fixed,
            )
        )


def _is_google_ad_iframe(node: DomNode) -> bool:
    return any(m in node.id for m in GOOGLE_IFRAME_ID_MARKERS) or any(m in node.src for m in GOOGLE_IFRAME_SRC_MARKERS)


def is_content_embed(src: str) -> bool:
    lowered = (src or "").lower()
    return any(marker in lowered for marker in CONTENT_EMBED_MARKERS)


def has_ad_hint(node: DomNode) -> bool:
    src = node.src.lower()
    ident = node.id.lower()
    cls = node.class_name.lower()
    return any(h in src for h in SRC_AD_HINTS) or "ad" in ident or any(h in cls for h in CLASS_AD_HINTS)


def is_ad_container(node: DomNode) -> bool:
    if any(p in node.class_name for p in AD_CLASS_PATTERNS):
        return True
    if any(p in node.id for p in AD_ID_PATTERNS):
        return True
    if node.data_attrs:
        return True
    if any(c in node.classes for c in AD_EXACT_CLASSES):
        return True
    return node.id in AD_EXACT_IDS


def _in_banner_range(node: DomNode, policy: DetectionPolicy) -> bool:
    return (
        policy.banner_iframe_min_width <= node.width <= policy.banner_iframe_max_width
        and policy.banner_iframe_min_height <= node.height <= policy.banner_iframe_max_height
    )


def rank_slots(snapshot: DomSnapshot, policy: DetectionPolicy = DEFAULT_DETECTION_POLICY) -> list[DetectedSlot]:
    """Run every strategy over ``snapshot`` and return slots by confidence, best first."""

    viewport_height = snapshot.viewport_height or policy.fallback_viewport_height
    collector = _SlotCollector(viewport_height=viewport_height, policy=policy)
    by_ref = {node.ref: node for node in snapshot.nodes}
    nodes = sorted(snapshot.nodes, key=lambda n: n.ref)

    # A: platform ad tags
    for node in nodes:
        if node.tag == "ins" and "adsbygoogle" in node.classes:
            collector.add(node, SlotKind.GOOGLE_AD_TAG, BASE_GOOGLE_AD_TAG)

    # B: ad-network iframes and their wrapping containers
    for node in nodes:
        if node.tag == "iframe" and _is_google_ad_iframe(node):
            collector.add(node, SlotKind.GOOGLE_AD_IFRAME, BASE_GOOGLE_AD_IFRAME)
            if node.parent_ref is not None:
                collector.add(by_ref.get(node.parent_ref), SlotKind.GOOGLE_AD_IFRAME, BASE_GOOGLE_AD_IFRAME_PARENT)

    # B2: any banner-sized iframe that is not an embedded player
    for node in nodes:
        if node.tag != "iframe" or node.ref in collector.claimed:
            continue
        if not _in_banner_range(node, policy) or is_content_embed(node.src):
            continue
        hinted = has_ad_hint(node)
        collector.add(node, SlotKind.GENERIC_AD_CONTAINER, BASE_HINTED_IFRAME if hinted else BASE_PLAIN_IFRAME)
        if node.parent_ref is not None:
            collector.add(
                by_ref.get(node.parent_ref),
                SlotKind.GENERIC_AD_CONTAINER,
                BASE_HINTED_IFRAME_PARENT if hinted else BASE_PLAIN_IFRAME_PARENT,
            )

    # C: class/id heuristics
    for node in nodes:
        if is_ad_container(node):
            collector.add(node, SlotKind.GENERIC_AD_CONTAINER, BASE_AD_CONTAINER)

    # D: IAB standard sizes with media and little text
    for node in nodes:
        if node.tag not in SIZE_MATCH_TAGS or node.ref in collector.claimed:
            continue
        if node.width < policy.size_match_min_width or node.height < policy.size_match_min_height:
            continue
        if not any(size.matches(node.width, node.height) for size in policy.iab_sizes):
            continue
        if node.media_count > 0 and node.text_length < policy.size_match_max_text:
            collector.add(node, SlotKind.IAB_SIZE_MATCH, BASE_SIZE_MATCH)

    return sorted(collector.slots, key=lambda s: s.confidence, reverse=True)


def select_slots(ranked: list[DetectedSlot], policy: DetectionPolicy = DEFAULT_DETECTION_POLICY) -> list[DetectedSlot]:
    """Drop slots below the minimum useful size, keeping the largest one if nothing survives."""

    filtered = [s for s in ranked if s.width >= policy.min_slot_width and s.height >= policy.min_slot_height]
    if not filtered and ranked:
        return [max(ranked, key=lambda s: s.area)]
    return filtered


def snapshot_args(policy: DetectionPolicy, token: str) -> dict[str, Any]:
    return {
        "token": token,
        "slotAttribute": SLOT_ATTRIBUTE,
        "sizes": [[s.width, s.height, s.tolerance] for s in policy.iab_sizes],
        "classPatterns": list(AD_CLASS_PATTERNS),
        "idPatterns": list(AD_ID_PATTERNS),
        "exactClasses": list(AD_EXACT_CLASSES),
        "exactIds": list(AD_EXACT_IDS),
        "dataAttrs": list(AD_DATA_ATTRIBUTES),
        "boxTags": list(SIZE_MATCH_TAGS),
        "minBoxWidth": policy.size_match_min_width,
        "minBoxHeight": policy.size_match_min_height,
    }


async def take_snapshot(page: PageHandle, policy: DetectionPolicy = DEFAULT_DETECTION_POLICY) -> DomSnapshot:
    token = uuid.uuid4().hex[:8]
    payload = await page.evaluate(SNAPSHOT_SCRIPT, snapshot_args(policy, token))
    return DomSnapshot.from_payload(payload)


async def detect_ad_slots(page: PageHandle, *, policy: DetectionPolicy = DEFAULT_DETECTION_POLICY) -> list[DetectedSlot]:
    """Detect, score and filter ad slots on the current page."""

    snapshot = await take_snapshot(page, policy)
    ranked = rank_slots(snapshot, policy)
    selected = select_slots(ranked, policy)
    jlog(
        "info",
        event="slots_detected",
        snapshot_nodes=len(snapshot.nodes),
        raw_slots=len(ranked),
        selected_slots=len(selected),
        slots=[s.describe() for s in selected],
    )
    return selected


__all__ = [
    "DetectedSlot",
    "DomNode",
    "DomSnapshot",
    "SNAPSHOT_SCRIPT",
    "SlotKind",
    "detect_ad_slots",
    "has_ad_hint",
    "is_ad_container",
    "is_content_embed",
    "rank_slots",
    "score_confidence",
    "select_slots",
    "take_snapshot",
]

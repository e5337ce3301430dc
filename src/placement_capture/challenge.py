"""Detect bot-protection interstitials and wait for them to clear."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .config import DEFAULT_CHALLENGE_MAX_WAIT_MS, DEFAULT_CHALLENGE_POLL_MS
from .engine import PageHandle
from .logging import jlog

CHALLENGE_TEXT_PATTERNS = (
    "just a moment",
    "checking your browser",
    "verify you are human",
    "verifying you are human",
    "attention required",
    "ddos protection",
    "your connection needs to be verified",
    "please enable javascript and cookies",
    "access denied",
    "press & hold",
)

CHALLENGE_MARKERS = (
    "#challenge-form",
    "#challenge-running",
    "#cf-challenge-running",
    ".cf-browser-verification",
    'iframe[src*="challenges.cloudflare.com"]',
    'input[name="cf-turnstile-response"]',
    "#px-captcha",
    "#ddos-protection",
    'iframe[src*="captcha-delivery.com"]',
)

# Below both limits the page has not rendered real content yet.
THIN_CONTENT_MAX_TEXT = 500
THIN_CONTENT_MAX_IMAGES = 3

PROBE_SCRIPT = r"""
(markers) => {
  const body = document.body;
  const text = body ? (body.innerText || body.textContent || '') : '';
  const found = [];
  for (const sel of markers) {
    try {
      if (document.querySelector(sel)) found.push(sel);
    } catch (e) {}
  }
  return {
    title: document.title || '',
    text: text.slice(0, 2000),
    textLength: text.trim().length,
    imageCount: document.images ? document.images.length : 0,
    markers: found,
  };
}
"""


@dataclass(frozen=True)
class ChallengeProbe:
    title: str = ""
    text: str = ""
    text_length: int = 0
    image_count: int = 0
    markers: tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> ChallengeProbe:
        payload = payload or {}
        return cls(
            title=str(payload.get("title") or ""),
            text=str(payload.get("text") or ""),
            text_length=int(payload.get("textLength") or 0),
            image_count=int(payload.get("imageCount") or 0),
            markers=tuple(payload.get("markers") or ()),
        )

    @property
    def thin_content(self) -> bool:
        return self.text_length < THIN_CONTENT_MAX_TEXT and self.image_count < THIN_CONTENT_MAX_IMAGES

    @property
    def text_signature(self) -> str | None:
        haystack = f"{self.title}\n{self.text}".lower()
        for pattern in CHALLENGE_TEXT_PATTERNS:
            if pattern in haystack:
                return pattern
        return None


def looks_like_challenge(probe: ChallengeProbe) -> bool:
    """A marker or text signature only counts while the page has no real content yet."""

    return bool(probe.markers or probe.text_signature) and probe.thin_content


@dataclass(frozen=True)
class ChallengeOutcome:
    detected: bool
    cleared: bool
    waited_ms: int


async def probe_challenge(page: PageHandle) -> ChallengeProbe:
    return ChallengeProbe.from_payload(await page.evaluate(PROBE_SCRIPT, list(CHALLENGE_MARKERS)))


async def wait_for_challenge(
    page: PageHandle,
    *,
    max_wait_ms: int = DEFAULT_CHALLENGE_MAX_WAIT_MS,
    poll_ms: int = DEFAULT_CHALLENGE_POLL_MS,
) -> ChallengeOutcome:
    """Poll until the interstitial is gone or ``max_wait_ms`` elapses; never raises."""

    try:
        probe = await probe_challenge(page)
    except Exception as exc:
        jlog("warning", event="challenge_probe_error", error=str(exc))
        return ChallengeOutcome(detected=False, cleared=True, waited_ms=0)
    if not looks_like_challenge(probe):
        return ChallengeOutcome(detected=False, cleared=True, waited_ms=0)

    jlog("info", event="challenge_detected", signature=probe.text_signature, markers=list(probe.markers))
    waited = 0
    while waited < max_wait_ms:
        await page.wait(poll_ms)
        waited += poll_ms
        try:
            probe = await probe_challenge(page)
        except Exception as exc:
            # Navigations away from the interstitial destroy the execution context.
            jlog("info", event="challenge_probe_retry", error=str(exc))
            continue
        if not looks_like_challenge(probe):
            jlog("info", event="challenge_cleared", waited_ms=waited)
            return ChallengeOutcome(detected=True, cleared=True, waited_ms=waited)

    jlog("warning", event="challenge_timeout", waited_ms=waited, max_wait_ms=max_wait_ms)
    return ChallengeOutcome(detected=True, cleared=False, waited_ms=waited)


__all__ = [
    "CHALLENGE_MARKERS",
    "CHALLENGE_TEXT_PATTERNS",
    "ChallengeOutcome",
    "ChallengeProbe",
    "looks_like_challenge",
    "probe_challenge",
    "wait_for_challenge",
]

"""Tunable constants and policy bundles for the capture pipeline.

Every threshold below was tuned against live publisher pages; the defaults can
be overridden through environment variables, and the policy dataclasses can be
replaced wholesale by callers that need different behaviour.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

# ============================
# Timeouts & delays (ms)
# ============================
DEFAULT_PAGE_TIMEOUT_MS = int(os.getenv("PAGE_TIMEOUT_MS", "30000"))  # top-level navigations
DEFAULT_WAIT_UNTIL = os.getenv("PAGE_WAIT_UNTIL", "load")
DEFAULT_SETTLE_MS = int(os.getenv("SETTLE_MS", "4000"))  # after publisher load, ads included
DEFAULT_STABILIZE_MS = int(os.getenv("STABILIZE_MS", "2000"))  # after DOM mutation
DEFAULT_IMAGE_TIMEOUT_MS = int(os.getenv("IMAGE_TIMEOUT_MS", "10000"))
DEFAULT_CHALLENGE_MAX_WAIT_MS = int(os.getenv("CHALLENGE_MAX_WAIT_MS", "15000"))
DEFAULT_CHALLENGE_POLL_MS = int(os.getenv("CHALLENGE_POLL_MS", "1000"))
DEFAULT_LANDING_SETTLE_MS = int(os.getenv("LANDING_SETTLE_MS", "2000"))
DEFAULT_LANDING_WAIT_UNTIL = os.getenv("LANDING_WAIT_UNTIL", "networkidle")

# ============================
# Browser
# ============================
DEFAULT_VIEWPORT_WIDTH = int(os.getenv("VIEWPORT_WIDTH", "1920"))
DEFAULT_VIEWPORT_HEIGHT = int(os.getenv("VIEWPORT_HEIGHT", "1080"))
DEFAULT_DEVICE_SCALE_FACTOR = int(os.getenv("DEVICE_SCALE_FACTOR", "1"))
DEFAULT_LAUNCH_RETRIES = int(os.getenv("LAUNCH_RETRIES", "3"))
DEFAULT_RETRY_BASE_MS = int(os.getenv("RETRY_BASE_MS", "2000"))

# ============================
# Lazy-load sweep
# ============================
DEFAULT_SCROLL_SWEEP_VIEWPORTS = int(os.getenv("SCROLL_SWEEP_VIEWPORTS", "5"))
DEFAULT_SCROLL_STEP_PAUSE_MS = int(os.getenv("SCROLL_STEP_PAUSE_MS", "300"))

# ============================
# Creative acquisition
# ============================
DEFAULT_CREATIVE_TIMEOUT_S = float(os.getenv("CREATIVE_TIMEOUT_S", "20"))
MAX_CREATIVE_BYTES = int(os.getenv("MAX_CREATIVE_BYTES", str(10 * 1024 * 1024)))
DEFAULT_USER_AGENT = os.getenv(
    "CAPTURE_USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
)


@dataclass(frozen=True)
class IabSize:
    width: int
    height: int
    tolerance: int

    def matches(self, width: float, height: float) -> bool:
        return abs(width - self.width) <= self.tolerance and abs(height - self.height) <= self.tolerance


IAB_STANDARD_SIZES: tuple[IabSize, ...] = (
    IabSize(300, 250, 30),
    IabSize(336, 280, 30),
    IabSize(728, 90, 30),
    IabSize(970, 250, 30),
    IabSize(970, 90, 30),
    IabSize(160, 600, 30),
    IabSize(120, 600, 30),
    IabSize(250, 250, 20),
)


@dataclass(frozen=True)
class DetectionPolicy:
    """Thresholds used by the ad-slot detector and its scoring pass."""

    min_raw_width: int = 50
    min_raw_height: int = 20
    min_slot_width: int = int(os.getenv("MIN_SLOT_WIDTH", "200"))
    min_slot_height: int = int(os.getenv("MIN_SLOT_HEIGHT", "80"))
    banner_iframe_min_width: int = 200
    banner_iframe_max_width: int = 1200
    banner_iframe_min_height: int = 50
    banner_iframe_max_height: int = 700
    size_match_min_width: int = 100
    size_match_min_height: int = 30
    size_match_max_text: int = 200
    fixed_penalty: int = -40
    in_viewport_bonus: int = 10
    out_of_viewport_penalty: int = -5
    fallback_viewport_height: int = 900
    iab_sizes: tuple[IabSize, ...] = IAB_STANDARD_SIZES


@dataclass(frozen=True)
class ObstructionPolicy:
    """Thresholds used when hiding popups, banners and backdrops."""

    content_text_threshold: int = 500
    content_min_children: int = 3
    fixed_z_index_threshold: int = 999
    backdrop_width_ratio: float = 0.8
    backdrop_height_ratio: float = 0.5


@dataclass(frozen=True)
class FallbackPolicy:
    """Size window for the last-resort banner replacement."""

    min_width: int = 200
    max_width: int = 1200
    min_height: int = 50
    max_height: int = 700


@dataclass(frozen=True)
class Viewport:
    width: int = DEFAULT_VIEWPORT_WIDTH
    height: int = DEFAULT_VIEWPORT_HEIGHT
    device_scale_factor: int = DEFAULT_DEVICE_SCALE_FACTOR
    is_mobile: bool = False


@dataclass(frozen=True)
class CaptureSettings:
    """Per-run timing and policy knobs for one capture pipeline."""

    page_timeout_ms: int = DEFAULT_PAGE_TIMEOUT_MS
    wait_until: str = DEFAULT_WAIT_UNTIL
    settle_ms: int = DEFAULT_SETTLE_MS
    stabilize_ms: int = DEFAULT_STABILIZE_MS
    image_timeout_ms: int = DEFAULT_IMAGE_TIMEOUT_MS
    challenge_max_wait_ms: int = DEFAULT_CHALLENGE_MAX_WAIT_MS
    challenge_poll_ms: int = DEFAULT_CHALLENGE_POLL_MS
    landing_wait_until: str = DEFAULT_LANDING_WAIT_UNTIL
    landing_settle_ms: int = DEFAULT_LANDING_SETTLE_MS
    scroll_sweep_viewports: int = DEFAULT_SCROLL_SWEEP_VIEWPORTS
    scroll_step_pause_ms: int = DEFAULT_SCROLL_STEP_PAUSE_MS
    debug_html: bool = False
    detection: DetectionPolicy = field(default_factory=DetectionPolicy)
    obstruction: ObstructionPolicy = field(default_factory=ObstructionPolicy)
    fallback: FallbackPolicy = field(default_factory=FallbackPolicy)


DEFAULT_DETECTION_POLICY = DetectionPolicy()
DEFAULT_OBSTRUCTION_POLICY = ObstructionPolicy()
DEFAULT_FALLBACK_POLICY = FallbackPolicy()


__all__ = [
    "CaptureSettings",
    "DEFAULT_DETECTION_POLICY",
    "DEFAULT_FALLBACK_POLICY",
    "DEFAULT_OBSTRUCTION_POLICY",
    "DetectionPolicy",
    "FallbackPolicy",
    "IAB_STANDARD_SIZES",
    "IabSize",
    "ObstructionPolicy",
    "Viewport",
]

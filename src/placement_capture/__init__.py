"""Force a creative into live publisher pages and capture the placement."""

from .channels import CHANNELS, ChannelPolicy, get_channel
from .config import CaptureSettings, DetectionPolicy, FallbackPolicy, ObstructionPolicy, Viewport
from .creative import CreativeAsset, fetch_creative
from .detector import DetectedSlot, SlotKind, detect_ad_slots, rank_slots, score_confidence, select_slots
from .errors import BrowserLaunchError, CaptureError, NavigationError, UnsupportedChannelError
from .injector import InjectionMethod, InjectionResult, inject_creative, inject_fallback_banner
from .logging import capture_log, jlog
from .models import CaptureDiagnostics, CaptureRequest, CaptureResult, InjectionMode
from .obstructions import clear_obstructions
from .pipeline import InjectionPlan, capture_placement, execute_capture
from .versioning import get_capture_version

__all__ = [
    "BrowserLaunchError",
    "CHANNELS",
    "CaptureDiagnostics",
    "CaptureError",
    "CaptureRequest",
    "CaptureResult",
    "CaptureSettings",
    "ChannelPolicy",
    "CreativeAsset",
    "DetectedSlot",
    "DetectionPolicy",
    "FallbackPolicy",
    "InjectionMethod",
    "InjectionMode",
    "InjectionPlan",
    "InjectionResult",
    "NavigationError",
    "ObstructionPolicy",
    "SlotKind",
    "UnsupportedChannelError",
    "Viewport",
    "capture_log",
    "capture_placement",
    "clear_obstructions",
    "detect_ad_slots",
    "execute_capture",
    "fetch_creative",
    "get_capture_version",
    "get_channel",
    "inject_creative",
    "inject_fallback_banner",
    "jlog",
    "rank_slots",
    "score_confidence",
    "select_slots",
]

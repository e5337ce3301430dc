"""Exception types raised by the capture pipeline."""

from __future__ import annotations


class CaptureError(RuntimeError):
    """Base class for failures that abort a capture attempt."""


class NavigationError(CaptureError):
    """The publisher or landing page could not be loaded within its timeout."""


class BrowserLaunchError(CaptureError):
    """The browser process could not be started."""


class UnsupportedChannelError(CaptureError, ValueError):
    """The request names a channel with no capture policy."""


__all__ = ["BrowserLaunchError", "CaptureError", "NavigationError", "UnsupportedChannelError"]

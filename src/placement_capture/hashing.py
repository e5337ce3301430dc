"""Screenshot fingerprinting utilities."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from io import BytesIO

from PIL import Image


@dataclass(frozen=True)
class ScreenshotDigest:
    sha256: str
    width: int
    height: int
    file_bytes: int


def digest_png(png_bytes: bytes) -> ScreenshotDigest:
    """Hash a screenshot and read its pixel dimensions."""

    if not png_bytes:
        raise ValueError("empty screenshot payload")
    with Image.open(BytesIO(png_bytes)) as im:
        width, height = im.size
    return ScreenshotDigest(
        sha256=hashlib.sha256(png_bytes).hexdigest(),
        width=width,
        height=height,
        file_bytes=len(png_bytes),
    )


__all__ = ["ScreenshotDigest", "digest_png"]

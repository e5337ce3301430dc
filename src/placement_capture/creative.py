"""Download a creative image and turn it into an injectable source."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from io import BytesIO

import requests
from PIL import Image, UnidentifiedImageError

from .config import DEFAULT_CREATIVE_TIMEOUT_S, DEFAULT_USER_AGENT, MAX_CREATIVE_BYTES
from .logging import jlog

PIL_FORMAT_TO_MIME = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
}
DEFAULT_CONTENT_TYPE = "image/png"


@dataclass(frozen=True)
class CreativeAsset:
    """The creative as the injector sees it.

    ``src`` is a ``data:`` URL when the bytes were downloaded (CSP and CORS
    cannot block it), otherwise the remote URL the page must fetch itself.
    """

    url: str
    src: str
    downloaded: bool
    content_type: str | None = None
    size_bytes: int = 0
    width: int | None = None
    height: int | None = None

    def decode(self) -> bytes:
        """Return the raw image bytes carried by a ``data:`` source."""

        if not self.src.startswith("data:"):
            raise ValueError("creative was not downloaded; src is a remote URL")
        _, _, payload = self.src.partition(",")
        return base64.b64decode(payload)


def make_http(user_agent: str = DEFAULT_USER_AGENT, referer: str | None = None) -> requests.Session:
    s = requests.Session()
    s.headers.update({"User-Agent": user_agent, "Accept": "image/*,*/*;q=0.8"})
    if referer:
        s.headers["Referer"] = referer
    return s


def to_data_url(data: bytes, content_type: str) -> str:
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


def sniff_image(data: bytes) -> tuple[str | None, int | None, int | None]:
    """Return ``(mime, width, height)`` from the image bytes, or Nones if Pillow cannot read them."""

    try:
        with Image.open(BytesIO(data)) as im:
            return PIL_FORMAT_TO_MIME.get(im.format or ""), im.width, im.height
    except (UnidentifiedImageError, OSError, ValueError):
        return None, None, None


def _header_content_type(resp: requests.Response) -> str | None:
    value = (resp.headers.get("Content-Type") or "").split(";", 1)[0].strip().lower()
    return value if value.startswith("image/") else None


def build_asset(url: str, data: bytes, header_type: str | None = None) -> CreativeAsset:
    sniffed, width, height = sniff_image(data)
    content_type = header_type or sniffed or DEFAULT_CONTENT_TYPE
    return CreativeAsset(
        url=url,
        src=to_data_url(data, content_type),
        downloaded=True,
        content_type=content_type,
        size_bytes=len(data),
        width=width,
        height=height,
    )


def remote_asset(url: str) -> CreativeAsset:
    return CreativeAsset(url=url, src=url, downloaded=False)


def fetch_creative(
    url: str,
    *,
    http: requests.Session | None = None,
    timeout_s: float = DEFAULT_CREATIVE_TIMEOUT_S,
    max_bytes: int = MAX_CREATIVE_BYTES,
) -> CreativeAsset:
    """Download ``url`` into a ``data:`` URL; fall back to the remote URL on any failure."""

    http = http or make_http()
    try:
        resp = http.get(url, timeout=timeout_s)
        resp.raise_for_status()
        data = resp.content
        if not data:
            raise ValueError("empty response body")
        if len(data) > max_bytes:
            raise ValueError(f"creative is {len(data)} bytes, limit is {max_bytes}")
        asset = build_asset(url, data, _header_content_type(resp))
    except (requests.RequestException, ValueError) as exc:
        jlog("warning", event="creative_download_failed", url=url, error=str(exc))
        return remote_asset(url)
    jlog(
        "info",
        event="creative_downloaded",
        url=url,
        bytes=asset.size_bytes,
        content_type=asset.content_type,
        width=asset.width,
        height=asset.height,
    )
    return asset


__all__ = ["CreativeAsset", "build_asset", "fetch_creative", "make_http", "remote_asset", "sniff_image", "to_data_url"]

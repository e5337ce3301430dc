"""Google Cloud Storage helpers for screenshots and uploaded creatives."""

from __future__ import annotations

import secrets
import time
from typing import Mapping

from google.cloud import storage  # type: ignore[attr-defined]

from .config import MAX_CREATIVE_BYTES
from .logging import jlog

PUBLIC_BASE_URL = "https://storage.googleapis.com"
CREATIVE_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}


def _now_ms() -> int:
    return int(time.time() * 1000)


def placement_path(bucket: str, capture_id: str, ts_ms: int | None = None) -> str:
    return f"gs://{bucket}/captures/{capture_id}/placement_{ts_ms or _now_ms()}.png"


def landing_path(bucket: str, capture_id: str, ts_ms: int | None = None) -> str:
    return f"gs://{bucket}/captures/{capture_id}/landing_{ts_ms or _now_ms()}.png"


def creative_path(bucket: str, content_type: str, ts_ms: int | None = None, suffix: str | None = None) -> str:
    ext = CREATIVE_EXTENSIONS[content_type]
    return f"gs://{bucket}/creatives/creative_{ts_ms or _now_ms()}_{suffix or secrets.token_hex(4)}.{ext}"


def _split(gs_path: str) -> tuple[str, str]:
    if not gs_path.startswith("gs://"):
        raise ValueError(f"not a gs:// path: {gs_path!r}")
    bucket, _, name = gs_path[len("gs://") :].partition("/")
    if not bucket or not name:
        raise ValueError(f"gs:// path needs a bucket and an object name: {gs_path!r}")
    return bucket, name


def public_url(gs_path: str) -> str:
    bucket, name = _split(gs_path)
    return f"{PUBLIC_BASE_URL}/{bucket}/{name}"


def _upload(
    storage_client: storage.Client,
    blob_path: str,
    payload: bytes,
    content_type: str,
    metadata: Mapping[str, str] | None,
    *,
    dry_run: bool = False,
) -> str:
    bucket_name, name = _split(blob_path)
    if dry_run:
        jlog("info", event="dry_run_upload", path=blob_path, bytes=len(payload))
        return blob_path
    bucket = storage_client.bucket(bucket_name)
    blob = bucket.blob(name)
    blob.cache_control = "public, max-age=31536000, immutable"
    blob.metadata = dict(metadata or {})
    blob.upload_from_string(payload, content_type=content_type)
    jlog("info", event="uploaded", path=blob_path, bytes=len(payload), content_type=content_type)
    return blob_path


def upload_png(
    storage_client: storage.Client,
    blob_path: str,
    png_bytes: bytes,
    metadata: Mapping[str, str] | None = None,
    *,
    dry_run: bool = False,
) -> str:
    return _upload(storage_client, blob_path, png_bytes, "image/png", metadata, dry_run=dry_run)


def upload_creative(
    storage_client: storage.Client,
    bucket_name: str,
    data: bytes,
    content_type: str,
    *,
    max_bytes: int = MAX_CREATIVE_BYTES,
    dry_run: bool = False,
) -> str:
    """Store a user-supplied creative and return its public URL."""

    content_type = (content_type or "").split(";", 1)[0].strip().lower()
    if content_type not in CREATIVE_EXTENSIONS:
        raise ValueError(f"unsupported creative type {content_type!r}; expected one of {sorted(CREATIVE_EXTENSIONS)}")
    if not data:
        raise ValueError("creative upload is empty")
    if len(data) > max_bytes:
        raise ValueError(f"creative is {len(data)} bytes, limit is {max_bytes}")
    path = creative_path(bucket_name, content_type)
    _upload(storage_client, path, data, content_type, None, dry_run=dry_run)
    return public_url(path)


__all__ = [
    "CREATIVE_EXTENSIONS",
    "creative_path",
    "landing_path",
    "placement_path",
    "public_url",
    "upload_creative",
    "upload_png",
]

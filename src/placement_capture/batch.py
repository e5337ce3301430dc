"""
Sequential batch runner for placement captures.

Each capture row moves ``pending -> processing -> completed | failed``. One
browser engine serves the whole batch: it is launched lazily when the first
row is claimed and closed exactly once when the batch ends. Every capture gets
its own page (and browser context), so a crashed publisher page never leaks
state into the next capture.

Outputs per completed capture:
- ``gs://<bucket>/captures/<id>/placement_<ms>.png`` (+ ``landing_<ms>.png``)
- ``captures`` row updated with public URLs and
  ``metadata = {capturedAt, durationMs, diagnostics}``

Runs without Postgres too: ``--publisher-url`` with ``--no-db`` keeps the
rows in memory and ``--output-dir`` writes the PNGs locally.
"""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, field
from typing import Any, Sequence

import requests
from google.cloud import storage  # type: ignore[attr-defined]

from .config import (
    DEFAULT_DEVICE_SCALE_FACTOR,
    DEFAULT_LAUNCH_RETRIES,
    DEFAULT_PAGE_TIMEOUT_MS,
    DEFAULT_RETRY_BASE_MS,
    DEFAULT_SETTLE_MS,
    DEFAULT_USER_AGENT,
    DEFAULT_VIEWPORT_HEIGHT,
    DEFAULT_VIEWPORT_WIDTH,
    CaptureSettings,
    Viewport,
)
from .creative import make_http, sniff_image
from .db.postgres import (
    CaptureStore,
    PostgresCaptureStore,
    ensure_schema,
    insert_pending_captures,
    list_capture_ids,
    sql_connect,
)
from .engine import BrowserEngine
from .hashing import digest_png
from .logging import jlog, log_exception, logging_context
from .metadata import build_capture_metadata
from .models import CaptureRequest, CaptureResult, InjectionMode
from .pipeline import execute_capture
from .playwright import BrowserProfile, PlaywrightEngine
from .storage import landing_path, placement_path, public_url, upload_creative, upload_png

# ============================
# Constants & defaults
# ============================
DEFAULT_PROJECT_ID = os.getenv("GCP_PROJECT_ID", "")
DEFAULT_GCS_BUCKET = os.getenv("GCS_BUCKET", "capture-images")
DEFAULT_SQL_CONN = os.getenv("CLOUD_SQL_CONN", "")
DEFAULT_BATCH_LIMIT = int(os.getenv("BATCH_LIMIT", "20"))


# ============================
# Argument parsing
# ============================


@dataclass(frozen=True)
class CliArgs:
    project_id: str
    gcs_bucket: str
    sql_conn: str
    db_host: str | None
    db_port: int | None
    no_db: bool
    capture_ids: list[str]
    limit: int
    publisher_urls: list[str]
    creative_url: str | None
    upload_creative_path: str | None
    click_url: str | None
    channel: str
    capture_landing: bool
    injection_mode: str
    slot_count: int
    user_agent: str
    viewport_width: int
    viewport_height: int
    device_scale_factor: int
    page_timeout_ms: int
    settle_ms: int
    launch_retries: int
    retry_base_ms: int
    output_dir: str | None
    dry_run: bool
    debug_html: bool
    init_db: bool = False


def validate_args(args: argparse.Namespace) -> None:
    if args.publisher_url and not (args.creative_url or args.upload_creative):
        raise ValueError("--publisher-url needs --creative-url or --upload-creative")
    if args.no_db and not args.publisher_url:
        raise ValueError("--no-db only works with --publisher-url")
    if args.no_db and args.capture_id:
        raise ValueError("--capture-id reads rows from the database; drop --no-db")
    if args.no_db and args.init_db:
        raise ValueError("--init-db needs a database; drop --no-db")
    if args.slot_count < 1:
        raise ValueError("--slot-count must be >= 1")
    if args.capture_landing and not args.click_url and args.publisher_url:
        jlog("warning", event="landing_without_click_url", message="--capture-landing is ignored without --click-url")


def parse_args(argv: Sequence[str] | None = None) -> CliArgs:
    p = argparse.ArgumentParser(description="Capture publisher pages with a creative forced into their ad slots")
    p.add_argument("--project-id", default=DEFAULT_PROJECT_ID)
    p.add_argument("--gcs-bucket", default=DEFAULT_GCS_BUCKET)
    p.add_argument("--sql-conn", default=DEFAULT_SQL_CONN)
    p.add_argument("--db-host")
    p.add_argument("--db-port", type=int)
    p.add_argument("--no-db", action="store_true", help="Keep ad-hoc capture rows in memory instead of Postgres.")
    p.add_argument("--init-db", action="store_true", help="Create the captures table if it does not exist.")
    p.add_argument("--capture-id", action="append", default=[], help="Process this captures row (repeatable).")
    p.add_argument(
        "--limit",
        type=int,
        default=DEFAULT_BATCH_LIMIT,
        help="How many pending rows to process when no --capture-id/--publisher-url is given.",
    )
    p.add_argument("--publisher-url", action="append", default=[], help="Enqueue and capture this page (repeatable).")
    p.add_argument("--creative-url")
    p.add_argument("--upload-creative", help="Upload a local creative file to GCS and use its public URL.")
    p.add_argument("--click-url")
    p.add_argument("--channel", default="gdn")
    p.add_argument("--capture-landing", action="store_true")
    p.add_argument("--injection-mode", choices=[m.value for m in InjectionMode], default=InjectionMode.SINGLE.value)
    p.add_argument("--slot-count", type=int, default=1, help="Target injections for --injection-mode custom.")
    p.add_argument("--user-agent", default=DEFAULT_USER_AGENT)
    p.add_argument("--viewport-width", type=int, default=DEFAULT_VIEWPORT_WIDTH)
    p.add_argument("--viewport-height", type=int, default=DEFAULT_VIEWPORT_HEIGHT)
    p.add_argument("--device-scale-factor", type=int, default=DEFAULT_DEVICE_SCALE_FACTOR)
    p.add_argument(
        "--page-timeout-ms",
        type=int,
        default=DEFAULT_PAGE_TIMEOUT_MS,
        help="Timeout (ms) for top-level page navigations (default from PAGE_TIMEOUT_MS env or 30000).",
    )
    p.add_argument(
        "--settle-ms",
        type=int,
        default=DEFAULT_SETTLE_MS,
        help="Delay (ms) after load so ad tags can render (default from SETTLE_MS env or 4000).",
    )
    p.add_argument("--launch-retries", type=int, default=DEFAULT_LAUNCH_RETRIES)
    p.add_argument("--retry-base-ms", type=int, default=DEFAULT_RETRY_BASE_MS)
    p.add_argument("--output-dir", help="Also write screenshots to this local directory.")
    p.add_argument("--dry-run", action="store_true", help="Do not write to DB or GCS; only run the capture path")
    p.add_argument(
        "--debug-html",
        action="store_true",
        help="Dump page HTML and the detected slot inventory to media/debug/ for debugging.",
    )

    ns = p.parse_args(argv)
    validate_args(ns)
    return CliArgs(
        project_id=ns.project_id,
        gcs_bucket=ns.gcs_bucket,
        sql_conn=ns.sql_conn,
        db_host=ns.db_host,
        db_port=ns.db_port,
        no_db=ns.no_db,
        capture_ids=list(ns.capture_id or []),
        limit=ns.limit,
        publisher_urls=list(ns.publisher_url or []),
        creative_url=ns.creative_url,
        upload_creative_path=ns.upload_creative,
        click_url=ns.click_url,
        channel=ns.channel,
        capture_landing=ns.capture_landing,
        injection_mode=ns.injection_mode,
        slot_count=ns.slot_count,
        user_agent=ns.user_agent,
        viewport_width=ns.viewport_width,
        viewport_height=ns.viewport_height,
        device_scale_factor=ns.device_scale_factor,
        page_timeout_ms=ns.page_timeout_ms,
        settle_ms=ns.settle_ms,
        launch_retries=ns.launch_retries,
        retry_base_ms=ns.retry_base_ms,
        output_dir=ns.output_dir,
        dry_run=ns.dry_run,
        debug_html=ns.debug_html,
        init_db=ns.init_db,
    )


def settings_from_args(args: CliArgs) -> CaptureSettings:
    return CaptureSettings(
        page_timeout_ms=args.page_timeout_ms,
        settle_ms=args.settle_ms,
        debug_html=args.debug_html,
    )


# ============================
# In-memory store
# ============================


@dataclass
class MemoryCaptureStore:
    """:class:`CaptureStore` for ad-hoc runs; rows live only for the process."""

    rows: dict[str, dict[str, Any]] = field(default_factory=dict)

    def add(self, **row: Any) -> str:
        capture_id = str(len(self.rows) + 1)
        self.rows[capture_id] = {"id": capture_id, "status": "pending", **row}
        return capture_id

    def fetch(self, capture_id: str) -> dict[str, Any] | None:
        row = self.rows.get(capture_id)
        return dict(row) if row is not None else None

    def mark_processing(self, capture_id: str) -> bool:
        row = self.rows.get(capture_id)
        if row is None or row["status"] != "pending":
            return False
        row["status"] = "processing"
        return True

    def mark_completed(self, capture_id: str, **fields: Any) -> None:
        self.rows[capture_id].update(status="completed", **fields)

    def mark_failed(self, capture_id: str, error_message: str) -> None:
        self.rows[capture_id].update(status="failed", error_message=error_message)


# ============================
# Persistence of one result
# ============================


def _write_local(output_dir: str, filename: str, png_bytes: bytes) -> None:
    os.makedirs(output_dir, exist_ok=True)
    with open(os.path.join(output_dir, filename), "wb") as fh:
        fh.write(png_bytes)


def persist_result(
    result: CaptureResult,
    request: CaptureRequest,
    capture_id: str,
    *,
    storage_client: storage.Client | None,
    bucket_name: str,
    dry_run: bool = False,
    output_dir: str | None = None,
) -> dict[str, Any]:
    """Upload the screenshots and return the fields for ``mark_completed``."""

    version = result.diagnostics.capture_version
    placement = placement_path(bucket_name, capture_id)
    digest = digest_png(result.placement_screenshot)
    md = build_capture_metadata(
        capture_id=capture_id,
        channel=request.channel,
        kind="placement",
        width=digest.width,
        height=digest.height,
        sha256=digest.sha256,
        capture_version=version,
        captured_at=result.captured_at,
        page_url=result.page_url,
        creative_url=request.creative_url,
        slots_injected=result.diagnostics.slots_injected,
        fallback_used=result.diagnostics.fallback_used,
    )
    if storage_client is not None or dry_run:
        upload_png(storage_client, placement, result.placement_screenshot, md, dry_run=dry_run)
    if output_dir:
        _write_local(output_dir, f"placement_{capture_id}.png", result.placement_screenshot)

    landing_url: str | None = None
    if result.landing_screenshot:
        landing = landing_path(bucket_name, capture_id)
        landing_digest = digest_png(result.landing_screenshot)
        landing_md = build_capture_metadata(
            capture_id=capture_id,
            channel=request.channel,
            kind="landing",
            width=landing_digest.width,
            height=landing_digest.height,
            sha256=landing_digest.sha256,
            capture_version=version,
            captured_at=result.captured_at,
            page_url=result.landing_url or request.click_url or "",
            click_url=request.click_url,
        )
        if storage_client is not None or dry_run:
            upload_png(storage_client, landing, result.landing_screenshot, landing_md, dry_run=dry_run)
        if output_dir:
            _write_local(output_dir, f"landing_{capture_id}.png", result.landing_screenshot)
        landing_url = public_url(landing)

    return {
        "placement_image_url": public_url(placement),
        "screenshot_storage_path": placement,
        "landing_image_url": landing_url,
        "landing_final_url": result.landing_url,
        "metadata": {
            "capturedAt": result.captured_at,
            "durationMs": result.duration_ms,
            "diagnostics": result.diagnostics.to_dict(),
        },
    }


# ============================
# Batch loop
# ============================


@dataclass
class BatchSummary:
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


async def run_batch(
    engine: BrowserEngine,
    store: CaptureStore,
    capture_ids: Sequence[str],
    *,
    storage_client: storage.Client | None,
    bucket_name: str,
    settings: CaptureSettings | None = None,
    http: requests.Session | None = None,
    dry_run: bool = False,
    output_dir: str | None = None,
) -> BatchSummary:
    """Process ``capture_ids`` one after another on a shared, lazily launched engine."""

    settings = settings or CaptureSettings()
    summary = BatchSummary()
    launched = False
    try:
        for capture_id in capture_ids:
            row = store.fetch(capture_id)
            if row is None:
                jlog("warning", event="capture_not_found", capture_id=capture_id)
                summary.skipped.append(capture_id)
                continue
            if row.get("status") != "pending" or not store.mark_processing(capture_id):
                jlog("info", event="capture_skipped", capture_id=capture_id, status=row.get("status"))
                summary.skipped.append(capture_id)
                continue

            with logging_context(capture_id=capture_id, channel=row.get("channel")):
                try:
                    request = CaptureRequest.from_row({**row, "id": capture_id})
                    if not launched:
                        await engine.launch()
                        launched = True
                        jlog("info", event="engine_started", batch_size=len(capture_ids))
                    result = await execute_capture(engine, request, settings=settings, http=http)
                    fields = persist_result(
                        result,
                        request,
                        capture_id,
                        storage_client=storage_client,
                        bucket_name=bucket_name,
                        dry_run=dry_run,
                        output_dir=output_dir,
                    )
                    store.mark_completed(capture_id, **fields)
                    summary.completed.append(capture_id)
                except Exception as exc:
                    log_exception("capture_error", exc, capture_id=capture_id)
                    store.mark_failed(capture_id, f"{type(exc).__name__}: {exc}")
                    summary.failed.append(capture_id)
    finally:
        if launched:
            try:
                await engine.close()
            except Exception as exc:
                jlog("warning", event="engine_close_error", error=str(exc))
    jlog(
        "info",
        event="batch_done",
        completed=len(summary.completed),
        failed=len(summary.failed),
        skipped=len(summary.skipped),
    )
    return summary


# ============================
# Entrypoint
# ============================


def _upload_local_creative(path: str, args: CliArgs, storage_client: storage.Client | None) -> str:
    with open(path, "rb") as fh:
        data = fh.read()
    content_type, _, _ = sniff_image(data)
    url = upload_creative(storage_client, args.gcs_bucket, data, content_type or "", dry_run=args.dry_run)
    jlog("info", event="creative_uploaded", path=path, url=url)
    return url


async def run(
    args: CliArgs,
    *,
    storage_client: storage.Client | None = None,
    engine: BrowserEngine | None = None,
    con=None,
) -> BatchSummary:
    """Execute a capture batch for the supplied CLI arguments."""

    if storage_client is None and not args.dry_run:
        storage_client = storage.Client(project=args.project_id or None)
    engine = engine or PlaywrightEngine(
        viewport=Viewport(
            width=args.viewport_width,
            height=args.viewport_height,
            device_scale_factor=args.device_scale_factor,
        ),
        profile=BrowserProfile(user_agent=args.user_agent),
        launch_retries=args.launch_retries,
        retry_base_ms=args.retry_base_ms,
        page_timeout_ms=args.page_timeout_ms,
    )
    jlog("info", event="gcp_context", project_id=args.project_id, gcs_bucket=args.gcs_bucket, dry_run=args.dry_run)

    creative_url = args.creative_url
    if args.upload_creative_path:
        creative_url = _upload_local_creative(args.upload_creative_path, args, storage_client)

    row = {
        "channel": args.channel,
        "creative_url": creative_url,
        "click_url": args.click_url,
        "capture_landing": args.capture_landing,
        "injection_mode": args.injection_mode,
        "slot_count": args.slot_count,
    }

    owns_con = False
    store: CaptureStore
    try:
        if args.no_db or (args.dry_run and args.publisher_urls):
            # A dry run never inserts rows, so ad-hoc URLs are tracked in memory.
            memory = MemoryCaptureStore()
            capture_ids = [memory.add(publisher_url=url, **row) for url in args.publisher_urls]
            store = memory
        else:
            if con is None:
                con = sql_connect(args.sql_conn, args.db_host, args.db_port)
                owns_con = True
            if args.init_db:
                ensure_schema(con, dry_run=args.dry_run)
            store = PostgresCaptureStore(con, dry_run=args.dry_run)
            if args.publisher_urls:
                capture_ids = insert_pending_captures(con, publisher_urls=args.publisher_urls, dry_run=args.dry_run, **row)
            else:
                capture_ids = args.capture_ids or list_capture_ids(con, status="pending", limit=args.limit)
        jlog("info", event="batch_start", count=len(capture_ids))
        return await run_batch(
            engine,
            store,
            capture_ids,
            storage_client=storage_client,
            bucket_name=args.gcs_bucket,
            settings=settings_from_args(args),
            http=make_http(args.user_agent),
            dry_run=args.dry_run,
            output_dir=args.output_dir,
        )
    finally:
        if owns_con and con is not None:
            con.close()


__all__ = [
    "BatchSummary",
    "CliArgs",
    "MemoryCaptureStore",
    "parse_args",
    "persist_result",
    "run",
    "run_batch",
    "settings_from_args",
    "validate_args",
]

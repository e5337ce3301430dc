import asyncio

import pytest
import requests

from placement_capture.batch import MemoryCaptureStore, parse_args, persist_result, run, run_batch
from placement_capture.config import CaptureSettings
from placement_capture.models import CaptureDiagnostics, CaptureRequest, CaptureResult

SETTINGS = CaptureSettings(settle_ms=0, stabilize_ms=0, scroll_step_pause_ms=0)
CREATIVE_URL = "https://cdn.example.com/creative.png"


class _OfflineHttp:
    """Creative downloads fail, so captures inject the remote URL."""

    def get(self, url, timeout=None):
        raise requests.ConnectionError("offline")


def _store(*urls, **row):
    store = MemoryCaptureStore()
    ids = [store.add(publisher_url=url, creative_url=CREATIVE_URL, **row) for url in urls]
    return store, ids


def _run(engine, store, ids, **kw):
    kw.setdefault("storage_client", None)
    kw.setdefault("bucket_name", "bucket")
    return asyncio.run(run_batch(engine, store, ids, settings=SETTINGS, http=_OfflineHttp(), **kw))


def test_batch_shares_one_engine_and_completes_rows(make_page, make_engine):
    engine = make_engine(make_page)
    store, ids = _store("https://a.example.com", "https://b.example.com", channel="gdn")
    summary = _run(engine, store, ids)

    assert summary.completed == ["1", "2"]
    assert engine.launches == 1
    assert engine.closes == 1
    assert len(engine.pages) == 2
    assert all(p.closed for p in engine.pages)
    row = store.rows["1"]
    assert row["status"] == "completed"
    assert row["placement_image_url"].startswith("https://storage.googleapis.com/bucket/captures/1/placement_")
    assert row["metadata"]["diagnostics"]["creative_downloaded"] is False
    assert row["landing_image_url"] is None


def test_failed_capture_is_recorded_and_batch_continues(make_page, make_engine):
    pages = iter([make_page(goto_error=RuntimeError("net::ERR_CONNECTION_RESET")), make_page()])
    engine = make_engine(lambda: next(pages))
    store, ids = _store("https://down.example.com", "https://up.example.com")
    summary = _run(engine, store, ids)

    assert summary.failed == ["1"]
    assert summary.completed == ["2"]
    assert store.rows["1"]["status"] == "failed"
    assert store.rows["1"]["error_message"].startswith("NavigationError:")
    assert engine.closes == 1


def test_unprocessable_rows_never_launch_a_browser(make_page, make_engine):
    engine = make_engine(make_page)
    store, ids = _store("https://a.example.com")
    store.rows["1"]["status"] = "completed"
    summary = _run(engine, store, ids + ["999"])

    assert summary.skipped == ["1", "999"]
    assert engine.launches == 0
    assert engine.closes == 0


def test_invalid_row_fails_without_stopping_the_batch(make_page, make_engine):
    engine = make_engine(make_page)
    store, ids = _store("not a url", "https://ok.example.com")
    summary = _run(engine, store, ids)
    assert summary.failed == ["1"]
    assert summary.completed == ["2"]
    assert "ValueError" in store.rows["1"]["error_message"]


def test_launch_failure_fails_claimed_rows(make_page, make_engine):
    engine = make_engine(make_page, launch_error=RuntimeError("chromium missing"))
    store, ids = _store("https://a.example.com")
    summary = _run(engine, store, ids)
    assert summary.failed == ["1"]
    assert "chromium missing" in store.rows["1"]["error_message"]
    assert engine.closes == 0


def test_persist_result_writes_local_copies(tmp_path, make_png):
    png = make_png(width=64, height=48)
    request = CaptureRequest(
        publisher_url="https://news.example.com",
        creative_url=CREATIVE_URL,
        click_url="https://brand.example.com",
        capture_landing=True,
    )
    result = CaptureResult(
        placement_screenshot=png,
        captured_at="2025-01-01T00:00:00+00:00",
        page_url=request.publisher_url,
        diagnostics=CaptureDiagnostics(slots_injected=1, capture_version="capture:test"),
        landing_screenshot=png,
        landing_url="https://brand.example.com/home",
        duration_ms=1234,
    )
    fields = persist_result(
        result, request, "7", storage_client=None, bucket_name="bucket", dry_run=True, output_dir=str(tmp_path)
    )

    assert fields["screenshot_storage_path"].startswith("gs://bucket/captures/7/placement_")
    assert fields["landing_image_url"].startswith("https://storage.googleapis.com/bucket/captures/7/landing_")
    assert fields["landing_final_url"] == "https://brand.example.com/home"
    assert fields["metadata"]["durationMs"] == 1234
    assert fields["metadata"]["diagnostics"]["slots_injected"] == 1
    assert (tmp_path / "placement_7.png").read_bytes() == png
    assert (tmp_path / "landing_7.png").exists()


def test_parse_args_requires_a_creative_for_ad_hoc_urls():
    with pytest.raises(ValueError, match="creative"):
        parse_args(["--publisher-url", "https://a.example.com"])
    with pytest.raises(ValueError, match="--no-db"):
        parse_args(["--no-db"])


def test_parse_args_collects_repeatable_flags():
    args = parse_args(
        [
            "--no-db",
            "--publisher-url",
            "https://a.example.com",
            "--publisher-url",
            "https://b.example.com",
            "--creative-url",
            CREATIVE_URL,
            "--injection-mode",
            "custom",
            "--slot-count",
            "3",
        ]
    )
    assert args.publisher_urls == ["https://a.example.com", "https://b.example.com"]
    assert args.injection_mode == "custom"
    assert args.slot_count == 3


def test_run_without_database(make_page, make_engine, tmp_path, monkeypatch):
    monkeypatch.setattr("placement_capture.batch.make_http", lambda *a, **k: _OfflineHttp())
    args = parse_args(
        [
            "--no-db",
            "--dry-run",
            "--publisher-url",
            "https://a.example.com",
            "--creative-url",
            CREATIVE_URL,
            "--output-dir",
            str(tmp_path),
            "--settle-ms",
            "0",
        ]
    )
    engine = make_engine(make_page)
    summary = asyncio.run(run(args, engine=engine))
    assert summary.completed == ["1"]
    assert (tmp_path / "placement_1.png").exists()


class _SchemaConnection:
    def __init__(self):
        self.executed = []
        self.commits = 0

    def cursor(self):
        return self

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        self.executed.append(" ".join(sql.split()))

    def fetchall(self):
        return []

    def commit(self):
        self.commits += 1


def test_init_db_creates_the_table_before_listing_rows(make_page, make_engine, monkeypatch):
    monkeypatch.setattr("placement_capture.batch.make_http", lambda *a, **k: _OfflineHttp())
    con = _SchemaConnection()
    engine = make_engine(make_page)
    summary = asyncio.run(run(parse_args(["--init-db"]), storage_client=object(), engine=engine, con=con))

    assert con.executed[0].startswith("CREATE TABLE IF NOT EXISTS captures")
    assert con.executed[1].startswith("SELECT id FROM captures")
    assert con.commits == 1
    assert summary.completed == []
    assert engine.launches == 0


def test_init_db_needs_a_database():
    with pytest.raises(ValueError, match="--init-db"):
        parse_args(["--no-db", "--init-db", "--publisher-url", "https://a.example.com", "--creative-url", CREATIVE_URL])


def test_upload_creative_in_dry_run_injects_the_public_url(make_page, make_engine, tmp_path, make_png, monkeypatch):
    monkeypatch.setattr("placement_capture.batch.make_http", lambda *a, **k: _OfflineHttp())
    creative = tmp_path / "creative.png"
    creative.write_bytes(make_png(width=300, height=250))
    args = parse_args(
        [
            "--no-db",
            "--dry-run",
            "--publisher-url",
            "https://a.example.com",
            "--upload-creative",
            str(creative),
            "--settle-ms",
            "0",
        ]
    )
    summary = asyncio.run(run(args, engine=make_engine(make_page)))
    assert summary.completed == ["1"]

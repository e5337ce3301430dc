"""Postgres persistence helpers for capture requests."""

from __future__ import annotations

import os
from typing import Any, Optional, Protocol, Sequence

import psycopg2
from psycopg2.extras import Json

from ..logging import jlog

CAPTURE_STATUSES = ("pending", "processing", "completed", "failed")

CAPTURES_DDL = """
CREATE TABLE IF NOT EXISTS captures (
    id                       BIGSERIAL PRIMARY KEY,
    channel                  TEXT        NOT NULL DEFAULT 'gdn',
    publisher_url            TEXT        NOT NULL,
    creative_url             TEXT        NOT NULL,
    click_url                TEXT,
    capture_landing          BOOLEAN     NOT NULL DEFAULT FALSE,
    injection_mode           TEXT        NOT NULL DEFAULT 'single',
    slot_count               INTEGER     NOT NULL DEFAULT 1,
    status                   TEXT        NOT NULL DEFAULT 'pending',
    placement_image_url      TEXT,
    screenshot_storage_path  TEXT,
    landing_image_url        TEXT,
    landing_final_url        TEXT,
    metadata                 JSONB,
    error_message            TEXT,
    created_at               TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at               TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""

CAPTURE_COLUMNS = (
    "id",
    "channel",
    "publisher_url",
    "creative_url",
    "click_url",
    "capture_landing",
    "injection_mode",
    "slot_count",
    "status",
)


def sql_connect(sql_conn: str | None, db_host: str | None = None, db_port: int | None = None):
    """Return a psycopg2 connection using either TCP or a Cloud SQL socket."""

    dbname = os.getenv("DB_NAME", "capturedb")
    user = os.getenv("DB_USER", "postgres")
    password = os.getenv("DB_PASSWORD")
    if not password:
        raise RuntimeError("DB_PASSWORD environment variable is required for database connections")

    if db_host:
        return psycopg2.connect(
            host=db_host,
            port=db_port or 5432,
            dbname=dbname,
            user=user,
            password=password,
            connect_timeout=10,
            sslmode=os.getenv("DB_SSLMODE", "prefer"),
        )

    if not sql_conn:
        raise RuntimeError("sql_conn must be provided when db_host is not set")
    return psycopg2.connect(
        host=f"/cloudsql/{sql_conn}",
        dbname=dbname,
        user=user,
        password=password,
        connect_timeout=10,
    )


def ensure_schema(con, *, dry_run: bool = False) -> None:
    if dry_run:
        return
    with con.cursor() as cur:
        cur.execute(CAPTURES_DDL)
    con.commit()


def insert_pending_captures(
    con,
    *,
    publisher_urls: Sequence[str],
    creative_url: str,
    channel: str = "gdn",
    click_url: Optional[str] = None,
    capture_landing: bool = False,
    injection_mode: str = "single",
    slot_count: int = 1,
    dry_run: bool = False,
) -> list[str]:
    """Insert one ``pending`` row per publisher URL and return the new ids."""

    if dry_run:
        jlog("info", event="dry_run_insert_pending", channel=channel, urls=list(publisher_urls), creative_url=creative_url)
        return []
    ids: list[str] = []
    with con.cursor() as cur:
        for url in publisher_urls:
            cur.execute(
                """
                INSERT INTO captures(channel, publisher_url, creative_url, click_url, capture_landing,
                                     injection_mode, slot_count, status)
                VALUES (%s, %s, %s, %s, %s, %s, %s, 'pending')
                RETURNING id
                """,
                (channel, url, creative_url, click_url, capture_landing, injection_mode, slot_count),
            )
            ids.append(str(cur.fetchone()[0]))
    con.commit()
    jlog("info", event="captures_enqueued", channel=channel, count=len(ids), ids=ids)
    return ids


def fetch_capture(con, capture_id: str) -> dict[str, Any] | None:
    with con.cursor() as cur:
        cur.execute(f"SELECT {', '.join(CAPTURE_COLUMNS)} FROM captures WHERE id=%s", (capture_id,))
        row = cur.fetchone()
    if row is None:
        return None
    return dict(zip(CAPTURE_COLUMNS, row))


def list_capture_ids(con, *, status: str = "pending", limit: int = 20) -> list[str]:
    if status not in CAPTURE_STATUSES:
        raise ValueError(f"unknown capture status: {status!r}")
    with con.cursor() as cur:
        cur.execute(
            "SELECT id FROM captures WHERE status=%s ORDER BY created_at ASC LIMIT %s",
            (status, limit),
        )
        rows = cur.fetchall()
    return [str(r[0]) for r in rows]


def mark_processing(con, capture_id: str, *, dry_run: bool = False) -> bool:
    """Claim a pending row; returns False when another worker got there first."""

    if dry_run:
        jlog("info", event="dry_run_status", capture_id=capture_id, status="processing")
        return True
    with con.cursor() as cur:
        cur.execute(
            """
            UPDATE captures
               SET status='processing',
                   updated_at=NOW()
             WHERE id=%s AND status='pending'
            RETURNING id
            """,
            (capture_id,),
        )
        claimed = cur.fetchone() is not None
    con.commit()
    return claimed


def mark_completed(
    con,
    capture_id: str,
    *,
    placement_image_url: str,
    screenshot_storage_path: str,
    metadata: dict[str, Any],
    landing_image_url: Optional[str] = None,
    landing_final_url: Optional[str] = None,
    dry_run: bool = False,
) -> None:
    if dry_run:
        jlog(
            "info",
            event="dry_run_completed",
            capture_id=capture_id,
            placement_image_url=placement_image_url,
            landing_image_url=landing_image_url,
        )
        return
    assert screenshot_storage_path.startswith("gs://"), "screenshot_storage_path must be a gs:// path"
    with con.cursor() as cur:
        cur.execute(
            """
            UPDATE captures
               SET status='completed',
                   placement_image_url=%s,
                   screenshot_storage_path=%s,
                   landing_image_url=%s,
                   landing_final_url=%s,
                   metadata=%s,
                   error_message=NULL,
                   updated_at=NOW()
             WHERE id=%s
            """,
            (
                placement_image_url,
                screenshot_storage_path,
                landing_image_url,
                landing_final_url,
                Json(metadata),
                capture_id,
            ),
        )
    con.commit()
    jlog("info", event="capture_completed", capture_id=capture_id, placement_image_url=placement_image_url)


def mark_failed(con, capture_id: str, error_message: str, *, dry_run: bool = False) -> None:
    if dry_run:
        jlog("info", event="dry_run_status", capture_id=capture_id, status="failed", error=error_message)
        return
    with con.cursor() as cur:
        cur.execute(
            """
            UPDATE captures
               SET status='failed',
                   error_message=%s,
                   updated_at=NOW()
             WHERE id=%s
            """,
            (error_message, capture_id),
        )
    con.commit()
    jlog("error", event="capture_failed", capture_id=capture_id, error=error_message)


class CaptureStore(Protocol):
    def fetch(self, capture_id: str) -> dict[str, Any] | None: ...

    def mark_processing(self, capture_id: str) -> bool: ...

    def mark_completed(self, capture_id: str, **fields: Any) -> None: ...

    def mark_failed(self, capture_id: str, error_message: str) -> None: ...


class PostgresCaptureStore:
    """:class:`CaptureStore` over a psycopg2 connection."""

    def __init__(self, con, *, dry_run: bool = False) -> None:
        self.con = con
        self.dry_run = dry_run

    def fetch(self, capture_id: str) -> dict[str, Any] | None:
        return fetch_capture(self.con, capture_id)

    def mark_processing(self, capture_id: str) -> bool:
        return mark_processing(self.con, capture_id, dry_run=self.dry_run)

    def mark_completed(self, capture_id: str, **fields: Any) -> None:
        mark_completed(self.con, capture_id, dry_run=self.dry_run, **fields)

    def mark_failed(self, capture_id: str, error_message: str) -> None:
        mark_failed(self.con, capture_id, error_message, dry_run=self.dry_run)


__all__ = [
    "CAPTURES_DDL",
    "CAPTURE_STATUSES",
    "CaptureStore",
    "PostgresCaptureStore",
    "ensure_schema",
    "fetch_capture",
    "insert_pending_captures",
    "list_capture_ids",
    "mark_completed",
    "mark_failed",
    "mark_processing",
    "sql_connect",
]

"""Operator-facing record of uploads that could not be processed."""

from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from config.settings import DEFAULT_UPLOAD_MAX_RETRIES
from db.migrations import ensure_failed_uploads_table

STATUS_PENDING = "pending"
STATUS_FAILED = "failed"
STATUS_RESOLVED = "resolved"


def _utc_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


@dataclass(frozen=True)
class FailedUpload:
    id: int
    filename: str
    mime_type: str | None
    error_message: str | None
    retry_count: int
    last_attempt_at: str | None
    status: str
    created_at: str
    updated_at: str

    def to_dict(self):
        return asdict(self)


class FailedUploadStore:
    """Counter-only failure policy; uploads are never retried automatically."""

    def __init__(self, db_path: str, *, clock=_utc_now):
        self.db_path = db_path
        self._clock = clock
        conn = self._connect()
        try:
            ensure_failed_uploads_table(conn)
        finally:
            conn.close()

    def _connect(self):
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def _fetch(self, cur, record_id):
        cur.execute("SELECT * FROM failed_uploads WHERE id=?", (record_id,))
        row = cur.fetchone()
        return FailedUpload(**dict(row)) if row else None

    def create_from_upload(self, filename, mime_type, error_message) -> FailedUpload:
        now = self._clock()
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO failed_uploads (
                    filename, mime_type, error_message, retry_count,
                    last_attempt_at, status, created_at, updated_at
                ) VALUES (?, ?, ?, 1, ?, ?, ?, ?)
                """,
                (filename, mime_type, error_message, now, STATUS_PENDING, now, now),
            )
            conn.commit()
            return self._fetch(cur, cur.lastrowid)
        finally:
            conn.close()

    def get(self, record_id) -> FailedUpload | None:
        conn = self._connect()
        try:
            return self._fetch(conn.cursor(), record_id)
        finally:
            conn.close()

    def find_pending(self, filename) -> FailedUpload | None:
        """Most recent ``pending`` record for ``filename``, if any."""
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM failed_uploads WHERE filename=? AND status=? ORDER BY id DESC LIMIT 1",
                (filename, STATUS_PENDING),
            )
            row = cur.fetchone()
            return FailedUpload(**dict(row)) if row else None
        finally:
            conn.close()

    def record_failure(self, filename, mime_type, error_message, *, max_retries=DEFAULT_UPLOAD_MAX_RETRIES) -> FailedUpload:
        """Count a failure against the open record for ``filename`` or open a new one."""
        existing = self.find_pending(filename)
        if existing is not None:
            updated = self.mark_failed(existing.id, error_message, max_retries=max_retries)
            if updated is not None:
                return updated
        return self.create_from_upload(filename, mime_type, error_message)

    def mark_failed(self, record_id, error_message, *, max_retries=DEFAULT_UPLOAD_MAX_RETRIES) -> FailedUpload | None:
        """Record another failed attempt.

        The status is decided on the count *before* the increment: a record
        already at ``max_retries`` becomes ``failed``.
        """
        now = self._clock()
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            cur.execute("SELECT retry_count FROM failed_uploads WHERE id=?", (record_id,))
            row = cur.fetchone()
            if not row:
                conn.rollback()
                return None
            count = int(row["retry_count"] or 0)
            status = STATUS_FAILED if count >= max_retries else STATUS_PENDING
            cur.execute(
                """
                UPDATE failed_uploads
                SET status=?, error_message=?, retry_count=?, last_attempt_at=?, updated_at=?
                WHERE id=?
                """,
                (status, error_message, count + 1, now, now, record_id),
            )
            conn.commit()
            return self._fetch(cur, record_id)
        finally:
            conn.close()

    def mark_resolved(self, record_id) -> FailedUpload | None:
        now = self._clock()
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                "UPDATE failed_uploads SET status=?, updated_at=? WHERE id=?",
                (STATUS_RESOLVED, now, record_id),
            )
            conn.commit()
            return self._fetch(cur, record_id)
        finally:
            conn.close()

    def _select(self, where="", params=()):
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(f"SELECT * FROM failed_uploads {where} ORDER BY id DESC", params)
            return [FailedUpload(**dict(row)) for row in cur.fetchall()]
        finally:
            conn.close()

    def pending(self) -> list[FailedUpload]:
        return self._select("WHERE status=?", (STATUS_PENDING,))

    def permanently_failed(self) -> list[FailedUpload]:
        return self._select("WHERE status=?", (STATUS_FAILED,))

    def list(self) -> list[FailedUpload]:
        return self._select()

    def delete(self, record_id) -> bool:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("DELETE FROM failed_uploads WHERE id=?", (record_id,))
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

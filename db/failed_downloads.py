"""Durable ledger of failed downloads and their retry/backoff state."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone

from config.settings import DEFAULT_MAX_RETRIES, RETRY_BASE_DELAY_MINUTES, RETRY_BATCH_SIZE
from db.migrations import ensure_failed_downloads_table

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_RETRYING = "retrying"
STATUS_FAILED = "failed"
STATUS_RESOLVED = "resolved"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).replace(microsecond=0).isoformat()


def compute_next_retry_delay(retry_count: int) -> timedelta:
    """Backoff applied when a record with ``retry_count`` fails again.

    The delay is ``5 * 2**(retry_count + 1)`` minutes: 10, 20, 40, 80, 160 for
    counts 0 through 4.
    """
    return timedelta(minutes=RETRY_BASE_DELAY_MINUTES * 2 ** (int(retry_count) + 1))


@dataclass(frozen=True)
class FailedDownload:
    id: int
    url: str
    method: str | None
    error_message: str | None
    retry_count: int
    last_attempt_at: str | None
    next_retry_at: str | None
    status: str
    created_at: str
    updated_at: str

    def to_dict(self):
        return asdict(self)


class FailedDownloadStore:
    def __init__(self, db_path: str, *, clock=_utc_now):
        self.db_path = db_path
        self._clock = clock
        conn = self._connect()
        try:
            ensure_failed_downloads_table(conn)
        finally:
            conn.close()

    def _connect(self):
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def _now(self) -> datetime:
        return self._clock()

    @staticmethod
    def _row_to_record(row):
        if not row:
            return None
        return FailedDownload(**dict(row))

    def _fetch(self, cur, record_id):
        cur.execute("SELECT * FROM failed_downloads WHERE id=?", (record_id,))
        return self._row_to_record(cur.fetchone())

    def create(self, url: str, method: str | None, error_message: str | None) -> FailedDownload:
        now = _iso(self._now())
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO failed_downloads (
                    url, method, error_message, retry_count, last_attempt_at,
                    next_retry_at, status, created_at, updated_at
                ) VALUES (?, ?, ?, 0, ?, NULL, ?, ?, ?)
                """,
                (url, method, error_message, now, STATUS_PENDING, now, now),
            )
            conn.commit()
            return self._fetch(cur, cur.lastrowid)
        finally:
            conn.close()

    def record_failure(self, url, method, error_message, *, max_retries=DEFAULT_MAX_RETRIES) -> FailedDownload:
        """Create a record for a first failed attempt and schedule its first retry."""
        record = self.create(url, method, error_message)
        return self.mark_failed(record.id, error_message, max_retries=max_retries)

    def get(self, record_id) -> FailedDownload | None:
        conn = self._connect()
        try:
            return self._fetch(conn.cursor(), record_id)
        finally:
            conn.close()

    def mark_retrying(self, record_id, *, allowed_from=(STATUS_PENDING,)) -> FailedDownload | None:
        """Claim a record for a retry attempt.

        Returns ``None`` when the record is missing or not in ``allowed_from``,
        which is how two dispatchers are kept from retrying the same item.
        """
        statuses = tuple(allowed_from)
        if not statuses:
            return None
        now = _iso(self._now())
        placeholders = ", ".join("?" for _ in statuses)
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                f"""
                UPDATE failed_downloads
                SET status=?, last_attempt_at=?, retry_count=retry_count + 1, updated_at=?
                WHERE id=? AND status IN ({placeholders})
                """,
                (STATUS_RETRYING, now, now, record_id, *statuses),
            )
            conn.commit()
            if cur.rowcount != 1:
                return None
            return self._fetch(cur, record_id)
        finally:
            conn.close()

    def mark_failed(self, record_id, error_message, *, max_retries=DEFAULT_MAX_RETRIES) -> FailedDownload | None:
        now_dt = self._now()
        now = _iso(now_dt)
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            cur.execute("SELECT retry_count, status FROM failed_downloads WHERE id=?", (record_id,))
            row = cur.fetchone()
            if not row:
                conn.rollback()
                return None
            new_count = int(row["retry_count"] or 0) + 1
            if new_count >= max_retries:
                status = STATUS_FAILED
                next_retry_at = None
            else:
                status = STATUS_PENDING
                next_retry_at = _iso(now_dt + compute_next_retry_delay(row["retry_count"] or 0))
            cur.execute(
                """
                UPDATE failed_downloads
                SET status=?, error_message=?, retry_count=?, last_attempt_at=?,
                    next_retry_at=?, updated_at=?
                WHERE id=?
                """,
                (status, error_message, new_count, now, next_retry_at, now, record_id),
            )
            conn.commit()
            logger.info(
                "Failed download %s now %s retry_count=%s next_retry_at=%s",
                record_id,
                status,
                new_count,
                next_retry_at,
            )
            return self._fetch(cur, record_id)
        finally:
            conn.close()

    def mark_resolved(self, record_id) -> FailedDownload | None:
        now = _iso(self._now())
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                UPDATE failed_downloads
                SET status=?, next_retry_at=NULL, updated_at=?
                WHERE id=?
                """,
                (STATUS_RESOLVED, now, record_id),
            )
            conn.commit()
            return self._fetch(cur, record_id)
        finally:
            conn.close()

    def pending_retries(self, limit=RETRY_BATCH_SIZE) -> list[FailedDownload]:
        """Pending records that are due now, oldest first."""
        now = _iso(self._now())
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT * FROM failed_downloads
                WHERE status=? AND (next_retry_at IS NULL OR next_retry_at <= ?)
                ORDER BY created_at ASC, id ASC
                LIMIT ?
                """,
                (STATUS_PENDING, now, int(limit)),
            )
            return [self._row_to_record(row) for row in cur.fetchall()]
        finally:
            conn.close()

    def permanently_failed(self) -> list[FailedDownload]:
        return self.list(status=STATUS_FAILED)

    def list(self, *, status=None, limit=200) -> list[FailedDownload]:
        conn = self._connect()
        try:
            cur = conn.cursor()
            if status:
                cur.execute(
                    "SELECT * FROM failed_downloads WHERE status=? ORDER BY id DESC LIMIT ?",
                    (status, int(limit)),
                )
            else:
                cur.execute("SELECT * FROM failed_downloads ORDER BY id DESC LIMIT ?", (int(limit),))
            return [self._row_to_record(row) for row in cur.fetchall()]
        finally:
            conn.close()

    def delete(self, record_id) -> bool:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("DELETE FROM failed_downloads WHERE id=?", (record_id,))
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

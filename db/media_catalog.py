"""SQLite-backed catalog of canonical media artifacts."""

from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Protocol

from db.migrations import ensure_media_table


@dataclass(frozen=True)
class CanonicalArtifact:
    id: int
    name: str
    mime_type: str
    size: int
    file_name: str
    path: str
    url: str | None
    source: str
    thumbnail_path: str | None
    created_at: str

    def to_dict(self):
        return asdict(self)


class MediaCatalog(Protocol):
    def create(self, *, name, mime_type, size, file_name, path, url, source) -> CanonicalArtifact: ...

    def attach_thumbnail(self, artifact_id, thumbnail_path) -> CanonicalArtifact | None: ...

    def get(self, artifact_id) -> CanonicalArtifact | None: ...

    def count(self) -> int: ...


class SqliteMediaCatalog:
    def __init__(self, db_path: str):
        self.db_path = db_path
        conn = self._connect()
        try:
            ensure_media_table(conn)
        finally:
            conn.close()

    def _connect(self):
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def _fetch(self, cur, artifact_id):
        cur.execute("SELECT * FROM media WHERE id=?", (artifact_id,))
        row = cur.fetchone()
        return CanonicalArtifact(**dict(row)) if row else None

    def create(self, *, name, mime_type, size, file_name, path, url, source) -> CanonicalArtifact:
        created_at = datetime.now(timezone.utc).replace(microsecond=0).isoformat()
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO media (name, mime_type, size, file_name, path, url, source, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (name, mime_type, int(size), file_name, path, url, source, created_at),
            )
            conn.commit()
            return self._fetch(cur, cur.lastrowid)
        finally:
            conn.close()

    def attach_thumbnail(self, artifact_id, thumbnail_path) -> CanonicalArtifact | None:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("UPDATE media SET thumbnail_path=? WHERE id=?", (thumbnail_path, artifact_id))
            conn.commit()
            return self._fetch(cur, artifact_id)
        finally:
            conn.close()

    def get(self, artifact_id) -> CanonicalArtifact | None:
        conn = self._connect()
        try:
            return self._fetch(conn.cursor(), artifact_id)
        finally:
            conn.close()

    def list(self, limit=100) -> list[CanonicalArtifact]:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM media ORDER BY id DESC LIMIT ?", (int(limit),))
            return [CanonicalArtifact(**dict(row)) for row in cur.fetchall()]
        finally:
            conn.close()

    def count(self) -> int:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM media")
            return int(cur.fetchone()[0])
        finally:
            conn.close()

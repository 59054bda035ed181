"""SQLite migrations for failure ledgers and the media catalog."""

from __future__ import annotations

import sqlite3


def ensure_failed_downloads_table(conn: sqlite3.Connection) -> None:
    """Ensure the failed download ledger and its retry index exist."""
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS failed_downloads (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            url TEXT NOT NULL,
            method TEXT,
            error_message TEXT,
            retry_count INTEGER NOT NULL DEFAULT 0,
            last_attempt_at TEXT,
            next_retry_at TEXT,
            status TEXT NOT NULL DEFAULT 'pending',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_failed_downloads_status_next "
        "ON failed_downloads (status, next_retry_at)"
    )
    conn.commit()


def ensure_failed_uploads_table(conn: sqlite3.Connection) -> None:
    """Ensure the failed upload ledger exists."""
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS failed_uploads (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            filename TEXT NOT NULL,
            mime_type TEXT,
            error_message TEXT,
            retry_count INTEGER NOT NULL DEFAULT 1,
            last_attempt_at TEXT,
            status TEXT NOT NULL DEFAULT 'pending',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_failed_uploads_status "
        "ON failed_uploads (status)"
    )
    conn.commit()


def ensure_media_table(conn: sqlite3.Connection) -> None:
    """Ensure the canonical media catalog exists."""
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS media (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            mime_type TEXT NOT NULL,
            size INTEGER NOT NULL,
            file_name TEXT NOT NULL,
            path TEXT NOT NULL UNIQUE,
            url TEXT,
            source TEXT NOT NULL,
            thumbnail_path TEXT,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.commit()


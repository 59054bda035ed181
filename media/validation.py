"""Media validation helpers."""

from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)

DEFAULT_ACCEPTED_PREFIXES = ("video/",)


def is_media_mime(mime_type: str | None, accepted_prefixes=DEFAULT_ACCEPTED_PREFIXES) -> bool:
    """Return ``True`` when ``mime_type`` starts with one of ``accepted_prefixes``.

    Comparison is case-insensitive and ignores MIME parameters such as
    ``; charset=...``. An empty or missing type is never media.
    """
    if not mime_type:
        return False
    base = mime_type.split(";", 1)[0].strip().lower()
    return any(base.startswith(prefix.lower()) for prefix in accepted_prefixes or ())


def non_media_message(mime_type: str | None) -> str:
    return f"Downloaded file is not a video file (MIME: {mime_type or 'unknown'})"


def validate_media_file(file_path: str, mime_type: str | None, accepted_prefixes=DEFAULT_ACCEPTED_PREFIXES):
    """Return ``None`` when the file looks like media, else an error message."""
    if not file_path or not os.path.isfile(file_path):
        return "Downloaded file is missing"
    if os.path.getsize(file_path) <= 0:
        logger.warning("Downloaded file is empty path=%s", file_path)
        return "Downloaded file is empty"
    if not is_media_mime(mime_type, accepted_prefixes):
        return non_media_message(mime_type)
    return None

"""Extension and MIME type mapping."""

from __future__ import annotations

import os

GENERIC_MIME = "application/octet-stream"

VIDEO_EXTENSIONS = frozenset(
    {"mp4", "mkv", "avi", "mov", "wmv", "flv", "webm", "m4v", "mpg", "mpeg", "3gp", "ogv"}
)

EXTENSION_TO_MIME = {
    # video
    "mp4": "video/mp4",
    "m4v": "video/x-m4v",
    "mkv": "video/x-matroska",
    "avi": "video/x-msvideo",
    "mov": "video/quicktime",
    "wmv": "video/x-ms-wmv",
    "flv": "video/x-flv",
    "webm": "video/webm",
    "mpg": "video/mpeg",
    "mpeg": "video/mpeg",
    "3gp": "video/3gpp",
    "ogv": "video/ogg",
    # images
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    # audio
    "mp3": "audio/mpeg",
    "m4a": "audio/mp4",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "flac": "audio/flac",
    # documents and archives
    "pdf": "application/pdf",
    "txt": "text/plain",
    "json": "application/json",
    "zip": "application/zip",
    "tar": "application/x-tar",
    "gz": "application/gzip",
    "7z": "application/x-7z-compressed",
    "rar": "application/vnd.rar",
}

# Reverse lookup prefers the canonical extension for each type.
MIME_TO_EXTENSION = {
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/ogg": "ogv",
    "video/quicktime": "mov",
    "video/x-matroska": "mkv",
    "video/x-msvideo": "avi",
    "video/x-ms-wmv": "wmv",
    "video/x-flv": "flv",
    "video/x-m4v": "m4v",
    "video/mpeg": "mpg",
    "video/3gpp": "3gp",
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "audio/wav": "wav",
    "audio/ogg": "ogg",
    "application/pdf": "pdf",
    "text/plain": "txt",
}


def file_extension(name: str) -> str:
    _, ext = os.path.splitext(name or "")
    return ext.lstrip(".").lower()


def mime_from_extension(name: str) -> str | None:
    return EXTENSION_TO_MIME.get(file_extension(name))


def extension_from_mime(mime_type: str | None) -> str | None:
    if not mime_type:
        return None
    base = mime_type.split(";", 1)[0].strip().lower()
    return MIME_TO_EXTENSION.get(base)


def guess_mime(name: str, fallback: str | None = None) -> str:
    """Derive a MIME type for ``name``.

    The extension map wins. ``fallback`` (usually a response Content-Type) is
    used only when the extension is unknown, and the generic octet-stream type
    is returned when nothing better is available.
    """
    mime = mime_from_extension(name)
    if mime:
        return mime
    if fallback:
        base = fallback.split(";", 1)[0].strip().lower()
        if base:
            return base
    return GENERIC_MIME


def is_video_file(name: str) -> bool:
    return file_extension(name) in VIDEO_EXTENSIONS

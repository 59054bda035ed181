"""Canonical media storage on the local filesystem."""

from __future__ import annotations

import logging
import os
import shutil
import uuid
from typing import Protocol

from engine.paths import ensure_dir, is_within_base
from media.mime import file_extension

logger = logging.getLogger(__name__)

MEDIA_SUBDIR = "media"


def atomic_move(src, dst):
    try:
        os.replace(src, dst)
    except OSError:
        # Cross-device: fall back to copy + remove.
        shutil.copy2(src, dst)
        os.remove(src)


class MediaStorage(Protocol):
    def put(self, source_file, file_name=None) -> str: ...

    def url(self, path) -> str: ...

    def exists(self, path) -> bool: ...

    def delete(self, path) -> bool: ...

    def absolute_path(self, path) -> str: ...


class LocalMediaStorage:
    """Stores files as ``media/<uuid>.<ext>`` below ``root``.

    Paths handed out are relative to ``root`` so catalog rows stay valid when
    the storage directory is remounted elsewhere.
    """

    def __init__(self, root, *, public_url_prefix="/storage"):
        self.root = os.path.abspath(root)
        self.public_url_prefix = public_url_prefix.rstrip("/")
        ensure_dir(os.path.join(self.root, MEDIA_SUBDIR))

    def absolute_path(self, path) -> str:
        resolved = os.path.abspath(os.path.join(self.root, path))
        if not is_within_base(resolved, self.root):
            raise ValueError(f"Path must be within storage root: {path}")
        return resolved

    def put(self, source_file, file_name=None) -> str:
        ext = file_extension(file_name or source_file)
        stored_name = f"{uuid.uuid4()}.{ext}" if ext else str(uuid.uuid4())
        relative = f"{MEDIA_SUBDIR}/{stored_name}"
        target = self.absolute_path(relative)
        ensure_dir(os.path.dirname(target))
        atomic_move(source_file, target)
        logger.info("Stored %s as %s", os.path.basename(source_file), relative)
        return relative

    def url(self, path) -> str:
        return f"{self.public_url_prefix}/{path.lstrip('/')}"

    def exists(self, path) -> bool:
        return os.path.isfile(self.absolute_path(path))

    def delete(self, path) -> bool:
        target = self.absolute_path(path)
        if not os.path.isfile(target):
            return False
        os.remove(target)
        return True

"""Turns a downloaded or uploaded file into a stored, cataloged artifact."""

from __future__ import annotations

import logging
import os

from engine.errors import CanonicalizationError
from engine.events import log_event
from media.mime import extension_from_mime, file_extension, guess_mime
from media.validation import DEFAULT_ACCEPTED_PREFIXES, validate_media_file

logger = logging.getLogger(__name__)

LOCAL_SOURCE = "local"


class Canonicalizer:
    def __init__(self, storage, catalog, thumbnails=None, *, accepted_prefixes=DEFAULT_ACCEPTED_PREFIXES):
        self.storage = storage
        self.catalog = catalog
        self.thumbnails = thumbnails
        self.accepted_prefixes = tuple(accepted_prefixes)

    def canonicalize(self, file_path, display_name, *, mime_type=None, source_url=None, file_name=None):
        """Move ``file_path`` into storage and create its catalog record.

        Raises :class:`CanonicalizationError` when the file is not acceptable
        media or cannot be stored. A stored file whose record cannot be
        written is removed again.
        """
        if os.path.islink(file_path):
            raise CanonicalizationError(f"Refusing to store a symbolic link: {os.path.basename(file_path)}")
        file_name = file_name or os.path.basename(file_path)
        mime_type = mime_type or guess_mime(file_name)
        if not file_extension(file_name):
            ext = extension_from_mime(mime_type)
            if ext:
                file_name = f"{file_name}.{ext}"
        problem = validate_media_file(file_path, mime_type, self.accepted_prefixes)
        if problem:
            raise CanonicalizationError(problem)

        size = os.path.getsize(file_path)
        try:
            stored_path = self.storage.put(file_path, file_name)
        except (OSError, ValueError) as exc:
            raise CanonicalizationError(f"Unable to store {file_name}: {exc}") from exc

        try:
            artifact = self.catalog.create(
                name=display_name or os.path.splitext(file_name)[0],
                mime_type=mime_type,
                size=size,
                file_name=file_name,
                path=stored_path,
                url=self.storage.url(stored_path),
                source=source_url or LOCAL_SOURCE,
            )
        except Exception as exc:
            logger.exception("Catalog insert failed for %s", stored_path)
            self.storage.delete(stored_path)
            raise CanonicalizationError(f"Unable to record {file_name}: {exc}") from exc

        if self.thumbnails is not None:
            thumbnail = self.thumbnails.generate(stored_path, mime_type)
            if thumbnail:
                artifact = self.catalog.attach_thumbnail(artifact.id, thumbnail) or artifact

        log_event(
            logging.INFO,
            "artifact_created",
            artifact_id=artifact.id,
            path=artifact.path,
            mime_type=mime_type,
            size=size,
            source=artifact.source,
        )
        return artifact

"""Thumbnail generation for canonical video artifacts using ffmpeg."""

from __future__ import annotations

import logging
import os
from typing import Protocol

from engine.paths import ensure_dir
from engine.process import ProcessRunner

logger = logging.getLogger(__name__)

THUMBNAIL_SUBDIR = "thumbnails"
THUMBNAIL_SIZE = 400
FFMPEG_TIMEOUT_SECONDS = 30


class ThumbnailGenerator(Protocol):
    def generate(self, canonical_path, mime_type) -> str | None: ...


class FfmpegThumbnailGenerator:
    """Grabs one frame and pads it to a square JPEG.

    Thumbnails are a courtesy: every failure is logged and reported as
    ``None`` so the artifact itself is still kept.
    """

    def __init__(self, storage, *, runner=None, ffmpeg="ffmpeg", timeout=FFMPEG_TIMEOUT_SECONDS):
        self.storage = storage
        self.runner = runner or ProcessRunner()
        self.ffmpeg = ffmpeg
        self.timeout = timeout

    def _command(self, source, target, seek):
        size = THUMBNAIL_SIZE
        scale = (
            f"scale={size}:{size}:force_original_aspect_ratio=decrease,"
            f"pad={size}:{size}:(ow-iw)/2:(oh-ih)/2:black"
        )
        cmd = [self.ffmpeg]
        if seek:
            cmd.extend(["-ss", "00:00:01"])
        cmd.extend(["-i", source, "-vframes", "1", "-vf", scale, "-q:v", "2", "-y", target])
        return cmd

    def generate(self, canonical_path, mime_type) -> str | None:
        if not (mime_type or "").startswith("video/"):
            return None
        try:
            source = self.storage.absolute_path(canonical_path)
            stem = os.path.splitext(os.path.basename(canonical_path))[0]
            relative = f"{THUMBNAIL_SUBDIR}/{stem}_thumb.jpg"
            target = self.storage.absolute_path(relative)
            ensure_dir(os.path.dirname(target))
            # Very short clips have no frame at 1s; retry from the start.
            for seek in (True, False):
                result = self.runner.run(self._command(source, target, seek), timeout=self.timeout)
                if result.ok and os.path.isfile(target) and os.path.getsize(target) > 0:
                    return relative
            logger.warning("Thumbnail generation failed for %s: %s", canonical_path, result.stderr[-500:])
        except (OSError, ValueError) as exc:
            logger.warning("Thumbnail generation failed for %s: %s", canonical_path, exc)
        return None

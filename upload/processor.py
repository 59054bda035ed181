"""Upload processing: single videos and archive fan-out."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from config.settings import DEFAULT_UPLOAD_MAX_RETRIES
from engine.errors import IngestError, UploadRejectedError
from engine.events import log_event
from engine.paths import is_within_base
from engine.scope import ResourceScope
from media.mime import guess_mime, is_video_file
from upload.archive import archive_format

logger = logging.getLogger(__name__)

UPLOAD_STATUS_COMPLETED = "completed"
UPLOAD_STATUS_FAILED = "failed"
UPLOAD_STATUS_REJECTED = "rejected"
UPLOAD_STATUS_CANCELLED = "cancelled"
UPLOAD_STATUS_SKIPPED = "skipped"

NO_VIDEOS_MESSAGE = "No video files found in the archive"


@dataclass(frozen=True)
class UploadResult:
    status: str
    upload_id: str
    artifacts: tuple = ()
    error: str | None = None
    failed_upload_id: int | None = None


class _UploadCancelled(Exception):
    pass


def find_video_files(root) -> list[str]:
    """All regular files below ``root`` with a video extension, in a stable order.

    Symlinks are skipped: 7z and unrar recreate links stored in the archive,
    and those may point anywhere on the host.
    """
    found = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            if not is_video_file(name):
                continue
            path = os.path.join(dirpath, name)
            if os.path.islink(path) or not is_within_base(path, root):
                logger.warning("Skipping linked archive member %s", path)
                continue
            found.append(path)
    return found


def _remove_file(path):
    if not path or not os.path.exists(path):
        return
    try:
        os.remove(path)
    except OSError:
        logger.warning("Failed to remove uploaded temp file %s", path, exc_info=True)


class UploadProcessor:
    def __init__(self, ledger, unpacker, canonicalizer, failures, *, temp_root, max_retries=DEFAULT_UPLOAD_MAX_RETRIES):
        self.ledger = ledger
        self.unpacker = unpacker
        self.canonicalizer = canonicalizer
        self.failures = failures
        self.temp_root = temp_root
        self.max_retries = max_retries

    def process_upload(self, file_path, original_name, mime_type, upload_id) -> UploadResult:
        """Process one uploaded file.

        Archives are expanded into a scratch scope and every video inside is
        canonicalized. Plain videos are canonicalized directly. Other files are
        rejected without a failure record. The uploaded temp file, the scratch
        scope and the ledger entry are always cleaned up.
        """
        if self.ledger.claim(upload_id) is None:
            if not self.ledger.contains(upload_id):
                # Cancelled before it started; nobody else owns the file.
                _remove_file(file_path)
            logger.info("Skipping upload %s: not queued", upload_id)
            return UploadResult(UPLOAD_STATUS_SKIPPED, upload_id)

        self.ledger.update_progress(upload_id, 0)
        try:
            if not file_path or not os.path.isfile(file_path):
                raise IngestError(f"Uploaded file is missing: {original_name}")
            fmt = archive_format(original_name)
            if fmt:
                artifacts = self._process_archive(file_path, fmt, upload_id)
            elif is_video_file(original_name):
                artifacts = [self._process_single(file_path, original_name, mime_type, upload_id)]
            else:
                raise UploadRejectedError(f"Unsupported file type: {original_name}")
        except _UploadCancelled:
            logger.info("Upload %s cancelled during processing", upload_id)
            return UploadResult(UPLOAD_STATUS_CANCELLED, upload_id)
        except UploadRejectedError as exc:
            self.ledger.mark_failed(upload_id, str(exc))
            log_event(logging.WARNING, "upload_rejected", upload_id=upload_id, filename=original_name,
                      error=str(exc))
            return UploadResult(UPLOAD_STATUS_REJECTED, upload_id, error=str(exc))
        except Exception as exc:
            if not isinstance(exc, IngestError):
                logger.exception("Upload %s crashed", upload_id)
            return self._fail(upload_id, original_name, mime_type, str(exc))
        finally:
            _remove_file(file_path)
            self.ledger.remove(upload_id)

        log_event(logging.INFO, "upload_completed", upload_id=upload_id, filename=original_name,
                  artifacts=len(artifacts))
        return UploadResult(UPLOAD_STATUS_COMPLETED, upload_id, artifacts=tuple(artifacts))

    def _process_single(self, file_path, original_name, mime_type, upload_id):
        self.ledger.update_progress(upload_id, 50)
        artifact = self.canonicalizer.canonicalize(
            file_path,
            os.path.splitext(original_name)[0],
            mime_type=guess_mime(original_name, mime_type),
            file_name=original_name,
        )
        self.ledger.update_progress(upload_id, 100)
        return artifact

    def _process_archive(self, file_path, fmt, upload_id):
        with ResourceScope(self.temp_root, upload_id, prefix="extract") as extract_dir:
            self.ledger.update_progress(upload_id, 10)
            self.unpacker.extract(file_path, extract_dir, fmt)
            self.ledger.update_progress(upload_id, 30)

            videos = find_video_files(extract_dir)
            if not videos:
                raise IngestError(NO_VIDEOS_MESSAGE)

            artifacts = []
            total = len(videos)
            self.ledger.annotate(upload_id, total_files=total)
            for processed, video in enumerate(videos, start=1):
                if not self.ledger.contains(upload_id):
                    raise _UploadCancelled()
                name = os.path.basename(video)
                artifacts.append(
                    self.canonicalizer.canonicalize(video, os.path.splitext(name)[0], file_name=name)
                )
                self.ledger.update_progress(upload_id, 30 + processed / total * 70)
            return artifacts

    def _fail(self, upload_id, original_name, mime_type, message):
        self.ledger.mark_failed(upload_id, message)
        record = None
        try:
            record = self.failures.record_failure(original_name, mime_type, message, max_retries=self.max_retries)
        except Exception:
            logger.exception("Unable to record failed upload %s", upload_id)
        log_event(logging.ERROR, "upload_failed", upload_id=upload_id, filename=original_name, error=message,
                  failed_upload_id=record.id if record else None)
        return UploadResult(
            UPLOAD_STATUS_FAILED,
            upload_id,
            error=message,
            failed_upload_id=record.id if record else None,
        )

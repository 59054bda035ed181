"""Ingest service: wires ledgers, handlers and workers onto a thread pool."""

from __future__ import annotations

import logging
import os
import uuid
from concurrent.futures import ThreadPoolExecutor

from config.settings import IngestSettings
from db.failed_downloads import STATUS_FAILED, STATUS_PENDING, FailedDownloadStore
from db.failed_uploads import FailedUploadStore
from db.media_catalog import SqliteMediaCatalog
from download.worker import DownloadWorker
from engine.errors import InvalidUrlError
from engine.events import log_event
from engine.handlers import DirectDownloadHandler, url_error
from engine.paths import EnginePaths
from engine.queue_ledger import KIND_DOWNLOAD, KIND_UPLOAD, InMemoryLedgerStore, QueueLedger
from engine.resolver import HandlerResolver
from engine.ytdlp import YtDlpHandler
from media.canonicalize import Canonicalizer
from media.storage import LocalMediaStorage
from media.thumbnails import FfmpegThumbnailGenerator
from upload.archive import ArchiveUnpacker
from upload.processor import UploadProcessor

logger = logging.getLogger(__name__)


def new_item_id() -> str:
    return uuid.uuid4().hex


class IngestService:
    def __init__(
        self,
        *,
        download_ledger,
        upload_ledger,
        resolver,
        worker,
        upload_processor,
        failed_downloads,
        failed_uploads,
        executor=None,
        workers=2,
    ):
        self.download_ledger = download_ledger
        self.upload_ledger = upload_ledger
        self.resolver = resolver
        self.worker = worker
        self.upload_processor = upload_processor
        self.failed_downloads = failed_downloads
        self.failed_uploads = failed_uploads
        self.executor = executor or ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ingest")

    def enqueue_download(self, url, *, failed_download_id=None) -> str:
        error = url_error(url)
        if error:
            raise InvalidUrlError(error)
        url = url.strip()
        item_id = new_item_id()
        extra = {"failed_download_id": failed_download_id} if failed_download_id is not None else None
        self.download_ledger.add(item_id, url, method=self.resolver.primary_method(url), extra=extra)
        log_event(logging.INFO, "download_enqueued", item_id=item_id, url=url,
                  failed_download_id=failed_download_id)
        self.executor.submit(self._run_download, item_id, url, failed_download_id)
        return item_id

    def _run_download(self, item_id, url, failed_download_id):
        try:
            return self.worker.process(item_id, url, failed_download_id=failed_download_id)
        except Exception:
            logger.exception("Download worker crashed for %s", item_id)
            self.download_ledger.remove(item_id)
            return None

    def enqueue_upload(self, file_path, original_name, mime_type=None, *, upload_id=None) -> str:
        """Queue an uploaded temp file.

        Callers that name the temp file after the upload id (so the janitor
        can match it) pass that id in.
        """
        if not original_name:
            raise ValueError("original_name is required")
        upload_id = upload_id or new_item_id()
        self.upload_ledger.add(
            upload_id,
            original_name,
            method="upload",
            extra={"mime_type": mime_type, "size": os.path.getsize(file_path) if os.path.exists(file_path) else None},
        )
        log_event(logging.INFO, "upload_enqueued", upload_id=upload_id, filename=original_name)
        self.executor.submit(self._run_upload, file_path, original_name, mime_type, upload_id)
        return upload_id

    def _run_upload(self, file_path, original_name, mime_type, upload_id):
        try:
            return self.upload_processor.process_upload(file_path, original_name, mime_type, upload_id)
        except Exception:
            logger.exception("Upload worker crashed for %s", upload_id)
            self.upload_ledger.remove(upload_id)
            return None

    def cancel(self, item_id) -> bool:
        """Advisory cancel: drop the ledger entry; the worker notices and stops."""
        removed = self.download_ledger.remove(item_id) or self.upload_ledger.remove(item_id)
        if removed:
            log_event(logging.INFO, "item_cancelled", item_id=item_id)
        return removed

    def dispatch_retry(self, record) -> str:
        """Re-enqueue a failed download already moved to ``retrying``."""
        return self.enqueue_download(record.url, failed_download_id=record.id)

    def retry_failed_download(self, record_id) -> str | None:
        """Operator-triggered retry; also allowed for permanently failed records."""
        record = self.failed_downloads.mark_retrying(record_id, allowed_from=(STATUS_PENDING, STATUS_FAILED))
        if record is None:
            return None
        return self.dispatch_retry(record)

    def is_active(self, item_id) -> bool:
        return self.download_ledger.is_active(item_id) or self.upload_ledger.is_active(item_id)

    def queue_snapshot(self) -> dict:
        return {
            "downloads": [item.to_dict() for item in self.download_ledger.list_items()],
            "uploads": [item.to_dict() for item in self.upload_ledger.list_items()],
        }

    def shutdown(self, wait=True):
        self.executor.shutdown(wait=wait)


def build_ingest_service(settings: IngestSettings, paths: EnginePaths, *, executor=None) -> IngestService:
    store = InMemoryLedgerStore(default_ttl=settings.ledger_ttl_seconds)
    download_ledger = QueueLedger(store, kind=KIND_DOWNLOAD)
    upload_ledger = QueueLedger(store, kind=KIND_UPLOAD)
    failed_downloads = FailedDownloadStore(paths.db_path)
    failed_uploads = FailedUploadStore(paths.db_path)

    storage = LocalMediaStorage(paths.storage_root, public_url_prefix=settings.public_url_prefix)
    canonicalizer = Canonicalizer(
        storage,
        SqliteMediaCatalog(paths.db_path),
        FfmpegThumbnailGenerator(storage),
        accepted_prefixes=settings.accepted_mime_prefixes,
    )
    resolver = HandlerResolver(
        YtDlpHandler.from_settings(settings),
        DirectDownloadHandler(
            timeout=settings.direct_fetch_timeout,
            accepted_prefixes=settings.accepted_mime_prefixes,
        ),
    )
    worker = DownloadWorker(
        download_ledger,
        resolver,
        canonicalizer,
        failed_downloads,
        temp_root=paths.temp_root,
        job_timeout=settings.job_timeout,
        max_retries=settings.max_retries,
    )
    uploads = UploadProcessor(
        upload_ledger,
        ArchiveUnpacker(timeout=settings.upload_timeout),
        canonicalizer,
        failed_uploads,
        temp_root=paths.temp_root,
        max_retries=settings.upload_max_retries,
    )
    return IngestService(
        download_ledger=download_ledger,
        upload_ledger=upload_ledger,
        resolver=resolver,
        worker=worker,
        upload_processor=uploads,
        failed_downloads=failed_downloads,
        failed_uploads=failed_uploads,
        executor=executor,
        workers=settings.workers,
    )

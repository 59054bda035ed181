"""Download worker: claims a queued item, runs handlers, canonicalizes the result."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from config.settings import DEFAULT_MAX_RETRIES, JOB_TIMEOUT_SECONDS
from engine.errors import CanonicalizationError
from engine.events import log_event
from engine.handlers import FailureKind, HandlerFailure
from engine.scope import ResourceScope

logger = logging.getLogger(__name__)

JOB_STATUS_COMPLETED = "completed"
JOB_STATUS_FAILED = "failed"
JOB_STATUS_CANCELLED = "cancelled"
JOB_STATUS_SKIPPED = "skipped"

# Failures that say nothing about the URL being retryable later.
_UNRECORDED_KINDS = (FailureKind.VALIDATION, FailureKind.CANCELLED)


@dataclass(frozen=True)
class WorkerOutcome:
    status: str
    item_id: str
    method: str | None = None
    artifact: Any = None
    error: str | None = None
    kind: FailureKind | None = None
    failed_download_id: int | None = None


class DownloadWorker:
    def __init__(
        self,
        ledger,
        resolver,
        canonicalizer,
        failures,
        *,
        temp_root,
        job_timeout=JOB_TIMEOUT_SECONDS,
        max_retries=DEFAULT_MAX_RETRIES,
        clock=time.monotonic,
    ):
        self.ledger = ledger
        self.resolver = resolver
        self.canonicalizer = canonicalizer
        self.failures = failures
        self.temp_root = temp_root
        self.job_timeout = float(job_timeout)
        self.max_retries = max_retries
        self._clock = clock

    def effective_timeout(self, url) -> float:
        """Job budget, widened to the slowest handler that may run for ``url``."""
        return max(self.job_timeout, self.resolver.max_timeout(url))

    def process(self, item_id, url, failed_download_id=None) -> WorkerOutcome:
        item = self.ledger.claim(item_id)
        if item is None:
            logger.info("Skipping download %s: not queued", item_id)
            return WorkerOutcome(JOB_STATUS_SKIPPED, item_id, failed_download_id=failed_download_id)

        budget = self.effective_timeout(url)
        deadline = self._clock() + budget
        log_event(logging.INFO, "download_started", item_id=item_id, url=url, budget=budget,
                  failed_download_id=failed_download_id)

        def cancel_check():
            return not self.ledger.contains(item_id)

        def on_progress(percent):
            self.ledger.update_progress(item_id, percent)

        method = item.method
        result = HandlerFailure("No download handler available", FailureKind.VALIDATION)
        with ResourceScope(self.temp_root, item_id, prefix="download") as workdir:
            for handler in self.resolver.resolve(url):
                remaining = deadline - self._clock()
                if remaining <= 0:
                    result = HandlerFailure(f"Download timed out after {int(budget)}s", FailureKind.RESOURCE)
                    break
                method = handler.name
                self.ledger.set_method(item_id, method)
                result = self._attempt(handler, url, item_id, workdir, remaining, on_progress, cancel_check)
                if result.ok:
                    break
                log_event(logging.WARNING, "download_handler_failed", item_id=item_id, method=method,
                          kind=result.kind.value, error=result.message)
                if result.kind == FailureKind.CANCELLED or not self.resolver.allows_fallback(url):
                    break

            if cancel_check():
                logger.info("Download %s cancelled; discarding result", item_id)
                self._settle_cancelled_retry(failed_download_id)
                return WorkerOutcome(JOB_STATUS_CANCELLED, item_id, method=method,
                                     failed_download_id=failed_download_id)

            if result.ok:
                try:
                    artifact = self.canonicalizer.canonicalize(
                        result.file_path,
                        result.display_name,
                        mime_type=result.mime_type,
                        source_url=url,
                    )
                except CanonicalizationError as exc:
                    result = HandlerFailure(str(exc), FailureKind.RESOURCE)
                except Exception as exc:
                    logger.exception("Canonicalization crashed for %s", item_id)
                    result = HandlerFailure(f"Unexpected error storing download: {exc}", FailureKind.TRANSIENT)
                else:
                    return self._succeed(item_id, url, method, artifact, failed_download_id)

        return self._fail(item_id, url, method, result, failed_download_id)

    def _attempt(self, handler, url, item_id, workdir, timeout, on_progress, cancel_check):
        try:
            return handler.download(
                url,
                item_id,
                on_progress,
                workdir=workdir,
                timeout=timeout,
                cancel_check=cancel_check,
            )
        except Exception as exc:
            logger.exception("Handler %s crashed for %s", handler.name, item_id)
            return HandlerFailure(f"{handler.name} crashed: {exc}", FailureKind.TRANSIENT)

    def _succeed(self, item_id, url, method, artifact, failed_download_id):
        if failed_download_id is not None:
            self.failures.mark_resolved(failed_download_id)
        self.ledger.mark_completed(item_id)
        self.ledger.remove(item_id)
        log_event(logging.INFO, "download_completed", item_id=item_id, url=url, method=method,
                  artifact_id=artifact.id)
        return WorkerOutcome(JOB_STATUS_COMPLETED, item_id, method=method, artifact=artifact,
                             failed_download_id=failed_download_id)

    def _fail(self, item_id, url, method, failure, failed_download_id):
        self.ledger.mark_failed(item_id, failure.message)
        record_id = failed_download_id
        try:
            if failed_download_id is not None:
                self.failures.mark_failed(failed_download_id, failure.message, max_retries=self.max_retries)
            elif failure.kind not in _UNRECORDED_KINDS:
                record = self.failures.record_failure(url, method, failure.message, max_retries=self.max_retries)
                record_id = record.id
        except Exception:
            logger.exception("Unable to record failed download %s", item_id)
        finally:
            self.ledger.remove(item_id)
        log_event(logging.ERROR, "download_failed", item_id=item_id, url=url, method=method,
                  kind=failure.kind.value, error=failure.message, failed_download_id=record_id)
        return WorkerOutcome(JOB_STATUS_FAILED, item_id, method=method, error=failure.message,
                             kind=failure.kind, failed_download_id=record_id)

    def _settle_cancelled_retry(self, failed_download_id):
        # A cancelled retry must not leave its record stuck in "retrying".
        if failed_download_id is None:
            return
        try:
            self.failures.mark_failed(failed_download_id, "Cancelled", max_retries=self.max_retries)
        except Exception:
            logger.exception("Unable to settle cancelled retry %s", failed_download_id)

"""Scheduler job that re-dispatches failed downloads whose backoff has elapsed."""

from __future__ import annotations

import logging
from typing import Callable

from config.settings import DEFAULT_MAX_RETRIES, RETRY_BATCH_SIZE

logger = logging.getLogger(__name__)


def run_retry_sweep(
    failures,
    dispatch: Callable,
    *,
    limit: int = RETRY_BATCH_SIZE,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> list[int]:
    """Claim due records and hand each to ``dispatch``.

    Records another dispatcher already moved out of ``pending`` are skipped.
    A dispatch error puts the record back through ``mark_failed`` so it is
    not stranded in ``retrying``. Returns the ids that were dispatched.
    """
    dispatched = []
    due = failures.pending_retries(limit=limit)
    for record in due:
        claimed = failures.mark_retrying(record.id)
        if claimed is None:
            logger.info("Failed download %s already claimed; skipping", record.id)
            continue
        try:
            dispatch(claimed)
        except Exception as exc:
            logger.exception("Retry dispatch failed for failed download %s", record.id)
            failures.mark_failed(record.id, f"Retry dispatch failed: {exc}", max_retries=max_retries)
            continue
        dispatched.append(record.id)
    if due:
        logger.info("Retry sweep dispatched %s of %s due failed downloads", len(dispatched), len(due))
    return dispatched

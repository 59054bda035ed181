"""Scheduler job removing scratch state abandoned by crashed workers."""

from __future__ import annotations

import logging

from config.settings import STALE_SCOPE_GRACE_SECONDS
from engine.scope import reap_stale_scopes, reap_stale_uploads

logger = logging.getLogger(__name__)


def run_stale_scope_janitor(
    temp_root,
    is_active,
    *,
    grace_seconds=STALE_SCOPE_GRACE_SECONDS,
    upload_dir=None,
) -> int:
    """Reap stale scopes under ``temp_root`` and orphaned files in ``upload_dir``.

    Returns the number of paths removed.
    """
    removed = reap_stale_scopes(temp_root, is_active, grace_seconds=grace_seconds)
    if removed:
        logger.info("Janitor removed %s stale scope(s) under %s", len(removed), temp_root)
    orphans = []
    if upload_dir:
        orphans = reap_stale_uploads(upload_dir, is_active, grace_seconds=grace_seconds)
        if orphans:
            logger.info("Janitor removed %s orphaned upload(s) under %s", len(orphans), upload_dir)
    return len(removed) + len(orphans)

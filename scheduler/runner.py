"""APScheduler wiring for periodic maintenance jobs."""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from scheduler.jobs.retry_failed_downloads import run_retry_sweep
from scheduler.jobs.stale_scope_janitor import run_stale_scope_janitor

logger = logging.getLogger(__name__)

RETRY_SWEEP_JOB_ID = "retry_failed_downloads"
STALE_SCOPE_JOB_ID = "stale_scope_janitor"

RETRY_SWEEP_INTERVAL_MINUTES = 60
STALE_SCOPE_INTERVAL_MINUTES = 5


def build_scheduler(service, settings, paths) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        run_retry_sweep,
        trigger=IntervalTrigger(minutes=RETRY_SWEEP_INTERVAL_MINUTES),
        args=[service.failed_downloads, service.dispatch_retry],
        kwargs={"limit": settings.retry_batch_size, "max_retries": settings.max_retries},
        id=RETRY_SWEEP_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=30,
    )
    scheduler.add_job(
        run_stale_scope_janitor,
        trigger=IntervalTrigger(minutes=STALE_SCOPE_INTERVAL_MINUTES),
        args=[paths.temp_root, service.is_active],
        kwargs={
            "grace_seconds": settings.stale_scope_grace_seconds,
            "upload_dir": paths.upload_temp_dir,
        },
        id=STALE_SCOPE_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=30,
    )
    logger.info("Scheduler configured: retry sweep every %sm, janitor every %sm",
                RETRY_SWEEP_INTERVAL_MINUTES, STALE_SCOPE_INTERVAL_MINUTES)
    return scheduler

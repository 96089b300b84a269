"""APScheduler integration for FastAPI.

Runs the deposit watcher sweep on a fixed interval.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from earn.config import settings

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()

WATCHER_JOB_ID = "deposit_watcher"


def add_watcher_job(watcher, interval_seconds: int | None = None):
    """Add or replace the sweep job for a watcher."""
    interval_seconds = interval_seconds or settings.watch_interval_seconds

    if scheduler.get_job(WATCHER_JOB_ID):
        scheduler.remove_job(WATCHER_JOB_ID)

    scheduler.add_job(
        watcher.sweep,
        trigger=IntervalTrigger(seconds=interval_seconds),
        id=WATCHER_JOB_ID,
        name="Deposit watcher",
        replace_existing=True,
        # A sweep that outlasts the interval delays the next tick
        max_instances=1,
        coalesce=True,
        misfire_grace_time=interval_seconds,
    )
    logger.info(f"Scheduled deposit watcher every {interval_seconds}s")


def start_scheduler(watcher, interval_seconds: int | None = None):
    """Start the scheduler with the watcher job."""
    add_watcher_job(watcher, interval_seconds)
    scheduler.start()
    logger.info(f"Scheduler started with {len(scheduler.get_jobs())} jobs")


def stop_scheduler():
    """Shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


def get_scheduler_status() -> dict:
    """Return current scheduler state for the API."""
    jobs = scheduler.get_jobs()
    return {
        "running": scheduler.running,
        "job_count": len(jobs),
        "jobs": [
            {
                "id": j.id,
                "name": j.name,
                "next_run": str(j.next_run_time) if j.next_run_time else None,
                "trigger": str(j.trigger),
            }
            for j in jobs
        ],
    }

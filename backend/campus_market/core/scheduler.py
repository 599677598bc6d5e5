"""
Background scheduler for the expiry sweeper.

Uses APScheduler's asyncio scheduler so the sweep runs on the application's
event loop with its own DB sessions. One job, one instance at a time; missed
runs are coalesced since the next tick is the retry anyway.
"""

from datetime import datetime, timezone
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from campus_market.core.config import get_settings
from campus_market.core.logging import get_logger
from campus_market.db.session import AsyncSessionLocal
from campus_market.services.sweeper import ExpirySweeper

logger = get_logger(__name__)
settings = get_settings()

SWEEPER_JOB_ID = "expiry_sweeper"

scheduler: Optional[AsyncIOScheduler] = None
sweeper = ExpirySweeper(AsyncSessionLocal)


def _on_job_error(event):
    logger.error(
        "scheduled_job_failed",
        job_id=event.job_id,
        error=str(event.exception),
        traceback=event.traceback,
    )


def _on_job_missed(event):
    logger.warning(
        "scheduled_job_missed",
        job_id=event.job_id,
        scheduled_run_time=str(event.scheduled_run_time),
    )


def init_scheduler() -> AsyncIOScheduler:
    """Start the scheduler; the first sweep runs immediately."""
    global scheduler

    if scheduler is not None:
        logger.warning("scheduler_already_initialized")
        return scheduler

    scheduler = AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 60,
        },
    )
    scheduler.add_job(
        func=sweeper.run,
        trigger=IntervalTrigger(minutes=settings.SWEEPER_INTERVAL_MINUTES),
        id=SWEEPER_JOB_ID,
        name="Expire listings and purge old requests",
        replace_existing=True,
        next_run_time=datetime.now(timezone.utc),
    )
    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    scheduler.add_listener(_on_job_missed, EVENT_JOB_MISSED)
    scheduler.start()

    logger.info("scheduler_started", job=SWEEPER_JOB_ID, interval_minutes=settings.SWEEPER_INTERVAL_MINUTES)
    return scheduler


def shutdown_scheduler() -> None:
    global scheduler

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_shutdown")
        scheduler = None


def get_scheduler_status() -> dict:
    last = sweeper.last_report.to_dict() if sweeper.last_report else None

    if scheduler is None:
        return {"status": "not_initialized", "jobs": [], "last_run": last}

    jobs = [
        {
            "id": job.id,
            "name": job.name,
            "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger),
        }
        for job in scheduler.get_jobs()
    ]
    return {
        "status": "running" if scheduler.running else "stopped",
        "jobs": jobs,
        "last_run": last,
    }

"""APScheduler job definitions."""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from price_tracker.config import settings
from price_tracker.worker.tasks import CrawlAlreadyRunningError, CrawlRequest, crawl_orchestrator
from price_tracker import metrics

logger = logging.getLogger(__name__)

WEEKLY_CRAWL_JOB_ID = "weekly_crawl"

_scheduler: Optional[AsyncIOScheduler] = None


async def run_scheduled_crawl() -> None:
    """Weekly full crawl (all categories, discovery)."""
    logger.info("Scheduled crawl starting")
    try:
        outcome = await crawl_orchestrator.run_crawl(
            CrawlRequest(category="all", job_type="scheduled")
        )
    except CrawlAlreadyRunningError as e:
        logger.warning(f"Scheduled crawl skipped, job {e.job_id} is still running")
        metrics.record_job_rejected("scheduled")
        metrics.record_scheduler_run(False)
        return
    except Exception as e:
        logger.error(f"Scheduled crawl failed to start: {e}", exc_info=True)
        metrics.record_scheduler_run(False)
        return

    metrics.record_scheduler_run(outcome.status == "completed")
    logger.info(f"Scheduled crawl job {outcome.job_id} {outcome.status}: {outcome.message}")


def setup_scheduler() -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Returns:
        Configured scheduler instance
    """
    global _scheduler

    scheduler = AsyncIOScheduler(timezone=settings.crawl_schedule_timezone)
    scheduler.add_job(
        run_scheduled_crawl,
        CronTrigger(
            day_of_week=settings.crawl_schedule_day_of_week,
            hour=settings.crawl_schedule_hour,
            minute=0,
            timezone=settings.crawl_schedule_timezone,
        ),
        id=WEEKLY_CRAWL_JOB_ID,
        name="Weekly price crawl",
        max_instances=1,  # Prevent overlapping runs
        coalesce=True,
        misfire_grace_time=3600,
        replace_existing=True,
    )

    logger.info(
        "Scheduler configured: weekly crawl on %s at %02d:00 %s",
        settings.crawl_schedule_day_of_week,
        settings.crawl_schedule_hour,
        settings.crawl_schedule_timezone,
    )

    _scheduler = scheduler
    return scheduler


def scheduler_status(scheduler: Optional[AsyncIOScheduler] = None) -> dict[str, Any]:
    """Running flag and next run time of the weekly crawl."""
    scheduler = scheduler or _scheduler
    if scheduler is None or not scheduler.running:
        return {"is_running": False, "next_run_time": None, "seconds_until_next_run": None}

    job = scheduler.get_job(WEEKLY_CRAWL_JOB_ID)
    next_run = job.next_run_time if job else None
    seconds = None
    if next_run is not None:
        seconds = max(0, int((next_run - datetime.now(timezone.utc)).total_seconds()))

    return {
        "is_running": True,
        "next_run_time": next_run.isoformat() if next_run else None,
        "seconds_until_next_run": seconds,
    }

"""Recovery sweep for crawl jobs left 'running' by a dead process."""

import logging
from typing import Iterable

from price_tracker.db.repository import JobStore
from price_tracker import metrics

logger = logging.getLogger(__name__)


async def reset_stuck_jobs(
    jobs: JobStore,
    exclude_ids: Iterable[int] = (),
    reason_prefix: str = "Watchdog",
) -> int:
    """
    Mark every job still in 'running' as 'stopped'.

    Args:
        jobs: Job store
        exclude_ids: Jobs owned by a live crawl in this process
        reason_prefix: Log prefix identifying the caller

    Returns:
        Number of jobs reset
    """
    count = await jobs.reset_all_running_to_stopped(exclude_ids=exclude_ids)
    if count:
        logger.warning(f"{reason_prefix}: reset {count} stuck crawl job(s) to stopped")
        metrics.record_stuck_jobs_reset(count)
    else:
        logger.debug(f"{reason_prefix}: no stuck crawl jobs")
    return count

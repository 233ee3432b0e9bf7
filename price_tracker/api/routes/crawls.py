"""Crawl job API endpoints."""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from price_tracker.api.deps import get_job_store, get_orchestrator
from price_tracker.db.repository import JobStore
from price_tracker.worker.scheduler import scheduler_status
from price_tracker.worker.tasks import CrawlOrchestrator, CrawlRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/crawls", tags=["crawls"])


# Response models
class CrawlJobResponse(BaseModel):
    """Response model for crawl job."""
    id: int
    job_type: str
    status: str
    category: str
    total_products: int
    crawled_products: int
    failed_products: int
    error_message: Optional[str]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class TriggerCrawlRequest(BaseModel):
    """Request model for triggering a crawl."""
    category: Optional[str] = None
    product_ids: Optional[List[int]] = None
    discover_new: bool = True


class TriggerCrawlResponse(BaseModel):
    accepted: bool
    job_id: Optional[int]
    message: str


class RunningCrawlResponse(BaseModel):
    """Live state of the active crawl, if any."""
    is_running: bool
    job_id: Optional[int] = None
    stop_requested: bool = False
    total_products: int = 0
    crawled_products: int = 0
    new_products: int = 0
    failed_products: int = 0
    notifications: int = 0


class StopCrawlResponse(BaseModel):
    stopped: bool
    job_id: Optional[int]
    message: str


class ResetStuckResponse(BaseModel):
    reset: int


class SchedulerStatusResponse(BaseModel):
    is_running: bool
    next_run_time: Optional[str]
    seconds_until_next_run: Optional[int]


@router.post("/trigger", response_model=TriggerCrawlResponse)
async def trigger_crawl(
    request: TriggerCrawlRequest,
    orchestrator: CrawlOrchestrator = Depends(get_orchestrator),
):
    """Start a manual crawl in the background."""
    try:
        result = await orchestrator.trigger(
            CrawlRequest(
                category=request.category,
                job_type="manual",
                product_ids=request.product_ids,
                discover_new=request.discover_new,
            )
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result.accepted:
        logger.info(f"Manual crawl rejected, job {result.job_id} is running")
    return TriggerCrawlResponse(
        accepted=result.accepted,
        job_id=result.job_id,
        message=result.message,
    )


@router.get("/jobs", response_model=List[CrawlJobResponse])
async def list_crawl_jobs(limit: int = 20, jobs: JobStore = Depends(get_job_store)):
    """List recent crawl jobs, newest first."""
    limit = max(1, min(limit, 200))
    return await jobs.list_recent(limit=limit)


@router.get("/jobs/latest", response_model=CrawlJobResponse)
async def get_latest_crawl_job(jobs: JobStore = Depends(get_job_store)):
    job = await jobs.latest()
    if not job:
        raise HTTPException(status_code=404, detail="No crawl jobs yet")
    return job


@router.get("/jobs/{job_id}", response_model=CrawlJobResponse)
async def get_crawl_job(job_id: int, jobs: JobStore = Depends(get_job_store)):
    """Get a specific crawl job."""
    job = await jobs.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Crawl job not found")
    return job


@router.get("/running", response_model=RunningCrawlResponse)
async def get_running_crawl(orchestrator: CrawlOrchestrator = Depends(get_orchestrator)):
    runtime = orchestrator.runtime
    if runtime is None:
        return RunningCrawlResponse(is_running=orchestrator.is_running())

    counters = runtime.counters
    return RunningCrawlResponse(
        is_running=True,
        job_id=runtime.job_id,
        stop_requested=runtime.stop_requested,
        total_products=counters.total,
        crawled_products=counters.crawled,
        new_products=counters.new_products,
        failed_products=counters.failed,
        notifications=counters.notifications,
    )


@router.post("/stop", response_model=StopCrawlResponse)
async def stop_crawl(orchestrator: CrawlOrchestrator = Depends(get_orchestrator)):
    """Ask the active crawl to stop at its next checkpoint."""
    result = orchestrator.stop()
    return StopCrawlResponse(stopped=result.stopped, job_id=result.job_id, message=result.message)


@router.post("/reset-stuck", response_model=ResetStuckResponse)
async def reset_stuck_crawls(orchestrator: CrawlOrchestrator = Depends(get_orchestrator)):
    """Mark jobs left 'running' by a dead process as stopped."""
    count = await orchestrator.reset_stuck_jobs()
    return ResetStuckResponse(reset=count)


@router.get("/scheduler", response_model=SchedulerStatusResponse)
async def get_scheduler_status():
    return SchedulerStatusResponse(**scheduler_status())

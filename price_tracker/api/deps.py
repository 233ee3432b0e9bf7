"""FastAPI dependencies."""

from fastapi import Depends

from price_tracker.db.repository import JobStore, SettingsStore
from price_tracker.worker.tasks import CrawlOrchestrator, crawl_orchestrator


def get_orchestrator() -> CrawlOrchestrator:
    """Dependency for the process-wide crawl orchestrator."""
    return crawl_orchestrator


def get_job_store(orchestrator: CrawlOrchestrator = Depends(get_orchestrator)) -> JobStore:
    return orchestrator.jobs


def get_settings_store(
    orchestrator: CrawlOrchestrator = Depends(get_orchestrator),
) -> SettingsStore:
    return orchestrator.crawler_settings

"""FastAPI application: crawl API, weekly schedule and metrics."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Response
from prometheus_fastapi_instrumentator import Instrumentator

from price_tracker.api.routes import crawls, settings as settings_routes
from price_tracker.config import settings
from price_tracker.db.models import Base
from price_tracker.db.session import engine
from price_tracker.logging_config import setup_logging
from price_tracker.worker.crawl_watchdog import reset_stuck_jobs
from price_tracker.worker.scheduler import setup_scheduler
from price_tracker.worker.tasks import crawl_orchestrator

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, recover stuck jobs and start the scheduler; undo on exit."""
    logger.info("Price tracker starting")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # No crawl exists yet in this process, so any 'running' row is orphaned
    await reset_stuck_jobs(crawl_orchestrator.jobs, reason_prefix="Startup")

    app.state.scheduler = None
    if settings.scheduler_enabled:
        app.state.scheduler = setup_scheduler()
        app.state.scheduler.start()
        logger.info("Weekly crawl scheduler started")
    else:
        logger.info("Scheduler disabled by configuration")

    try:
        yield
    finally:
        logger.info("Price tracker shutting down")
        if app.state.scheduler is not None:
            app.state.scheduler.shutdown(wait=False)
        await crawl_orchestrator.shutdown()
        await engine.dispose()
        logger.info("Shutdown complete")


app = FastAPI(
    title="Price Tracker",
    description="Crawls retail category pages, keeps price history and flags sales and price changes",
    version="0.1.0",
    lifespan=lifespan,
)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/metrics", "/health", "/favicon.ico"],
).instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

app.include_router(crawls.router)
app.include_router(settings_routes.router)


@app.get("/health")
async def health():
    return {"status": "healthy", "crawl_running": crawl_orchestrator.is_running()}


@app.get("/favicon.ico")
async def favicon():
    return Response(status_code=204)


if __name__ == "__main__":
    uvicorn.run(
        "price_tracker.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )

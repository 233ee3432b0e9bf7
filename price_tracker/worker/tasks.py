"""Crawl job orchestration.

One crawl runs per process. `run_crawl` awaits the whole job (scheduler);
`trigger` starts it as a background task and returns immediately (API).
"""

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from price_tracker.config import settings
from price_tracker.db.models import Product
from price_tracker.db.repository import InventoryStore, JobStore, NotificationStore, SettingsStore
from price_tracker.db.session import AsyncSessionLocal
from price_tracker.detect.change_detector import Thresholds, parse_rate_limit_ms
from price_tracker.ingest.base import BaseFetcher, FetchError, RawProductRecord, RenderedContent
from price_tracker.ingest.catalog import CATEGORY_PAGES, resolve_categories
from price_tracker.ingest.category_scanner import CategoryDiscoverer, CategoryScanResult
from price_tracker.ingest.fetchers.headless import HeadlessPageFetcher
from price_tracker.ingest.product_extractor import ProductExtractor, product_extractor
from price_tracker.ingest.rate_limiter import RateLimiter
from price_tracker.ingest.reconciler import ProductIndex, Reconciler
from price_tracker.logging_config import get_logger
from price_tracker.normalize.pricing import normalize_url
from price_tracker.notify.formatters import format_crawl_summary
from price_tracker.notify.owner import OwnerNotifier, owner_notifier
from price_tracker.worker.crawl_watchdog import reset_stuck_jobs
from price_tracker.worker.runtime import CrawlCounters, CrawlerRuntime
from price_tracker import metrics

logger = logging.getLogger(__name__)

ERROR_MESSAGE_LIMIT = 500


class CrawlAlreadyRunningError(RuntimeError):
    """A crawl job is already active in this process."""

    def __init__(self, job_id: Optional[int]):
        self.job_id = job_id
        super().__init__(f"Crawl job {job_id} is already running")


@dataclass
class CrawlRequest:
    """Parameters of one crawl job."""

    category: Optional[str] = None  # None / "all" / catalog key
    job_type: str = "manual"
    product_ids: Optional[list[int]] = None
    discover_new: bool = True


@dataclass
class CrawlOutcome:
    job_id: int
    status: str
    total: int
    crawled: int
    new_products: int
    failed: int
    message: str
    error_message: Optional[str] = None
    notifications: int = 0


@dataclass
class CrawlTriggerResult:
    accepted: bool
    job_id: Optional[int]
    message: str


@dataclass
class StopResult:
    stopped: bool
    job_id: Optional[int]
    message: str


def final_status(stopped: bool, counters: CrawlCounters) -> str:
    """Terminal job status from the cancellation flag and counters."""
    if stopped:
        return "stopped"
    if counters.failed > 0 and counters.crawled == 0:
        return "failed"
    return "completed"


class CrawlOrchestrator:
    """
    Owns the crawl lifecycle: claim the single-flight slot, create the job,
    run discovery or refresh, finalize the job exactly once.

    The active `CrawlerRuntime` doubles as the single-flight flag.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        inventory: Optional[InventoryStore] = None,
        jobs: Optional[JobStore] = None,
        notifications: Optional[NotificationStore] = None,
        crawler_settings: Optional[SettingsStore] = None,
        owner: Optional[OwnerNotifier] = None,
        fetcher_factory: Optional[Callable[[], BaseFetcher]] = None,
        extractor: Optional[ProductExtractor] = None,
        max_pages: Optional[int] = None,
        category_delay: Optional[float] = None,
    ):
        session_factory = session_factory or AsyncSessionLocal
        self.inventory = inventory or InventoryStore(session_factory)
        self.jobs = jobs or JobStore(session_factory)
        self.notifications = notifications or NotificationStore(session_factory)
        self.crawler_settings = crawler_settings or SettingsStore(session_factory)
        self.owner = owner or owner_notifier
        self.fetcher_factory = fetcher_factory or HeadlessPageFetcher
        self.extractor = extractor or product_extractor
        self.max_pages = max_pages or settings.max_pages_per_category
        self.category_delay = (
            settings.category_delay_seconds if category_delay is None else category_delay
        )

        self._runtime: Optional[CrawlerRuntime] = None
        self._starting = False
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def is_running(self) -> bool:
        return self._starting or self._runtime is not None

    @property
    def active_job_id(self) -> Optional[int]:
        return self._runtime.job_id if self._runtime else None

    @property
    def runtime(self) -> Optional[CrawlerRuntime]:
        return self._runtime

    async def run_crawl(self, request: Optional[CrawlRequest] = None) -> CrawlOutcome:
        """
        Run a crawl to completion.

        Raises:
            ValueError: Unknown category
            CrawlAlreadyRunningError: Another crawl is active
        """
        request = request or CrawlRequest()
        runtime, categories = await self._start(request)
        return await self._execute(runtime, request, categories)

    async def trigger(self, request: Optional[CrawlRequest] = None) -> CrawlTriggerResult:
        """
        Start a crawl in the background and return immediately.

        Raises:
            ValueError: Unknown category
        """
        request = request or CrawlRequest()
        try:
            runtime, categories = await self._start(request)
        except CrawlAlreadyRunningError as e:
            metrics.record_job_rejected(request.job_type)
            return CrawlTriggerResult(
                accepted=False,
                job_id=e.job_id,
                message="A crawl is already running",
            )

        task = asyncio.create_task(
            self._execute(runtime, request, categories),
            name=f"crawl-job-{runtime.job_id}",
        )
        runtime.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        return CrawlTriggerResult(
            accepted=True,
            job_id=runtime.job_id,
            message=f"Crawl job {runtime.job_id} started",
        )

    def stop(self) -> StopResult:
        """Request cooperative cancellation of the active crawl."""
        runtime = self._runtime
        if runtime is None:
            return StopResult(stopped=False, job_id=None, message="No crawl is running")
        runtime.token.cancel()
        logger.info(f"Stop requested for crawl job {runtime.job_id}")
        return StopResult(
            stopped=True,
            job_id=runtime.job_id,
            message=f"Stop requested for crawl job {runtime.job_id}",
        )

    async def reset_stuck_jobs(self) -> int:
        """Reset 'running' jobs left behind by dead processes (never the live one)."""
        exclude = [self._runtime.job_id] if self._runtime else []
        return await reset_stuck_jobs(self.jobs, exclude_ids=exclude, reason_prefix="On-demand")

    async def shutdown(self) -> None:
        """Stop the active crawl and wait for background tasks to finish."""
        self.stop()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.owner.close()

    # ------------------------------------------------------------------
    # Job lifecycle
    # ------------------------------------------------------------------

    async def _start(self, request: CrawlRequest) -> tuple[CrawlerRuntime, list[str]]:
        categories = resolve_categories(request.category)

        if self.is_running():
            raise CrawlAlreadyRunningError(self.active_job_id)

        # Claimed synchronously so a concurrent caller sees the slot taken
        self._starting = True
        try:
            now = datetime.utcnow()
            job_id = await self.jobs.create({
                "job_type": request.job_type,
                "status": "running",
                "category": request.category or "all",
                "total_products": 0,
                "crawled_products": 0,
                "failed_products": 0,
                "started_at": now,
                "created_at": now,
            })
            runtime = CrawlerRuntime(
                job_id=job_id,
                job_type=request.job_type,
                category=request.category or "all",
                started_at=now,
            )
            self._runtime = runtime
        finally:
            self._starting = False

        metrics.record_job_started()
        logger.info(
            f"Crawl job {job_id} started "
            f"(type={request.job_type}, category={request.category or 'all'}, "
            f"discover_new={request.discover_new})"
        )
        return runtime, categories

    async def _execute(
        self,
        runtime: CrawlerRuntime,
        request: CrawlRequest,
        categories: list[str],
    ) -> CrawlOutcome:
        start = time.monotonic()
        counters = runtime.counters
        job_log = get_logger(__name__, job_id=runtime.job_id, job_type=request.job_type)

        try:
            rows = await self.crawler_settings.list()
            thresholds = Thresholds.from_settings(rows)
            limiter = RateLimiter.from_delay_ms(parse_rate_limit_ms(rows))

            async with self.fetcher_factory() as fetcher:
                runtime.fetcher = fetcher
                if request.discover_new:
                    await self._discover(runtime, categories, thresholds, limiter)
                else:
                    await self._refresh(runtime, request, thresholds, limiter)

        except Exception as e:
            job_log.error(f"Crawl failed: {e}", exc_info=True)
            counters.failed += 1
            runtime.error_message = str(e)[:ERROR_MESSAGE_LIMIT]

        finally:
            runtime.fetcher = None
            stopped = runtime.stop_requested
            status = final_status(stopped, counters)
            fields = {
                "status": status,
                "total_products": counters.total,
                "crawled_products": counters.crawled,
                "failed_products": counters.failed,
                "completed_at": datetime.utcnow(),
            }
            if runtime.error_message:
                fields["error_message"] = runtime.error_message
            try:
                await self.jobs.update(runtime.job_id, fields)
            except Exception as e:
                logger.error(f"Failed to finalize crawl job {runtime.job_id}: {e}", exc_info=True)
            finally:
                if self._runtime is runtime:
                    self._runtime = None
                metrics.record_job_finished(request.job_type, status, time.monotonic() - start)

        if stopped:
            message = (
                f"Crawl stopped: {counters.crawled} updated, {counters.new_products} new, "
                f"{counters.notifications} notifications"
            )
        else:
            message = (
                f"Crawl finished: {counters.crawled} crawled, {counters.new_products} new, "
                f"{counters.failed} failed, {counters.notifications} notifications"
            )
        job_log.info(f"Finished as {status}: {message}")

        if status == "completed" and counters.has_activity:
            title, content = format_crawl_summary(
                counters.crawled, counters.new_products, counters.failed, counters.notifications
            )
            try:
                await self.owner.notify(title, content)
            except Exception as e:
                logger.warning(f"Owner notification failed for crawl job {runtime.job_id}: {e}")

        return CrawlOutcome(
            job_id=runtime.job_id,
            status=status,
            total=counters.total,
            crawled=counters.crawled,
            new_products=counters.new_products,
            failed=counters.failed,
            message=message,
            error_message=runtime.error_message,
            notifications=counters.notifications,
        )

    # ------------------------------------------------------------------
    # Phase 1: discovery
    # ------------------------------------------------------------------

    async def _discover(
        self,
        runtime: CrawlerRuntime,
        categories: list[str],
        thresholds: Thresholds,
        limiter: RateLimiter,
    ) -> None:
        token = runtime.token
        counters = runtime.counters

        index = ProductIndex(await self.inventory.list_active())
        reconciler = Reconciler(self.inventory, self.notifications, thresholds, index)
        discoverer = CategoryDiscoverer(runtime.fetcher, self.extractor, limiter)
        logger.info(f"Discovering {len(categories)} categories against {len(index)} known products")

        for category in categories:
            if token.is_cancelled:
                logger.info("Stop requested, aborting category loop")
                return

            for page in CATEGORY_PAGES.get(category, []):
                if token.is_cancelled:
                    logger.info("Stop requested, aborting sub-category loop")
                    return

                result = CategoryScanResult(category=page.label)
                async for record in discoverer.discover(page, self.max_pages, token, result):
                    counters.total += 1
                    await self._reconcile_one(reconciler, record, category, counters)

                if not result.success:
                    counters.failed += 1
                logger.info(
                    f"{page.label}: {result.products_found} products from "
                    f"{result.pages_fetched} pages in {result.duration_seconds:.1f}s"
                    + (f" (error: {result.error})" if result.error else "")
                )

                if await token.sleep(self.category_delay):
                    logger.info("Stop requested during category delay")
                    return

    async def _reconcile_one(
        self,
        reconciler: Reconciler,
        record: RawProductRecord,
        category: str,
        counters: CrawlCounters,
    ) -> None:
        try:
            outcome = await reconciler.reconcile(record, category)
        except Exception as e:
            logger.error(f"Failed to save product {record.url}: {e}", exc_info=True)
            counters.failed += 1
            return

        if outcome is None:
            return
        counters.crawled += 1
        if outcome.created:
            counters.new_products += 1
        counters.notifications += len(outcome.notifications)

    # ------------------------------------------------------------------
    # Phase 2: refresh known products
    # ------------------------------------------------------------------

    async def _select_for_refresh(self, request: CrawlRequest) -> list[Product]:
        category = request.category if request.category not in (None, "all") else None
        products = await self.inventory.list_active(category)
        if request.product_ids:
            wanted = set(request.product_ids)
            return [p for p in products if p.id in wanted]

        cutoff = datetime.utcnow() - timedelta(minutes=settings.refresh_freshness_minutes)
        return [p for p in products if p.last_crawled_at is None or p.last_crawled_at < cutoff]

    async def _refresh(
        self,
        runtime: CrawlerRuntime,
        request: CrawlRequest,
        thresholds: Thresholds,
        limiter: RateLimiter,
    ) -> None:
        token = runtime.token
        counters = runtime.counters

        selected = await self._select_for_refresh(request)
        counters.total = len(selected)
        await self.jobs.update(runtime.job_id, {"total_products": counters.total})
        if not selected:
            logger.info("No products due for refresh")
            return

        index = ProductIndex(await self.inventory.list_active())
        reconciler = Reconciler(self.inventory, self.notifications, thresholds, index)
        logger.info(f"Refreshing {len(selected)} products")

        for position, product in enumerate(selected):
            if token.is_cancelled:
                logger.info("Stop requested, aborting refresh loop")
                return

            try:
                content = await runtime.fetcher.fetch(product.url)
            except FetchError as e:
                logger.warning(f"Refresh fetch failed for product {product.id}: {e.reason}")
                counters.failed += 1
            else:
                record = self._match_record(product, content)
                if record is None:
                    logger.warning(f"No price found on product page {product.url}")
                    counters.failed += 1
                else:
                    await self._reconcile_one(reconciler, record, product.category, counters)

            if position < len(selected) - 1 and await limiter.wait(token):
                logger.info("Stop requested during refresh delay")
                return

    def _match_record(self, product: Product, content: RenderedContent) -> Optional[RawProductRecord]:
        """The record on a product page that belongs to `product`."""
        records = self.extractor.extract(content)
        key = normalize_url(product.url)
        for record in records:
            if record.url and normalize_url(record.url) == key:
                return record
        if len(records) == 1:
            record = records[0]
            return dataclasses.replace(record, url=product.url, name=record.name or product.name)
        return None


# Global crawl orchestrator
crawl_orchestrator = CrawlOrchestrator()

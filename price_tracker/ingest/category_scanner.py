"""Category discovery: walk paginated listing pages and stream products."""

import logging
import time
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from price_tracker.config import settings
from price_tracker.ingest.base import BaseFetcher, FetchError, RawProductRecord
from price_tracker.ingest.catalog import CategoryPage
from price_tracker.ingest.product_extractor import ProductExtractor, product_extractor
from price_tracker.ingest.rate_limiter import RateLimiter
from price_tracker.worker.runtime import CancellationToken

logger = logging.getLogger(__name__)


@dataclass
class CategoryScanResult:
    """Per sub-category report read by the orchestrator."""

    category: str
    pages_fetched: int = 0
    products_found: int = 0
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.error is None


class CategoryDiscoverer:
    """
    Streams product records from one category's listing pages.

    Pagination stops at `max_pages`, at the first empty page, when the page
    has no next-page affordance, on a fetch error, or on cancellation.
    Errors are recorded on the result and never raised.
    """

    def __init__(
        self,
        fetcher: BaseFetcher,
        extractor: Optional[ProductExtractor] = None,
        rate_limiter: Optional[RateLimiter] = None,
        base_url: Optional[str] = None,
    ):
        self.fetcher = fetcher
        self.extractor = extractor or product_extractor
        self.rate_limiter = rate_limiter or RateLimiter()
        self.base_url = base_url or settings.site_base_url

    async def discover(
        self,
        category_page: CategoryPage,
        max_pages: int,
        token: CancellationToken,
        result: CategoryScanResult,
    ) -> AsyncIterator[RawProductRecord]:
        start = time.monotonic()
        try:
            for page in range(1, max_pages + 1):
                if token.is_cancelled:
                    logger.info(f"Discovery of {category_page.label} cancelled before page {page}")
                    return

                url = category_page.url(page, self.base_url)
                logger.info(f"Fetching {category_page.label} page {page}: {url}")

                try:
                    content = await self.fetcher.fetch(url)
                    records = self.extractor.extract(content)
                except FetchError as e:
                    logger.warning(f"Fetch failed for {category_page.label} page {page}: {e.reason}")
                    result.error = e.reason
                    return
                except Exception as e:
                    logger.error(
                        f"Unexpected error on {category_page.label} page {page}: {e}",
                        exc_info=True,
                    )
                    result.error = str(e)
                    return

                result.pages_fetched += 1
                result.products_found += len(records)
                logger.info(f"Found {len(records)} products on {category_page.label} page {page}")

                for record in records:
                    yield record

                if not records:
                    logger.info(f"No products on page {page}, ending {category_page.label}")
                    return
                if not content.has_next_page:
                    logger.debug(f"No next page after page {page} of {category_page.label}")
                    return
                if page < max_pages:
                    if await self.rate_limiter.wait(token):
                        logger.info(f"Discovery of {category_page.label} cancelled during delay")
                        return
        finally:
            result.duration_seconds = time.monotonic() - start

"""Headless browser fetcher for JavaScript-rendered listing pages."""

import asyncio
import logging
import time
from datetime import datetime
from typing import Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from price_tracker.config import settings
from price_tracker.ingest.base import BaseFetcher, FetchError, RenderedContent
from price_tracker.ingest.session_store import SessionStore, session_store
from price_tracker.ingest.stealth_browser import LAUNCH_ARGS, stealth_browser
from price_tracker.metrics import record_fetch

logger = logging.getLogger(__name__)

# Any of these means the product grid has rendered
PRODUCT_CARD_SELECTOR = '[data-testid="product-card"], .product-card, article'

# Pagination affordance
NEXT_PAGE_SELECTOR = '[aria-label="Next page"], [class*="next"], a[rel="next"]'

_HAS_NEXT_PAGE_JS = """
(selector) => {
    const el = document.querySelector(selector);
    if (!el) return false;
    if (el.disabled) return false;
    if (el.getAttribute('aria-disabled') === 'true') return false;
    if (el.hasAttribute('disabled')) return false;
    return true;
}
"""


class HeadlessPageFetcher(BaseFetcher):
    """
    Renders pages in headless Chromium.

    One browser and one context are shared by every fetch of this instance,
    so cookies handed out by the site are replayed on later pages. The
    context's storage state is saved on close and reloaded on the next run.
    """

    def __init__(
        self,
        navigation_timeout: Optional[float] = None,
        selector_timeout: Optional[float] = None,
        sessions: Optional[SessionStore] = None,
        site_url: Optional[str] = None,
    ):
        """
        Args:
            navigation_timeout: Seconds allowed for `goto` (defaults to config)
            selector_timeout: Seconds to wait for product cards (defaults to config)
            sessions: Storage state persistence (defaults to the global store)
            site_url: Site whose cookies are replayed (defaults to config)
        """
        self.navigation_timeout_ms = int(
            (navigation_timeout or settings.headless_browser_timeout) * 1000
        )
        self.selector_timeout_ms = int(
            (selector_timeout or settings.selector_wait_timeout) * 1000
        )
        self.sessions = sessions or session_store
        self.site_key = SessionStore.site_key(site_url or settings.site_base_url)

        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._init_lock = asyncio.Lock()

    async def _ensure_context(self) -> BrowserContext:
        """Launch (or relaunch) the browser and create the shared context."""
        async with self._init_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()

            if self._browser is not None and not self._browser.is_connected():
                logger.warning("Headless browser disconnected, relaunching")
                self._browser = None
                self._context = None

            if self._browser is None:
                self._browser = await self._playwright.chromium.launch(
                    headless=True,
                    args=LAUNCH_ARGS,
                )
                logger.info("Launched headless Chromium")

            if self._context is None:
                context_options = stealth_browser.get_stealth_context_options()
                storage_state = self.sessions.load_storage_state(self.site_key)
                if isinstance(storage_state, dict):
                    context_options["storage_state"] = storage_state
                    logger.debug(f"Replaying storage state for {self.site_key}")
                try:
                    self._context = await self._browser.new_context(**context_options)
                except PlaywrightError as e:
                    if "storage_state" not in context_options:
                        raise
                    # Saved state rejected by the browser; start clean from now on
                    logger.warning(f"Discarding storage state for {self.site_key}: {e}")
                    self.sessions.clear(self.site_key)
                    del context_options["storage_state"]
                    self._context = await self._browser.new_context(**context_options)
                await stealth_browser.apply_to_context(self._context)

            return self._context

    async def fetch(self, url: str) -> RenderedContent:
        """
        Render a listing page.

        Raises:
            FetchError: On navigation timeout or browser failure
        """
        start = time.monotonic()
        context = await self._ensure_context_or_raise(url)
        page = None
        try:
            page = await context.new_page()
            await page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self.navigation_timeout_ms,
            )

            try:
                await page.wait_for_selector(
                    PRODUCT_CARD_SELECTOR,
                    timeout=self.selector_timeout_ms,
                )
            except PlaywrightTimeoutError:
                logger.debug(f"No product cards appeared on {url}, continuing")

            html = await page.content()
            has_next_page = bool(
                await page.evaluate(_HAS_NEXT_PAGE_JS, NEXT_PAGE_SELECTOR)
            )

            record_fetch(True, time.monotonic() - start)
            return RenderedContent(
                url=url,
                html=html,
                has_next_page=has_next_page,
                fetched_at=datetime.utcnow(),
            )

        except PlaywrightTimeoutError as e:
            record_fetch(False, time.monotonic() - start)
            raise FetchError(url, f"Navigation timeout: {e}") from e
        except PlaywrightError as e:
            record_fetch(False, time.monotonic() - start)
            raise FetchError(url, str(e)) from e
        finally:
            if page is not None:
                try:
                    await page.close()
                except PlaywrightError as e:
                    logger.debug(f"Error closing page for {url}: {e}")

    async def _ensure_context_or_raise(self, url: str) -> BrowserContext:
        try:
            return await self._ensure_context()
        except PlaywrightError as e:
            record_fetch(False, 0.0)
            raise FetchError(url, f"Browser launch failed: {e}") from e

    async def close(self):
        """Save cookies, then close context, browser and Playwright."""
        if self._context is not None:
            try:
                state = await self._context.storage_state()
                self.sessions.save_storage_state(self.site_key, state)
            except PlaywrightError as e:
                logger.warning(f"Could not capture storage state: {e}")
            try:
                await self._context.close()
            except PlaywrightError as e:
                logger.error(f"Error closing browser context: {e}")
            self._context = None

        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.error(f"Error closing browser: {e}")
            self._browser = None

        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

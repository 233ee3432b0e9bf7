"""Stealth options for Playwright Chromium.

Hides the usual automation tells (navigator.webdriver, empty plugin list,
missing chrome runtime) and gives each context an Australian desktop
fingerprint.
"""

import logging
import random
from typing import Any, Dict

from playwright.async_api import BrowserContext

from price_tracker.config import settings
from price_tracker.ingest.user_agent_pool import user_agent_pool

logger = logging.getLogger(__name__)

# Chromium flags that remove automation banners and sandbox requirements
LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-blink-features=AutomationControlled",
    "--no-first-run",
    "--no-zygote",
    "--single-process",
    "--disable-gpu",
]

_VIEWPORTS = [
    {"width": 1920, "height": 1080},
    {"width": 1680, "height": 1050},
    {"width": 1536, "height": 864},
    {"width": 1440, "height": 900},
    {"width": 1366, "height": 768},
]


class StealthBrowser:
    """Builds stealth context options and installs init scripts."""

    def _init_scripts(self) -> list[str]:
        primary = settings.browser_locale
        language = primary.split("-")[0]
        return [
            # Hide webdriver property
            """
            Object.defineProperty(navigator, 'webdriver', {
                get: () => undefined
            });
            """,
            # Mock plugins
            """
            Object.defineProperty(navigator, 'plugins', {
                get: () => [1, 2, 3, 4, 5]
            });
            """,
            # Mock languages
            f"""
            Object.defineProperty(navigator, 'languages', {{
                get: () => ['{primary}', '{language}']
            }});
            """,
            # Chrome runtime
            """
            window.chrome = {
                runtime: {}
            };
            """,
        ]

    async def apply_to_context(self, context: BrowserContext) -> None:
        """Install the stealth init scripts on every page of a context."""
        for script in self._init_scripts():
            await context.add_init_script(script)
        logger.debug("Stealth init scripts installed")

    def get_stealth_context_options(self) -> Dict[str, Any]:
        """
        Get Playwright context options with stealth settings.

        Returns:
            Dict of context options
        """
        return {
            "viewport": random.choice(_VIEWPORTS),
            "locale": settings.browser_locale,
            "timezone_id": settings.browser_timezone,
            "user_agent": user_agent_pool.get_random(),
            "ignore_https_errors": True,
            "bypass_csp": True,
            "extra_http_headers": {
                "Accept-Language": f"{settings.browser_locale},{settings.browser_locale.split('-')[0]};q=0.9",
            },
        }


# Global stealth browser instance
stealth_browser = StealthBrowser()

"""Owner notification sink (Discord-compatible webhook)."""

import logging
from datetime import datetime
from typing import Optional

import httpx

from price_tracker.config import settings

logger = logging.getLogger(__name__)


class OwnerNotifier:
    """Best-effort push of job summaries to the owner's webhook."""

    def __init__(self, webhook_url: Optional[str] = None, timeout: Optional[float] = None):
        self.webhook_url = settings.owner_webhook_url if webhook_url is None else webhook_url
        self.timeout = timeout or settings.owner_webhook_timeout
        self._http_client: httpx.AsyncClient | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def notify(self, title: str, content: str) -> bool:
        """
        Send a notification to the owner.

        Returns:
            True if the webhook accepted it, False otherwise (never raises)
        """
        if not self.enabled:
            logger.debug(f"Owner webhook not configured, skipping: {title}")
            return False

        payload = {
            "username": "Price Tracker",
            "embeds": [
                {
                    "title": title,
                    "description": content,
                    "color": 0x00FF00,
                    "timestamp": datetime.utcnow().isoformat(),
                }
            ],
        }

        try:
            client = await self._get_client()
            response = await client.post(self.webhook_url, json=payload)
            response.raise_for_status()
            logger.info(f"Owner notified: {title}")
            return True
        except httpx.HTTPError as e:
            logger.warning(f"Owner notification failed: {e}")
            return False


# Global owner notifier
owner_notifier = OwnerNotifier()

"""Per-job crawl runtime state and cooperative cancellation."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from price_tracker.ingest.base import BaseFetcher


class CancellationToken:
    """
    Cooperative stop signal shared by every loop of a crawl.

    Loops poll `is_cancelled` at their checkpoints; delays go through
    `sleep()` so a stop request cuts them short.
    """

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def sleep(self, seconds: float) -> bool:
        """
        Wait up to `seconds`, returning early on cancellation.

        Returns:
            True if cancellation was requested before or during the wait
        """
        if self._event.is_set():
            return True
        if seconds <= 0:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True


@dataclass
class CrawlCounters:
    """Running totals persisted on the job row at finalization."""

    total: int = 0
    crawled: int = 0
    failed: int = 0
    new_products: int = 0
    notifications: int = 0

    @property
    def has_activity(self) -> bool:
        return self.crawled > 0 or self.new_products > 0


@dataclass
class CrawlerRuntime:
    """State of the one active crawl in this process."""

    job_id: int
    job_type: str
    category: str
    token: CancellationToken = field(default_factory=CancellationToken)
    counters: CrawlCounters = field(default_factory=CrawlCounters)
    fetcher: Optional[BaseFetcher] = None
    task: Optional[asyncio.Task] = None
    started_at: datetime = field(default_factory=datetime.utcnow)
    error_message: Optional[str] = None

    @property
    def stop_requested(self) -> bool:
        return self.token.is_cancelled

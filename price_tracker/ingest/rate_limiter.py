"""Polite pacing between page requests, with jitter."""

import logging
import random
from typing import Optional

from price_tracker.config import settings
from price_tracker.worker.runtime import CancellationToken

logger = logging.getLogger(__name__)


class RateLimiter:
    """Uniform random delay between a minimum and maximum interval."""

    def __init__(
        self,
        min_interval: Optional[float] = None,
        max_interval: Optional[float] = None,
    ):
        self.min_interval = settings.min_page_delay_seconds if min_interval is None else min_interval
        self.max_interval = settings.max_page_delay_seconds if max_interval is None else max_interval
        if self.max_interval < self.min_interval:
            self.max_interval = self.min_interval

    @classmethod
    def from_delay_ms(cls, delay_ms: Optional[int]) -> "RateLimiter":
        """
        Limiter for a `rate_limit_delay_ms` override.

        The override becomes the minimum delay; the maximum is 1.5x that.
        """
        if delay_ms is None:
            return cls()
        seconds = max(0.0, delay_ms / 1000.0)
        return cls(min_interval=seconds, max_interval=seconds * 1.5)

    def next_interval(self) -> float:
        return random.uniform(self.min_interval, self.max_interval)

    async def wait(self, token: CancellationToken) -> bool:
        """
        Sleep for one jittered interval.

        Returns:
            True if the crawl was cancelled during the wait
        """
        interval = self.next_interval()
        logger.debug(f"Rate limit: waiting {interval:.2f}s")
        return await token.sleep(interval)

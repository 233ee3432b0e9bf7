"""Rotating pool of Chromium-family desktop user agents.

The fetcher drives Chromium, so only Chrome and Edge strings are pooled to
keep the user agent consistent with the engine's fingerprint.
"""

import logging
import random
from collections import deque
from typing import List

from price_tracker.config import settings

logger = logging.getLogger(__name__)

CHROME_VERSIONS = range(118, 131)

_WINDOWS = "Windows NT 10.0; Win64; x64"
_MACOS = "Macintosh; Intel Mac OS X 10_15_7"
_WEBKIT = "AppleWebKit/537.36 (KHTML, like Gecko)"


def _chromium_agents() -> List[str]:
    agents = []
    for version in CHROME_VERSIONS:
        chrome = f"Chrome/{version}.0.0.0 Safari/537.36"
        agents.append(f"Mozilla/5.0 ({_WINDOWS}) {_WEBKIT} {chrome}")
        agents.append(f"Mozilla/5.0 ({_MACOS}) {_WEBKIT} {chrome}")
        agents.append(f"Mozilla/5.0 ({_WINDOWS}) {_WEBKIT} {chrome} Edg/{version}.0.0.0")
    return agents


class UserAgentPool:
    """
    Random user agents, skipping the ones handed out most recently so
    consecutive browser contexts do not share a fingerprint.
    """

    def __init__(self, pool_size: int = 50, recent_size: int = 10):
        candidates = _chromium_agents()
        random.shuffle(candidates)
        self._user_agents = candidates[: max(1, pool_size)]
        self._recent = deque(maxlen=recent_size)
        logger.debug(f"User agent pool holds {len(self._user_agents)} agents")

    def get_random(self, exclude_recent: bool = True) -> str:
        """Pick a user agent, avoiding recent picks while alternatives remain."""
        choices = self._user_agents
        if exclude_recent and self._recent:
            fresh = [ua for ua in self._user_agents if ua not in self._recent]
            choices = fresh or self._user_agents

        selected = random.choice(choices)
        self._recent.append(selected)
        return selected

    def __len__(self) -> int:
        return len(self._user_agents)


# Global user agent pool instance
user_agent_pool = UserAgentPool(pool_size=settings.user_agent_pool_size)

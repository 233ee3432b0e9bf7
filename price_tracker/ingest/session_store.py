"""Browser storage state persistence across crawl runs."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from price_tracker.config import settings

logger = logging.getLogger(__name__)


class SessionStore:
    """
    Persists Playwright storage state (cookies, local storage) per site.

    Replaying cookies from the previous run lets the crawler keep whatever
    bot-check clearance the site handed out last time.
    """

    def __init__(self, base_path: Optional[str] = None):
        self.base_path = Path(base_path or settings.session_storage_path)

    @staticmethod
    def site_key(url: str) -> str:
        """Session key for a site (its host name)."""
        host = urlparse(url).netloc or url
        return host.lower().replace(":", "_")

    def _get_storage_state_path(self, site: str) -> Path:
        return self.base_path / site / "storage_state.json"

    def load_storage_state(self, site: str) -> Optional[Dict[str, Any]]:
        path = self._get_storage_state_path(site)
        if not path.exists():
            return None
        try:
            with open(path, "r") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Error loading storage state for {site}: {e}")
            return None

    def save_storage_state(self, site: str, state: Dict[str, Any]) -> None:
        path = self._get_storage_state_path(site)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w") as f:
                json.dump(state, f, indent=2, default=str)
            logger.debug(f"Saved storage state for {site}")
        except OSError as e:
            logger.warning(f"Error saving storage state for {site}: {e}")

    def clear(self, site: str) -> None:
        path = self._get_storage_state_path(site)
        if path.exists():
            path.unlink()
            logger.info(f"Cleared storage state for {site}")


# Global session store instance
session_store = SessionStore()

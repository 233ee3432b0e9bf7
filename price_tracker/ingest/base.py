"""Base types shared by the fetch, extract and discovery stages."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional


@dataclass
class RenderedContent:
    """Rendered HTML for a URL."""

    url: str
    html: str
    has_next_page: bool = False
    fetched_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class RawProductRecord:
    """Product data as scraped, before reconciliation."""

    url: Optional[str]
    name: Optional[str]
    current_price: Optional[Decimal]
    original_price: Optional[Decimal] = None
    is_on_sale: bool = False
    discount_percent: Optional[Decimal] = None
    image_url: Optional[str] = None
    brand: Optional[str] = None
    sku: Optional[str] = None
    source: str = "dom"  # Which extraction strategy produced it


class FetchError(Exception):
    """A page could not be rendered (timeout, navigation failure, engine crash)."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to fetch {url}: {reason}")


class BaseFetcher(ABC):
    """Abstract page fetcher."""

    @abstractmethod
    async def fetch(self, url: str) -> RenderedContent:
        """
        Render a page.

        Args:
            url: Absolute URL to load

        Returns:
            RenderedContent with the final HTML

        Raises:
            FetchError: If the page could not be rendered
        """
        pass

    async def close(self) -> None:
        """Release any resources held by the fetcher."""
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

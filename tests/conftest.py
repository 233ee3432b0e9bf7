"""Shared fixtures and in-memory fakes for the crawl pipeline tests."""

import os

# Must be set before price_tracker.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("OWNER_WEBHOOK_URL", "")
os.environ.setdefault("MIN_PAGE_DELAY_SECONDS", "0")
os.environ.setdefault("MAX_PAGE_DELAY_SECONDS", "0")
os.environ.setdefault("CATEGORY_DELAY_SECONDS", "0")

import asyncio
from datetime import datetime
from types import SimpleNamespace
from typing import Any, Callable, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from price_tracker.db.models import Base, CrawlerSetting, CrawlJob, Product
from price_tracker.ingest.base import BaseFetcher, FetchError, RenderedContent
from price_tracker.worker.tasks import CrawlOrchestrator

SITE = "https://www.chemistwarehouse.com.au"


# ---------------------------------------------------------------------------
# HTML builders
# ---------------------------------------------------------------------------

def product_card(
    product_id: int,
    name: str,
    price: str,
    was: Optional[str] = None,
    brand: Optional[str] = None,
    slug: Optional[str] = None,
) -> str:
    slug = slug or name.lower().replace(" ", "-")
    was_html = f'<span class="product-price-was">Was {was}</span>' if was else ""
    brand_html = f'<div class="product-brand">{brand}</div>' if brand else ""
    return f"""
    <article class="product-card">
      <a href="/buy/{product_id}/{slug}">
        <img data-src="/images/{product_id}.jpg" />
      </a>
      {brand_html}
      <h2 class="product-title"><a href="/buy/{product_id}/{slug}">{name}</a></h2>
      <span class="product-price">{price}</span>
      {was_html}
    </article>
    """


def listing_html(*cards: str) -> str:
    return f"<html><body><main>{''.join(cards)}</main></body></html>"


def product_url(product_id: int, slug: str) -> str:
    return f"{SITE}/buy/{product_id}/{slug}"


# ---------------------------------------------------------------------------
# Store fakes
# ---------------------------------------------------------------------------

class FakeInventory:
    """In-memory InventoryStore."""

    def __init__(self):
        self.rows: dict[int, dict[str, Any]] = {}
        self.history: list[dict[str, Any]] = []
        self.fail_urls: set[str] = set()
        self._next_id = 1

    def seed(self, **fields) -> int:
        now = datetime.utcnow()
        row = {
            "brand": None,
            "sku": None,
            "image_url": None,
            "category": "other",
            "original_price": None,
            "is_on_sale": False,
            "discount_percent": None,
            "is_active": True,
            "last_crawled_at": None,
            "created_at": now,
            "updated_at": now,
        }
        row.update(fields)
        row["id"] = self._next_id
        self._next_id += 1
        self.rows[row["id"]] = row
        return row["id"]

    def by_url(self, url: str) -> Optional[dict[str, Any]]:
        for row in self.rows.values():
            if row["url"].lower() == url.lower():
                return row
        return None

    async def list_active(self, category: Optional[str] = None) -> list[Product]:
        return [
            Product(**row)
            for row in self.rows.values()
            if row["is_active"] and (category is None or row["category"] == category)
        ]

    async def get(self, product_id: int) -> Optional[Product]:
        row = self.rows.get(product_id)
        return Product(**row) if row else None

    async def create(self, fields: dict[str, Any]) -> int:
        if fields["url"] in self.fail_urls:
            raise RuntimeError("database unavailable")
        return self.seed(**fields)

    async def update(self, product_id: int, fields: dict[str, Any]) -> None:
        if self.rows[product_id]["url"] in self.fail_urls:
            raise RuntimeError("database unavailable")
        self.rows[product_id].update(fields)

    async def append_price_history(self, fields: dict[str, Any]) -> int:
        self.history.append(dict(fields))
        return len(self.history)

    async def get_latest_price(self, product_id: int):
        entries = [h for h in self.history if h["product_id"] == product_id]
        return entries[-1] if entries else None


class FakeJobStore:
    """In-memory JobStore."""

    def __init__(self):
        self.rows: dict[int, dict[str, Any]] = {}
        self.updates: list[tuple[int, dict[str, Any]]] = []
        self._next_id = 1

    async def create(self, fields: dict[str, Any]) -> int:
        job_id = self._next_id
        self._next_id += 1
        row = {
            "job_type": "manual",
            "status": "pending",
            "category": "all",
            "total_products": 0,
            "crawled_products": 0,
            "failed_products": 0,
            "error_message": None,
            "started_at": None,
            "completed_at": None,
            "created_at": datetime.utcnow(),
        }
        row.update(fields)
        row["id"] = job_id
        self.rows[job_id] = row
        return job_id

    async def update(self, job_id: int, fields: dict[str, Any]) -> None:
        self.updates.append((job_id, dict(fields)))
        self.rows[job_id].update(fields)

    async def get(self, job_id: int) -> Optional[CrawlJob]:
        row = self.rows.get(job_id)
        return CrawlJob(**row) if row else None

    async def list_recent(self, limit: int = 20) -> list[CrawlJob]:
        rows = sorted(self.rows.values(), key=lambda r: r["id"], reverse=True)
        return [CrawlJob(**row) for row in rows[:limit]]

    async def latest(self) -> Optional[CrawlJob]:
        jobs = await self.list_recent(limit=1)
        return jobs[0] if jobs else None

    async def reset_all_running_to_stopped(self, exclude_ids=()) -> int:
        excluded = set(exclude_ids)
        count = 0
        for row in self.rows.values():
            if row["status"] == "running" and row["id"] not in excluded:
                row["status"] = "stopped"
                row["completed_at"] = datetime.utcnow()
                count += 1
        return count

    def finalizations(self, job_id: int) -> list[dict[str, Any]]:
        return [fields for jid, fields in self.updates if jid == job_id and "status" in fields]


class FakeNotificationStore:
    def __init__(self):
        self.rows: list[dict[str, Any]] = []
        self.fail = False

    async def create(self, fields: dict[str, Any]) -> int:
        if self.fail:
            raise RuntimeError("notification table locked")
        self.rows.append(dict(fields))
        return len(self.rows)

    def types(self) -> list[str]:
        return [row["type"] for row in self.rows]


class FakeSettingsStore:
    def __init__(self, values: Optional[dict[str, str]] = None):
        self.rows = [
            CrawlerSetting(key=key, value=value, updated_at=datetime.utcnow())
            for key, value in (values or {}).items()
        ]

    async def list(self) -> list[CrawlerSetting]:
        return list(self.rows)

    async def upsert(self, key: str, value: str, description: Optional[str] = None) -> CrawlerSetting:
        for row in self.rows:
            if row.key == key:
                row.value = value
                if description is not None:
                    row.description = description
                row.updated_at = datetime.utcnow()
                return row
        row = CrawlerSetting(key=key, value=value, description=description, updated_at=datetime.utcnow())
        self.rows.append(row)
        return row


class FakeOwner:
    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.closed = False

    async def notify(self, title: str, content: str) -> bool:
        self.sent.append((title, content))
        return True

    async def close(self):
        self.closed = True


# ---------------------------------------------------------------------------
# Fetcher fakes
# ---------------------------------------------------------------------------

class FakeFetcher(BaseFetcher):
    """Serves canned pages; unknown URLs render as empty listings."""

    def __init__(self, pages: Optional[dict[str, Any]] = None):
        self.pages = pages or {}
        self.fetched: list[str] = []
        self.closed = False
        self.on_fetch: Optional[Callable[[str], None]] = None

    async def fetch(self, url: str) -> RenderedContent:
        self.fetched.append(url)
        if self.on_fetch:
            self.on_fetch(url)
        page = self.pages.get(url)
        if isinstance(page, Exception):
            raise page
        if page is None:
            return RenderedContent(url=url, html=listing_html(), has_next_page=False)
        html, has_next = page if isinstance(page, tuple) else (page, False)
        return RenderedContent(url=url, html=html, has_next_page=has_next)

    async def close(self):
        self.closed = True


class BlockingFetcher(BaseFetcher):
    """Holds every fetch open until `release` is set, then serves an empty page."""

    def __init__(self, release: Callable[[], bool], limit_seconds: float = 5.0):
        self.release = release
        self.limit_seconds = limit_seconds
        self.fetched: list[str] = []

    async def fetch(self, url: str) -> RenderedContent:
        self.fetched.append(url)
        waited = 0.0
        while not self.release() and waited < self.limit_seconds:
            await asyncio.sleep(0.01)
            waited += 0.01
        return RenderedContent(url=url, html=listing_html(), has_next_page=False)


def failing_page(url: str) -> FetchError:
    return FetchError(url, "Navigation timeout")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def stores():
    return SimpleNamespace(
        inventory=FakeInventory(),
        jobs=FakeJobStore(),
        notifications=FakeNotificationStore(),
        settings=FakeSettingsStore(),
        owner=FakeOwner(),
    )


@pytest.fixture
def make_orchestrator(stores):
    def _make(fetcher: BaseFetcher, **kwargs) -> CrawlOrchestrator:
        return CrawlOrchestrator(
            inventory=stores.inventory,
            jobs=stores.jobs,
            notifications=stores.notifications,
            crawler_settings=stores.settings,
            owner=stores.owner,
            fetcher_factory=lambda: fetcher,
            category_delay=0,
            **kwargs,
        )

    return _make


@pytest.fixture
async def session_factory():
    """SQLite-backed session factory with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()

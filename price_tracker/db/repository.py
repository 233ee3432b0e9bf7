"""Store objects used by the crawl pipeline.

Each store opens a short-lived session per call from the injected session
factory, so the crawl can run detached from any request-scoped session.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from price_tracker.db.models import CrawlerSetting, CrawlJob, Notification, PriceHistory, Product

logger = logging.getLogger(__name__)


class InventoryStore:
    """Products and their price history."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def list_active(self, category: Optional[str] = None) -> list[Product]:
        """Active products, optionally restricted to one catalog category."""
        async with self._session_factory() as db:
            query = select(Product).where(Product.is_active.is_(True))
            if category:
                query = query.where(Product.category == category)
            result = await db.execute(query.order_by(Product.updated_at.desc()))
            return list(result.scalars().all())

    async def get(self, product_id: int) -> Optional[Product]:
        async with self._session_factory() as db:
            return await db.get(Product, product_id)

    async def create(self, fields: dict[str, Any]) -> int:
        async with self._session_factory() as db:
            product = Product(**fields)
            db.add(product)
            await db.commit()
            await db.refresh(product)
            return product.id

    async def update(self, product_id: int, fields: dict[str, Any]) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(Product).where(Product.id == product_id).values(**fields)
            )
            await db.commit()

    async def append_price_history(self, fields: dict[str, Any]) -> int:
        async with self._session_factory() as db:
            entry = PriceHistory(**fields)
            db.add(entry)
            await db.commit()
            await db.refresh(entry)
            return entry.id

    async def get_latest_price(self, product_id: int) -> Optional[PriceHistory]:
        async with self._session_factory() as db:
            query = (
                select(PriceHistory)
                .where(PriceHistory.product_id == product_id)
                .order_by(PriceHistory.crawled_at.desc(), PriceHistory.id.desc())
                .limit(1)
            )
            result = await db.execute(query)
            return result.scalar_one_or_none()


class JobStore:
    """Crawl job records."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(self, fields: dict[str, Any]) -> int:
        async with self._session_factory() as db:
            job = CrawlJob(**fields)
            db.add(job)
            await db.commit()
            await db.refresh(job)
            return job.id

    async def update(self, job_id: int, fields: dict[str, Any]) -> None:
        async with self._session_factory() as db:
            await db.execute(update(CrawlJob).where(CrawlJob.id == job_id).values(**fields))
            await db.commit()

    async def get(self, job_id: int) -> Optional[CrawlJob]:
        async with self._session_factory() as db:
            return await db.get(CrawlJob, job_id)

    async def list_recent(self, limit: int = 20) -> list[CrawlJob]:
        async with self._session_factory() as db:
            query = select(CrawlJob).order_by(CrawlJob.created_at.desc(), CrawlJob.id.desc()).limit(limit)
            result = await db.execute(query)
            return list(result.scalars().all())

    async def latest(self) -> Optional[CrawlJob]:
        jobs = await self.list_recent(limit=1)
        return jobs[0] if jobs else None

    async def reset_all_running_to_stopped(self, exclude_ids: Iterable[int] = ()) -> int:
        """Force every 'running' job (except exclude_ids) to 'stopped'. Returns the count."""
        excluded = [job_id for job_id in exclude_ids if job_id is not None]
        async with self._session_factory() as db:
            stmt = (
                update(CrawlJob)
                .where(CrawlJob.status == "running")
                .values(status="stopped", completed_at=datetime.utcnow())
            )
            if excluded:
                stmt = stmt.where(CrawlJob.id.not_in(excluded))
            result = await db.execute(stmt)
            await db.commit()
            return result.rowcount or 0


class NotificationStore:
    """Notification records (read/unread lifecycle is owned by the UI)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(self, fields: dict[str, Any]) -> int:
        async with self._session_factory() as db:
            notification = Notification(**fields)
            db.add(notification)
            await db.commit()
            await db.refresh(notification)
            return notification.id


class SettingsStore:
    """Key/value crawler settings."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def list(self) -> list[CrawlerSetting]:
        async with self._session_factory() as db:
            result = await db.execute(select(CrawlerSetting).order_by(CrawlerSetting.key))
            return list(result.scalars().all())

    async def upsert(self, key: str, value: str, description: Optional[str] = None) -> CrawlerSetting:
        async with self._session_factory() as db:
            result = await db.execute(select(CrawlerSetting).where(CrawlerSetting.key == key))
            row = result.scalar_one_or_none()
            if row is None:
                row = CrawlerSetting(key=key, value=value, description=description)
                db.add(row)
            else:
                row.value = value
                if description is not None:
                    row.description = description
            await db.commit()
            await db.refresh(row)
            logger.info("Crawler setting %s updated", key)
            return row

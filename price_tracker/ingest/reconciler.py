"""Reconcile crawled product records against stored inventory."""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterable, Optional

from price_tracker.db.models import Product
from price_tracker.db.repository import InventoryStore, NotificationStore
from price_tracker.detect.change_detector import Thresholds, detect_changes
from price_tracker.ingest.base import RawProductRecord
from price_tracker.metrics import record_notification, record_reconcile
from price_tracker.normalize.pricing import normalize_url, sale_state

logger = logging.getLogger(__name__)


class ProductIndex:
    """Known products keyed by normalized URL, built once per job."""

    def __init__(self, products: Iterable[Product] = ()):
        self._by_url: dict[str, Product] = {}
        for product in products:
            self.add(product)

    def __len__(self) -> int:
        return len(self._by_url)

    def get(self, url: str) -> Optional[Product]:
        return self._by_url.get(normalize_url(url))

    def add(self, product: Product) -> None:
        self._by_url[normalize_url(product.url)] = product

    @staticmethod
    def apply(product: Product, fields: dict) -> None:
        """Mirror a persisted update onto the in-memory snapshot."""
        for key, value in fields.items():
            setattr(product, key, value)


@dataclass
class ReconcileOutcome:
    """What happened to one crawled record."""

    action: str  # created | updated
    product_id: int
    notifications: list[str] = field(default_factory=list)

    @property
    def created(self) -> bool:
        return self.action == "created"


class Reconciler:
    """
    Persists crawled records: updates known products, inserts unknown ones.

    Change detection runs against the stored snapshot before it is mutated.
    Persistence errors propagate so the caller can count a failure.
    """

    def __init__(
        self,
        inventory: InventoryStore,
        notifications: NotificationStore,
        thresholds: Thresholds,
        index: ProductIndex,
    ):
        self.inventory = inventory
        self.notifications = notifications
        self.thresholds = thresholds
        self.index = index

    @staticmethod
    def is_usable(record: RawProductRecord) -> bool:
        return bool(
            record.url
            and record.name
            and record.current_price is not None
            and record.current_price > 0
        )

    async def reconcile(
        self,
        record: RawProductRecord,
        category: str = "other",
    ) -> Optional[ReconcileOutcome]:
        """
        Reconcile one record.

        Args:
            record: Crawled record
            category: Catalog category assigned to newly created products

        Returns:
            The outcome, or None when the record is skipped as incomplete
        """
        if not self.is_usable(record):
            logger.debug(f"Skipping incomplete record: {record.url or record.name}")
            return None

        # Sale flags always follow the prices, whatever the extractor set
        is_on_sale, discount = sale_state(record.current_price, record.original_price)
        record = replace(record, is_on_sale=is_on_sale, discount_percent=discount)

        existing = self.index.get(record.url)
        if existing is not None:
            return await self._update(existing, record)
        return await self._create(record, category)

    async def _update(self, existing: Product, record: RawProductRecord) -> ReconcileOutcome:
        drafts = detect_changes(existing, record, self.thresholds)
        created_types = []
        for draft in drafts:
            try:
                await self.notifications.create(draft.as_fields())
                record_notification(draft.type)
                created_types.append(draft.type)
            except Exception as e:
                logger.warning(
                    f"Failed to persist {draft.type} notification for product {existing.id}: {e}"
                )

        now = datetime.utcnow()
        fields = {
            "current_price": record.current_price,
            "original_price": record.original_price,
            "is_on_sale": record.is_on_sale,
            "discount_percent": record.discount_percent,
            "image_url": record.image_url or existing.image_url,
            "last_crawled_at": now,
            "updated_at": now,
        }
        await self.inventory.update(existing.id, fields)
        await self.inventory.append_price_history(self._history_fields(existing.id, record, now))
        self.index.apply(existing, fields)

        record_reconcile("updated")
        return ReconcileOutcome(action="updated", product_id=existing.id, notifications=created_types)

    async def _create(self, record: RawProductRecord, category: str) -> ReconcileOutcome:
        now = datetime.utcnow()
        fields = {
            "name": record.name,
            "brand": record.brand,
            "sku": record.sku,
            "url": record.url,
            "image_url": record.image_url,
            "category": category,
            "current_price": record.current_price,
            "original_price": record.original_price,
            "is_on_sale": record.is_on_sale,
            "discount_percent": record.discount_percent,
            "is_active": True,
            "last_crawled_at": now,
        }
        product_id = await self.inventory.create(fields)
        await self.inventory.append_price_history(self._history_fields(product_id, record, now))
        self.index.add(Product(id=product_id, created_at=now, updated_at=now, **fields))

        logger.info(f"New product: {record.name} ({record.url})")
        record_reconcile("created")
        return ReconcileOutcome(action="created", product_id=product_id)

    @staticmethod
    def _history_fields(product_id: int, record: RawProductRecord, crawled_at: datetime) -> dict:
        return {
            "product_id": product_id,
            "price": record.current_price,
            "original_price": record.original_price,
            "is_on_sale": record.is_on_sale,
            "discount_percent": record.discount_percent,
            "crawled_at": crawled_at,
        }

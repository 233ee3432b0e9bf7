"""Price change detection between a stored product and a fresh crawl."""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from price_tracker.config import settings
from price_tracker.ingest.base import RawProductRecord
from price_tracker.normalize.pricing import TWO_PLACES, to_decimal
from price_tracker.notify import formatters

logger = logging.getLogger(__name__)

# Smallest absolute move treated as a price change
MIN_PRICE_DELTA = Decimal("0.01")

PRICE_DROP_KEY = "price_drop_threshold"
PRICE_INCREASE_KEY = "price_increase_threshold"
NOTIFY_ON_SALE_KEY = "notify_on_sale"
RATE_LIMIT_KEY = "rate_limit_delay_ms"


@dataclass(frozen=True)
class Thresholds:
    """Notification thresholds, in percentage points."""

    price_drop: Decimal
    price_increase: Decimal
    notify_on_sale: bool = True

    @classmethod
    def defaults(cls) -> "Thresholds":
        return cls(
            price_drop=Decimal(str(settings.default_price_drop_threshold)),
            price_increase=Decimal(str(settings.default_price_increase_threshold)),
            notify_on_sale=settings.default_notify_on_sale,
        )

    @classmethod
    def from_settings(cls, rows: Iterable[Any]) -> "Thresholds":
        """
        Build thresholds from crawler setting rows (objects with key/value).

        Unparseable numeric values fall back to the defaults. Only the
        literal string "false" disables sale notifications.
        """
        values = {row.key: row.value for row in rows}
        default = cls.defaults()
        return cls(
            price_drop=_parse_threshold(values, PRICE_DROP_KEY, default.price_drop),
            price_increase=_parse_threshold(values, PRICE_INCREASE_KEY, default.price_increase),
            notify_on_sale=(
                values[NOTIFY_ON_SALE_KEY] != "false"
                if NOTIFY_ON_SALE_KEY in values
                else default.notify_on_sale
            ),
        )


def _parse_threshold(values: dict[str, str], key: str, default: Decimal) -> Decimal:
    raw = values.get(key)
    if raw is None:
        return default
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        value = None
    if value is None or not value.is_finite() or value < 0:
        logger.warning(f"Invalid value {raw!r} for setting {key}, using {default}")
        return default
    return value


def parse_rate_limit_ms(rows: Iterable[Any]) -> Optional[int]:
    """Page delay override in milliseconds, or None when unset or invalid."""
    for row in rows:
        if row.key != RATE_LIMIT_KEY:
            continue
        try:
            value = int(str(row.value).strip())
        except ValueError:
            logger.warning(f"Invalid value {row.value!r} for setting {RATE_LIMIT_KEY}, ignoring")
            return None
        return value if value >= 0 else None
    return None


@dataclass
class NotificationDraft:
    """A notification to persist, not yet bound to a store."""

    product_id: int
    type: str
    title: str
    message: str
    old_price: Optional[Decimal]
    new_price: Optional[Decimal]
    change_percent: Optional[Decimal]

    def as_fields(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "old_price": self.old_price,
            "new_price": self.new_price,
            "change_percent": self.change_percent,
            "is_read": False,
        }


def detect_changes(
    old_product: Any,
    new_record: RawProductRecord,
    thresholds: Thresholds,
) -> list[NotificationDraft]:
    """
    Compare a stored product snapshot against freshly crawled data.

    Sale transitions and price moves are checked independently, so one
    crawl can produce both a sale notification and a price notification.

    Args:
        old_product: Stored product (anything with id, name, current_price,
            is_on_sale)
        new_record: Freshly extracted record
        thresholds: Percentage-point thresholds

    Returns:
        Notification drafts, possibly empty
    """
    new_price = to_decimal(new_record.current_price)
    if new_price is None or new_price <= 0:
        return []

    old_price = to_decimal(old_product.current_price)
    name = old_product.name
    drafts: list[NotificationDraft] = []

    was_on_sale = bool(old_product.is_on_sale)
    is_on_sale = bool(new_record.is_on_sale)

    if not was_on_sale and is_on_sale and thresholds.notify_on_sale:
        new_original = to_decimal(new_record.original_price)
        was_price = new_original if new_original is not None else old_price
        discount = to_decimal(new_record.discount_percent)
        title, message = formatters.format_new_sale(name, new_price, was_price, discount)
        reference = old_price if old_price is not None else (
            new_original if new_original is not None else new_price
        )
        drafts.append(NotificationDraft(
            product_id=old_product.id,
            type="new_sale",
            title=title,
            message=message,
            old_price=reference,
            new_price=new_price,
            change_percent=discount if discount is not None else Decimal("0"),
        ))
    elif was_on_sale and not is_on_sale:
        title, message = formatters.format_sale_ended(name, new_price)
        drafts.append(NotificationDraft(
            product_id=old_product.id,
            type="sale_ended",
            title=title,
            message=message,
            old_price=old_price if old_price is not None else Decimal("0"),
            new_price=new_price,
            change_percent=Decimal("0"),
        ))

    if old_price is not None and old_price > 0 and abs(old_price - new_price) > MIN_PRICE_DELTA:
        exact = (new_price - old_price) / old_price * 100
        change = exact.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
        if exact < 0 and abs(exact) >= thresholds.price_drop:
            title, message = formatters.format_price_drop(name, old_price, new_price, change)
            drafts.append(NotificationDraft(
                product_id=old_product.id,
                type="price_drop",
                title=title,
                message=message,
                old_price=old_price,
                new_price=new_price,
                change_percent=change,
            ))
        elif exact > 0 and exact >= thresholds.price_increase:
            title, message = formatters.format_price_increase(name, old_price, new_price, change)
            drafts.append(NotificationDraft(
                product_id=old_product.id,
                type="price_increase",
                title=title,
                message=message,
                old_price=old_price,
                new_price=new_price,
                change_percent=change,
            ))

    return drafts

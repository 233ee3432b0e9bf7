"""Human-readable titles and messages for price notifications.

Prices and percentages are always rendered with two decimals.
"""

from decimal import Decimal
from typing import Optional


def money(value: Optional[Decimal]) -> str:
    if value is None:
        return "$-"
    return f"${Decimal(value):.2f}"


def percent(value: Optional[Decimal]) -> str:
    if value is None:
        return "-%"
    return f"{abs(Decimal(value)):.2f}%"


def format_new_sale(
    name: str,
    new_price: Decimal,
    was_price: Optional[Decimal],
    discount: Optional[Decimal],
) -> tuple[str, str]:
    title = f"{name} is on sale!"
    message = f"{name} is now on sale for {money(new_price)}"
    if was_price is not None:
        message += f" (was {money(was_price)})"
    if discount:
        message += f", {percent(discount)} off"
    return title, message + "."


def format_sale_ended(name: str, new_price: Decimal) -> tuple[str, str]:
    return (
        f"Sale ended for {name}",
        f"The sale on {name} has ended. It is now {money(new_price)}.",
    )


def format_price_drop(
    name: str,
    old_price: Decimal,
    new_price: Decimal,
    change: Decimal,
) -> tuple[str, str]:
    saving = Decimal(old_price) - Decimal(new_price)
    return (
        f"{name} dropped {percent(change)}",
        f"{name} dropped from {money(old_price)} to {money(new_price)}, saving {money(saving)}.",
    )


def format_price_increase(
    name: str,
    old_price: Decimal,
    new_price: Decimal,
    change: Decimal,
) -> tuple[str, str]:
    return (
        f"{name} rose {percent(change)}",
        f"{name} rose from {money(old_price)} to {money(new_price)}.",
    )


def format_crawl_summary(
    crawled: int,
    new_products: int,
    failed: int,
    notifications: int = 0,
) -> tuple[str, str]:
    """Owner notification sent after a completed crawl."""
    return (
        "Crawl completed",
        f"Crawled {crawled} products ({new_products} new), {failed} failed, "
        f"{notifications} notifications raised.",
    )

"""Price parsing and discount math."""

import logging
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

logger = logging.getLogger(__name__)

_NON_NUMERIC = re.compile(r"[^0-9.]")
_LEADING_NUMBER = re.compile(r"\d+(?:\.\d+)?|\.\d+")

# Numeric product id patterns, most specific first
_SKU_PATTERNS = [
    re.compile(r"/buy/(\d+)(?:/|$|\?)"),
    re.compile(r"/product/(\d+)(?:/|$|\?)"),
    re.compile(r"/(\d{5,})(?:/|$|\?)"),
]

TWO_PLACES = Decimal("0.01")


def parse_price(price_text: Optional[str]) -> Optional[Decimal]:
    """
    Parse a displayed price such as "$1,234.56".

    Everything except digits and the decimal point is dropped, then the
    leading number is parsed. Returns None when nothing numeric remains.
    """
    if not price_text:
        return None

    cleaned = _NON_NUMERIC.sub("", str(price_text))
    match = _LEADING_NUMBER.match(cleaned)
    if not match:
        return None
    try:
        return Decimal(match.group())
    except InvalidOperation as exc:
        logger.debug("Failed to parse price: %s", price_text, exc_info=exc)
        return None


def to_decimal(value) -> Optional[Decimal]:
    """Coerce JSON numbers/strings to Decimal (None when not a price)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    return parse_price(str(value))


def discount_percent(original: Decimal, current: Decimal) -> Decimal:
    """Percent off the original price, two decimals, 0 when original <= 0."""
    original = to_decimal(original)
    current = to_decimal(current)
    if original <= 0:
        return Decimal("0")
    ratio = (original - current) / original * 100
    return ratio.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def sale_state(
    current: Optional[Decimal],
    original: Optional[Decimal],
) -> tuple[bool, Optional[Decimal]]:
    """Return (is_on_sale, discount_percent) for a current/original pair."""
    if current is None or original is None or original <= current:
        return False, None
    return True, discount_percent(original, current)


def normalize_url(url: str) -> str:
    """Identity key for a product URL."""
    return url.strip().lower()


def extract_sku_from_url(url: str) -> Optional[str]:
    """Extract the numeric product id from a product URL."""
    if not url:
        return None
    for pattern in _SKU_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None

"""Product extraction from rendered listing/product pages.

Extraction is an ordered chain of strategies; the first strategy that
returns at least one record wins. Structured data (JSON-LD) is tried before
the DOM heuristic because it survives markup redesigns.
"""

import logging
import re
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Optional, Sequence
from urllib.parse import urljoin, urlparse

from selectolax.parser import HTMLParser, Node

from price_tracker.config import settings
from price_tracker.ingest.base import RawProductRecord, RenderedContent
from price_tracker.ingest.json_extractor import extract_json_ld, extract_products_from_json_ld
from price_tracker.normalize.pricing import extract_sku_from_url, parse_price, sale_state, to_decimal

logger = logging.getLogger(__name__)

NAME_SELECTOR = "p, h2, h3, [class*='title'], [class*='name']"
PRICE_SELECTOR = "[class*='price'], [class*='Price']"
BRAND_SELECTOR = "[class*='brand'], [class*='Brand']"

# Dollar amount anywhere in a text blob
DOLLAR_AMOUNT = re.compile(r"\$\s*([\d,]+\.?\d*)")

# Class fragments marking a was/RRP price element
ORIGINAL_PRICE_MARKERS = ("was", "rrp", "original", "strike", "compare")

# schema.org priceType values that denote a list price
LIST_PRICE_TYPES = ("listprice", "srp", "msrp", "strikethroughprice")


def _clean_text(node: Optional[Node]) -> Optional[str]:
    if node is None:
        return None
    text = " ".join(node.text(deep=True, separator=" ").split())
    return text or None


def _first_amount(text: Optional[str]) -> Optional[Decimal]:
    if not text:
        return None
    match = DOLLAR_AMOUNT.search(text)
    if not match:
        return None
    return parse_price(match.group(1))


def _finalize(
    url: Optional[str],
    name: Optional[str],
    current: Optional[Decimal],
    original: Optional[Decimal],
    image_url: Optional[str],
    brand: Optional[str],
    sku: Optional[str],
    source: str,
) -> Optional[RawProductRecord]:
    """Build a record, or None when there is no positive current price."""
    if current is None or current <= 0:
        return None
    if original is not None and original <= current:
        original = None
    is_on_sale, discount = sale_state(current, original)
    return RawProductRecord(
        url=url,
        name=name,
        current_price=current,
        original_price=original,
        is_on_sale=is_on_sale,
        discount_percent=discount,
        image_url=image_url,
        brand=brand,
        sku=sku or (extract_sku_from_url(url) if url else None),
        source=source,
    )


class ExtractionStrategy(ABC):
    """One way of turning page HTML into product records."""

    name: str = ""

    @abstractmethod
    def extract(self, html: str, page_url: str) -> list[RawProductRecord]:
        pass


class JsonLdStrategy(ExtractionStrategy):
    """
    schema.org Product blocks embedded as JSON-LD.

    A lone Product without its own URL is attributed to the page only when
    the page is a product detail page; elsewhere it is dropped.
    """

    name = "json_ld"

    def __init__(self, link_marker: Optional[str] = None):
        self.link_marker = link_marker or settings.product_link_marker

    def _is_detail_page(self, page_url: str) -> bool:
        return self.link_marker in urlparse(page_url).path

    def extract(self, html: str, page_url: str) -> list[RawProductRecord]:
        products = extract_products_from_json_ld(extract_json_ld(html))
        single = len(products) == 1
        records = []

        for product in products:
            try:
                record = self._parse_product(product, page_url, single)
                if record:
                    records.append(record)
            except (AttributeError, TypeError, ValueError) as e:
                logger.debug(f"Error parsing JSON-LD product: {e}")
                continue

        return records

    def _parse_product(
        self,
        product: dict[str, Any],
        page_url: str,
        single: bool,
    ) -> Optional[RawProductRecord]:
        offer = self._primary_offer(product.get("offers"))

        url = product.get("url") or (offer or {}).get("url")
        if not url and single and self._is_detail_page(page_url):
            url = page_url
        if not url:
            return None
        url = urljoin(page_url, str(url))

        current = None
        original = None
        if offer:
            current = to_decimal(offer.get("price"))
            if current is None:
                current = to_decimal(offer.get("lowPrice"))
            original = self._list_price(offer.get("priceSpecification"))

        name = product.get("name")
        return _finalize(
            url=url,
            name=str(name).strip() if name else None,
            current=current,
            original=original,
            image_url=self._image(product.get("image"), page_url),
            brand=self._brand(product.get("brand")),
            sku=str(product.get("sku") or product.get("mpn") or "") or None,
            source=self.name,
        )

    @staticmethod
    def _primary_offer(offers: Any) -> Optional[dict[str, Any]]:
        if isinstance(offers, list):
            offers = next((o for o in offers if isinstance(o, dict)), None)
        if not isinstance(offers, dict):
            return None
        # AggregateOffer may nest concrete offers
        nested = offers.get("offers")
        if offers.get("price") is None and offers.get("lowPrice") is None and nested:
            return JsonLdStrategy._primary_offer(nested)
        return offers

    @staticmethod
    def _list_price(price_details: Any) -> Optional[Decimal]:
        entries = price_details if isinstance(price_details, list) else [price_details]
        for item in entries:
            if not isinstance(item, dict):
                continue
            price_type = str(item.get("priceType", "")).rsplit("/", 1)[-1].lower()
            if price_type in LIST_PRICE_TYPES:
                return to_decimal(item.get("price"))
        return None

    @staticmethod
    def _brand(brand: Any) -> Optional[str]:
        if isinstance(brand, dict):
            brand = brand.get("name")
        if isinstance(brand, str) and brand.strip():
            return brand.strip()
        return None

    @staticmethod
    def _image(image: Any, page_url: str) -> Optional[str]:
        if isinstance(image, list):
            image = image[0] if image else None
        if isinstance(image, dict):
            image = image.get("url") or image.get("contentUrl")
        if isinstance(image, str) and image.strip():
            return urljoin(page_url, image.strip())
        return None


class DomHeuristicStrategy(ExtractionStrategy):
    """Product cards found through links to product detail pages."""

    name = "dom"

    def __init__(self, link_marker: Optional[str] = None):
        self.link_marker = link_marker or settings.product_link_marker

    def extract(self, html: str, page_url: str) -> list[RawProductRecord]:
        tree = HTMLParser(html)
        seen: set[str] = set()
        records = []

        for link in tree.css(f'a[href*="{self.link_marker}"]'):
            try:
                href = link.attributes.get("href")
                if not href:
                    continue
                url = urljoin(page_url, href)
                if url in seen:
                    continue
                seen.add(url)

                record = self._parse_card(link, url, page_url)
                if record:
                    records.append(record)
            except (AttributeError, TypeError, ValueError) as e:
                logger.debug(f"Error parsing product card: {e}")
                continue

        return records

    def _parse_card(self, link: Node, url: str, page_url: str) -> Optional[RawProductRecord]:
        container = self._container(link)

        name = _clean_text(container.css_first(NAME_SELECTOR)) or _clean_text(link)
        current, original = self._prices(container)

        image_url = None
        img = container.css_first("img")
        if img is not None:
            src = img.attributes.get("src") or img.attributes.get("data-src")
            if src:
                image_url = urljoin(page_url, src)

        return _finalize(
            url=url,
            name=name,
            current=current,
            original=original,
            image_url=image_url,
            brand=_clean_text(container.css_first(BRAND_SELECTOR)),
            sku=None,
            source=self.name,
        )

    @staticmethod
    def _container(link: Node) -> Node:
        """Closest article, else closest product-classed element, else grandparent."""
        node = link.parent
        while node is not None:
            if node.tag == "article":
                return node
            node = node.parent

        node = link.parent
        while node is not None:
            if "product" in (node.attributes.get("class") or ""):
                return node
            node = node.parent

        parent = link.parent
        if parent is None:
            return link
        return parent.parent or parent

    @staticmethod
    def _prices(container: Node) -> tuple[Optional[Decimal], Optional[Decimal]]:
        current = None
        original = None
        others: list[Decimal] = []

        for element in container.css(PRICE_SELECTOR):
            text = _clean_text(element)
            if not text or "$" not in text:
                continue
            amount = _first_amount(text)
            if amount is None:
                continue
            classes = (element.attributes.get("class") or "").lower()
            if any(marker in classes for marker in ORIGINAL_PRICE_MARKERS):
                if original is None:
                    original = amount
            elif current is None:
                current = amount
            else:
                others.append(amount)

        if current is None:
            current = _first_amount(_clean_text(container))

        if original is None and current is not None:
            original = next((a for a in others if a != current), None)

        return current, original


class ProductExtractor:
    """Runs extraction strategies in order; first non-empty result wins."""

    def __init__(self, strategies: Optional[Sequence[ExtractionStrategy]] = None):
        self.strategies = list(strategies) if strategies is not None else [
            JsonLdStrategy(),
            DomHeuristicStrategy(),
        ]

    def extract(self, content: RenderedContent) -> list[RawProductRecord]:
        for strategy in self.strategies:
            records = strategy.extract(content.html, content.url)
            if records:
                logger.debug(
                    f"{strategy.name} extracted {len(records)} products from {content.url}"
                )
                return records
        return []


# Global extractor with the default strategy chain
product_extractor = ProductExtractor()

"""Extract schema.org Product objects from JSON-LD blocks in HTML pages."""

import json
import logging
from typing import Any, Dict, Iterator, List

from selectolax.parser import HTMLParser

logger = logging.getLogger(__name__)


def _type_names(obj: Dict[str, Any]) -> List[str]:
    obj_type = obj.get("@type", "")
    if isinstance(obj_type, list):
        return [str(t) for t in obj_type]
    return [str(obj_type)] if obj_type else []


def _flatten(data: Any) -> Iterator[Dict[str, Any]]:
    """Yield every top-level object, unwrapping lists and @graph containers."""
    if isinstance(data, list):
        for item in data:
            yield from _flatten(item)
    elif isinstance(data, dict):
        graph = data.get("@graph")
        if isinstance(graph, list):
            yield from _flatten(graph)
        if "@type" in data:
            yield data


def extract_json_ld(html: str) -> List[Dict[str, Any]]:
    """
    Extract JSON-LD structured data from script tags.

    Returns the flattened list of typed JSON-LD objects found in the page.
    Blocks that are not valid JSON are skipped.
    """
    results: List[Dict[str, Any]] = []
    tree = HTMLParser(html)
    for script in tree.css('script[type="application/ld+json"]'):
        text = script.text()
        if not text or not text.strip():
            continue
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.debug(f"Skipping malformed JSON-LD block: {e}")
            continue
        results.extend(_flatten(data))
    return results


def extract_products_from_json_ld(json_ld_objects: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Extract Product objects from JSON-LD structured data.

    Looks for Product types directly and inside ItemList elements.
    """
    products: List[Dict[str, Any]] = []

    for obj in json_ld_objects:
        types = _type_names(obj)
        if "Product" in types:
            products.append(obj)
        elif "ItemList" in types:
            for element in obj.get("itemListElement") or []:
                if not isinstance(element, dict):
                    continue
                item = element.get("item", element)
                if isinstance(item, dict) and "Product" in _type_names(item):
                    products.append(item)

    return products

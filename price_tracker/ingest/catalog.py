"""Static category -> listing page configuration for the target site."""

from dataclasses import dataclass
from typing import Optional

from price_tracker.config import settings
from price_tracker.db.models import PRODUCT_CATEGORIES


@dataclass(frozen=True)
class CategoryPage:
    """One paginated category listing on the site."""

    id: int
    slug: str
    label: str

    def url(self, page: int, base_url: Optional[str] = None) -> str:
        base = (base_url or settings.site_base_url).rstrip("/")
        path = settings.category_path_template.format(
            category_id=self.id,
            slug=self.slug,
            page=page,
        )
        return f"{base}{path}"


# Catalog key -> listing pages crawled for it ("other" has no listing)
CATEGORY_PAGES: dict[str, list[CategoryPage]] = {
    "beauty_skincare": [
        CategoryPage(300026, "skincare-tools", "Skincare Tools"),
        CategoryPage(300019, "skincare", "Skincare"),
        CategoryPage(300022, "face-care", "Face Care"),
        CategoryPage(300023, "body-care", "Body Care"),
        CategoryPage(300024, "hair-care", "Hair Care"),
        CategoryPage(300025, "sun-care", "Sun Care"),
    ],
    "adult_health": [
        CategoryPage(500019, "mens-health", "Men's Health"),
        CategoryPage(500020, "womens-health", "Women's Health"),
        CategoryPage(500021, "vitamins-supplements", "Vitamins & Supplements"),
    ],
    "childrens_health": [
        CategoryPage(600010, "baby-care", "Baby Care"),
        CategoryPage(600011, "childrens-vitamins", "Children's Vitamins"),
    ],
    "vegan_health": [
        CategoryPage(700010, "vegan-supplements", "Vegan Supplements"),
    ],
    "natural_soap": [
        CategoryPage(800010, "natural-soap", "Natural Soap"),
        CategoryPage(800011, "body-wash", "Body Wash"),
    ],
}


def resolve_categories(category: Optional[str]) -> list[str]:
    """
    Catalog keys to crawl for a job's category filter.

    None or "all" selects every category with listing pages.

    Raises:
        ValueError: For a value outside the catalog
    """
    if not category or category == "all":
        return list(CATEGORY_PAGES.keys())
    if category not in PRODUCT_CATEGORIES:
        raise ValueError(f"Unknown category: {category}")
    return [category]

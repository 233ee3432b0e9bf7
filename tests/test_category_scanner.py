"""Tests for paginated category discovery."""

import pytest

from price_tracker.ingest.catalog import CATEGORY_PAGES, CategoryPage, resolve_categories
from price_tracker.ingest.category_scanner import CategoryDiscoverer, CategoryScanResult
from price_tracker.ingest.rate_limiter import RateLimiter
from price_tracker.worker.runtime import CancellationToken

from conftest import SITE, FakeFetcher, failing_page, listing_html, product_card

PAGE = CategoryPage(700010, "vegan-supplements", "Vegan Supplements")


def _url(page: int) -> str:
    return f"{SITE}/shop-online/700010/vegan-supplements?pageNumber={page}"


async def _collect(discoverer, max_pages=2, token=None):
    result = CategoryScanResult(category=PAGE.label)
    records = [
        record
        async for record in discoverer.discover(PAGE, max_pages, token or CancellationToken(), result)
    ]
    return records, result


def _discoverer(fetcher):
    return CategoryDiscoverer(fetcher, rate_limiter=RateLimiter(0, 0), base_url=SITE)


def test_category_page_url():
    assert PAGE.url(3, SITE) == _url(3)


def test_resolve_categories():
    assert resolve_categories(None) == list(CATEGORY_PAGES.keys())
    assert resolve_categories("all") == list(CATEGORY_PAGES.keys())
    assert resolve_categories("natural_soap") == ["natural_soap"]
    with pytest.raises(ValueError):
        resolve_categories("electronics")


@pytest.mark.asyncio
async def test_follows_pagination_up_to_max_pages():
    fetcher = FakeFetcher({
        _url(1): (listing_html(product_card(1, "A", "$1.00")), True),
        _url(2): (listing_html(product_card(2, "B", "$2.00")), True),
        _url(3): (listing_html(product_card(3, "C", "$3.00")), True),
    })

    records, result = await _collect(_discoverer(fetcher), max_pages=2)

    assert [r.name for r in records] == ["A", "B"]
    assert fetcher.fetched == [_url(1), _url(2)]
    assert result.pages_fetched == 2
    assert result.products_found == 2
    assert result.error is None


@pytest.mark.asyncio
async def test_stops_without_next_page_affordance():
    fetcher = FakeFetcher({
        _url(1): (listing_html(product_card(1, "A", "$1.00")), False),
        _url(2): (listing_html(product_card(2, "B", "$2.00")), True),
    })

    records, result = await _collect(_discoverer(fetcher))

    assert [r.name for r in records] == ["A"]
    assert fetcher.fetched == [_url(1)]


@pytest.mark.asyncio
async def test_stops_on_empty_page():
    fetcher = FakeFetcher({_url(1): (listing_html(), True)})

    records, result = await _collect(_discoverer(fetcher), max_pages=5)

    assert records == []
    assert fetcher.fetched == [_url(1)]
    assert result.pages_fetched == 1


@pytest.mark.asyncio
async def test_fetch_error_is_recorded_not_raised():
    fetcher = FakeFetcher({
        _url(1): (listing_html(product_card(1, "A", "$1.00")), True),
        _url(2): failing_page(_url(2)),
    })

    records, result = await _collect(_discoverer(fetcher))

    assert [r.name for r in records] == ["A"]
    assert result.error == "Navigation timeout"
    assert result.pages_fetched == 1
    assert result.success is False


@pytest.mark.asyncio
async def test_cancellation_before_first_page():
    token = CancellationToken()
    token.cancel()
    fetcher = FakeFetcher()

    records, result = await _collect(_discoverer(fetcher), token=token)

    assert records == []
    assert fetcher.fetched == []
    assert result.error is None


@pytest.mark.asyncio
async def test_cancellation_observed_between_pages():
    token = CancellationToken()
    fetcher = FakeFetcher({
        _url(1): (listing_html(product_card(1, "A", "$1.00")), True),
        _url(2): (listing_html(product_card(2, "B", "$2.00")), True),
    })
    fetcher.on_fetch = lambda url: token.cancel()

    records, _ = await _collect(_discoverer(fetcher), token=token)

    # The in-flight page completes; the next one is never requested
    assert [r.name for r in records] == ["A"]
    assert fetcher.fetched == [_url(1)]


@pytest.mark.asyncio
async def test_rate_limit_delay_is_interrupted_by_stop():
    token = CancellationToken()
    token.cancel()
    assert await RateLimiter(30, 30).wait(token) is True


def test_rate_limit_override_scales_max():
    limiter = RateLimiter.from_delay_ms(2000)
    assert limiter.min_interval == 2.0
    assert limiter.max_interval == 3.0

"""Tests for browser session persistence, fingerprinting, owner webhook and scheduling."""

import json

import httpx
import pytest
from playwright.async_api import Error as PlaywrightError

from price_tracker.ingest.fetchers.headless import HeadlessPageFetcher
from price_tracker.ingest.session_store import SessionStore
from price_tracker.ingest.stealth_browser import LAUNCH_ARGS, StealthBrowser, stealth_browser
from price_tracker.ingest.user_agent_pool import UserAgentPool
from price_tracker.notify.owner import OwnerNotifier
from price_tracker.worker.scheduler import WEEKLY_CRAWL_JOB_ID, scheduler_status, setup_scheduler


def test_session_store_round_trip(tmp_path):
    store = SessionStore(str(tmp_path))
    site = SessionStore.site_key("https://www.ChemistWarehouse.com.au/shop-online/1/x")
    assert site == "www.chemistwarehouse.com.au"
    assert store.load_storage_state(site) is None

    state = {"cookies": [{"name": "cf_clearance", "value": "abc"}], "origins": []}
    store.save_storage_state(site, state)

    assert store.load_storage_state(site) == state
    assert (tmp_path / site / "storage_state.json").exists()

    store.clear(site)
    assert store.load_storage_state(site) is None
    assert not (tmp_path / site / "storage_state.json").exists()


def test_session_store_ignores_corrupt_state(tmp_path):
    store = SessionStore(str(tmp_path))
    path = tmp_path / "example.com" / "storage_state.json"
    path.parent.mkdir(parents=True)
    path.write_text("{truncated")

    assert store.load_storage_state("example.com") is None


class _StrictBrowser:
    """Refuses malformed storage state the way Chromium does."""

    def __init__(self):
        self.context_options = []

    def is_connected(self):
        return True

    async def new_context(self, **options):
        self.context_options.append(options)
        if "storage_state" in options and options["storage_state"].get("cookies") == "bad":
            raise PlaywrightError("storage_state: cookies must be an array")
        return object()


def _fetcher_with_browser(tmp_path, monkeypatch, browser):
    async def apply_to_context(context):
        return None

    monkeypatch.setattr(stealth_browser, "apply_to_context", apply_to_context)
    store = SessionStore(str(tmp_path))
    fetcher = HeadlessPageFetcher(sessions=store, site_url="https://example.com")
    fetcher._playwright = object()
    fetcher._browser = browser
    return fetcher, store


@pytest.mark.asyncio
async def test_fetcher_replays_saved_state_as_dict(tmp_path, monkeypatch):
    browser = _StrictBrowser()
    fetcher, store = _fetcher_with_browser(tmp_path, monkeypatch, browser)
    state = {"cookies": [{"name": "cf_clearance", "value": "abc"}], "origins": []}
    store.save_storage_state("example.com", state)

    assert await fetcher._ensure_context() is not None

    assert browser.context_options[0]["storage_state"] == state
    assert store.load_storage_state("example.com") == state


@pytest.mark.asyncio
async def test_fetcher_discards_rejected_state_and_retries(tmp_path, monkeypatch):
    browser = _StrictBrowser()
    fetcher, store = _fetcher_with_browser(tmp_path, monkeypatch, browser)
    store.save_storage_state("example.com", {"cookies": "bad", "origins": []})

    context = await fetcher._ensure_context()

    assert context is not None
    assert len(browser.context_options) == 2
    assert "storage_state" not in browser.context_options[1]
    assert store.load_storage_state("example.com") is None

    # Next run starts clean without tripping over the same state
    fetcher._context = None
    await fetcher._ensure_context()
    assert len(browser.context_options) == 3
    assert "storage_state" not in browser.context_options[2]


@pytest.mark.asyncio
async def test_fetcher_skips_unreadable_state(tmp_path, monkeypatch):
    browser = _StrictBrowser()
    fetcher, _ = _fetcher_with_browser(tmp_path, monkeypatch, browser)
    path = tmp_path / "example.com" / "storage_state.json"
    path.parent.mkdir(parents=True)
    path.write_text("{truncated")

    assert await fetcher._ensure_context() is not None
    assert "storage_state" not in browser.context_options[0]


def test_user_agent_pool_avoids_recent_repeats():
    pool = UserAgentPool(pool_size=20, recent_size=5)
    picks = [pool.get_random() for _ in range(5)]

    assert len(set(picks)) == 5
    assert all("Chrome/" in ua for ua in picks)
    assert len(pool) == 20


def test_stealth_context_options():
    options = StealthBrowser().get_stealth_context_options()

    assert options["locale"] == "en-AU"
    assert options["timezone_id"] == "Australia/Sydney"
    assert options["extra_http_headers"]["Accept-Language"].startswith("en-AU")
    assert "Chrome/" in options["user_agent"]
    assert set(options["viewport"]) == {"width", "height"}
    assert "--disable-blink-features=AutomationControlled" in LAUNCH_ARGS


@pytest.mark.asyncio
async def test_owner_notifier_posts_embed():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content))
        return httpx.Response(204)

    notifier = OwnerNotifier(webhook_url="https://discord.example/webhook")
    notifier._http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

    assert await notifier.notify("Crawl completed", "Crawled 3 products") is True
    assert requests[0]["embeds"][0]["title"] == "Crawl completed"
    await notifier.close()


@pytest.mark.asyncio
async def test_owner_notifier_reports_failure_without_raising():
    notifier = OwnerNotifier(webhook_url="https://discord.example/webhook")
    notifier._http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(500))
    )

    assert await notifier.notify("Crawl completed", "body") is False
    await notifier.close()


@pytest.mark.asyncio
async def test_owner_notifier_disabled_without_webhook():
    assert await OwnerNotifier(webhook_url="").notify("Crawl completed", "body") is False


@pytest.mark.asyncio
async def test_weekly_crawl_is_scheduled():
    scheduler = setup_scheduler()

    job = scheduler.get_job(WEEKLY_CRAWL_JOB_ID)
    assert job is not None
    assert job.max_instances == 1
    assert job.coalesce is True
    assert "day_of_week='mon'" in str(job.trigger)
    assert "hour='9'" in str(job.trigger)
    # Not started, so reported as idle
    assert scheduler_status(scheduler)["is_running"] is False

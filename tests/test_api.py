"""Tests for the crawl and settings HTTP endpoints."""

import time
from datetime import datetime

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from price_tracker.api.deps import get_orchestrator
from price_tracker.api.routes import crawls, settings as settings_routes
from price_tracker.ingest.catalog import CATEGORY_PAGES

from conftest import BlockingFetcher, FakeFetcher, listing_html, product_card

VEGAN_PAGE_1 = CATEGORY_PAGES["vegan_health"][0].url(1)


def _app(orchestrator) -> FastAPI:
    app = FastAPI()
    app.include_router(crawls.router)
    app.include_router(settings_routes.router)
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    return app


def _wait_for_status(client, job_id, statuses=("completed", "failed", "stopped"), timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        job = client.get(f"/api/crawls/jobs/{job_id}").json()
        if job["status"] in statuses:
            return job
        time.sleep(0.01)
    raise AssertionError(f"Job {job_id} never reached {statuses}")


@pytest.fixture
def orchestrator_with_listing(make_orchestrator):
    fetcher = FakeFetcher({VEGAN_PAGE_1: listing_html(product_card(101, "Vegan Protein", "$19.99"))})
    return make_orchestrator(fetcher)


def test_trigger_runs_crawl_in_background(orchestrator_with_listing):
    with TestClient(_app(orchestrator_with_listing)) as client:
        response = client.post("/api/crawls/trigger", json={"category": "vegan_health"})

        assert response.status_code == 200
        body = response.json()
        assert body["accepted"] is True
        job = _wait_for_status(client, body["job_id"])

    assert job["status"] == "completed"
    assert job["category"] == "vegan_health"
    assert job["job_type"] == "manual"
    assert job["crawled_products"] == 1
    assert job["completed_at"] is not None


def test_trigger_rejects_unknown_category(orchestrator_with_listing):
    with TestClient(_app(orchestrator_with_listing)) as client:
        response = client.post("/api/crawls/trigger", json={"category": "electronics"})

    assert response.status_code == 400
    assert "electronics" in response.json()["detail"]


def test_running_crawl_can_be_observed_and_stopped(make_orchestrator):
    orchestrator = None

    def released():
        return orchestrator.runtime is None or orchestrator.runtime.stop_requested

    orchestrator = make_orchestrator(BlockingFetcher(released))

    with TestClient(_app(orchestrator)) as client:
        started = client.post("/api/crawls/trigger", json={}).json()

        running = client.get("/api/crawls/running").json()
        assert running["is_running"] is True
        assert running["job_id"] == started["job_id"]
        assert running["notifications"] == 0

        busy = client.post("/api/crawls/trigger", json={}).json()
        assert busy["accepted"] is False
        assert busy["job_id"] == started["job_id"]

        stop = client.post("/api/crawls/stop").json()
        assert stop["stopped"] is True
        assert stop["job_id"] == started["job_id"]

        job = _wait_for_status(client, started["job_id"])
        assert job["status"] == "stopped"

        idle = client.get("/api/crawls/running").json()
        assert idle["is_running"] is False
        assert client.post("/api/crawls/stop").json()["stopped"] is False


def test_job_listing_and_lookup(stores, orchestrator_with_listing):
    with TestClient(_app(orchestrator_with_listing)) as client:
        assert client.get("/api/crawls/jobs/latest").status_code == 404

        first = client.post("/api/crawls/trigger", json={"category": "vegan_health"}).json()
        _wait_for_status(client, first["job_id"])
        second = client.post("/api/crawls/trigger", json={"category": "vegan_health"}).json()
        _wait_for_status(client, second["job_id"])

        jobs = client.get("/api/crawls/jobs", params={"limit": 1}).json()
        assert [job["id"] for job in jobs] == [second["job_id"]]
        assert client.get("/api/crawls/jobs/latest").json()["id"] == second["job_id"]
        assert client.get("/api/crawls/jobs/999").status_code == 404


def test_reset_stuck_endpoint(stores, orchestrator_with_listing):
    # Left behind by a process that died mid-crawl
    stores.jobs.rows[50] = {
        "id": 50,
        "job_type": "scheduled",
        "status": "running",
        "category": "all",
        "total_products": 0,
        "crawled_products": 0,
        "failed_products": 0,
        "error_message": None,
        "started_at": datetime.utcnow(),
        "completed_at": None,
        "created_at": datetime.utcnow(),
    }

    with TestClient(_app(orchestrator_with_listing)) as client:
        assert client.post("/api/crawls/reset-stuck").json() == {"reset": 1}
        job = client.get("/api/crawls/jobs/50").json()

    assert job["status"] == "stopped"
    assert job["completed_at"] is not None


def test_scheduler_status_when_not_started(orchestrator_with_listing):
    with TestClient(_app(orchestrator_with_listing)) as client:
        body = client.get("/api/crawls/scheduler").json()

    assert body == {"is_running": False, "next_run_time": None, "seconds_until_next_run": None}


def test_settings_round_trip(orchestrator_with_listing):
    with TestClient(_app(orchestrator_with_listing)) as client:
        response = client.put(
            "/api/settings",
            json={"key": "price_drop_threshold", "value": " 7.5 ", "description": "Percent drop"},
        )
        assert response.status_code == 200
        assert response.json()["value"] == "7.5"

        listed = client.get("/api/settings").json()

    assert [(row["key"], row["value"]) for row in listed] == [("price_drop_threshold", "7.5")]


@pytest.mark.parametrize(
    "payload",
    [
        {"key": "price_drop_threshold", "value": "lots"},
        {"key": "price_drop_threshold", "value": "NaN"},
        {"key": "price_increase_threshold", "value": "-1"},
        {"key": "price_increase_threshold", "value": "Infinity"},
        {"key": "rate_limit_delay_ms", "value": "soon"},
        {"key": "notify_on_sale", "value": "yes"},
    ],
)
def test_settings_validation(orchestrator_with_listing, payload):
    with TestClient(_app(orchestrator_with_listing)) as client:
        assert client.put("/api/settings", json=payload).status_code == 422

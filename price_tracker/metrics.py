"""Prometheus metrics for the price tracker."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("price_tracker", "Price tracker application info")
app_info.info({"version": "0.1.0", "name": "price-tracker"})

# Crawl job metrics
crawl_jobs_total = Counter(
    "crawl_jobs_total",
    "Total number of finished crawl jobs",
    ["job_type", "status"],
)

crawl_jobs_rejected_total = Counter(
    "crawl_jobs_rejected_total",
    "Crawl triggers rejected because a job was already running",
    ["job_type"],
)

crawl_job_active = Gauge(
    "crawl_job_active",
    "1 while a crawl job is running in this process",
)

crawl_job_duration_seconds = Histogram(
    "crawl_job_duration_seconds",
    "Wall time of crawl jobs",
    buckets=[30, 60, 120, 300, 600, 1200, 1800, 3600],
)

# Fetch metrics
page_fetches_total = Counter(
    "page_fetches_total",
    "Total number of rendered page fetches",
    ["status"],
)

page_fetch_duration_seconds = Histogram(
    "page_fetch_duration_seconds",
    "Time spent rendering a page",
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)

# Reconciliation metrics
products_reconciled_total = Counter(
    "products_reconciled_total",
    "Products processed by the reconciler",
    ["action"],
)

notifications_created_total = Counter(
    "notifications_created_total",
    "Price notifications created",
    ["type"],
)

stuck_jobs_reset_total = Counter(
    "stuck_jobs_reset_total",
    "Crawl jobs forced from running to stopped",
)

# Scheduler metrics
scheduler_last_run_timestamp = Gauge(
    "scheduler_last_run_timestamp",
    "Timestamp of last scheduled crawl",
    ["status"],
)


def record_fetch(success: bool, duration: float):
    """Record a rendered page fetch."""
    status = "success" if success else "error"
    page_fetches_total.labels(status=status).inc()
    page_fetch_duration_seconds.observe(duration)


def record_reconcile(action: str):
    """Record a reconciled product ('created' or 'updated')."""
    products_reconciled_total.labels(action=action).inc()


def record_notification(notification_type: str):
    """Record a created notification."""
    notifications_created_total.labels(type=notification_type).inc()


def record_job_started():
    crawl_job_active.set(1)


def record_job_finished(job_type: str, status: str, duration: float):
    """Record a finalized crawl job."""
    crawl_job_active.set(0)
    crawl_jobs_total.labels(job_type=job_type, status=status).inc()
    crawl_job_duration_seconds.observe(duration)


def record_job_rejected(job_type: str):
    crawl_jobs_rejected_total.labels(job_type=job_type).inc()


def record_stuck_jobs_reset(count: int):
    if count:
        stuck_jobs_reset_total.inc(count)


def record_scheduler_run(success: bool):
    """Timestamp of the last scheduled crawl trigger."""
    scheduler_last_run_timestamp.labels(status="success" if success else "error").set(time.time())

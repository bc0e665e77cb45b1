"""Prometheus metrics definitions for review_watch."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

SYNC_RUNS = Counter(
    "review_sync_runs_total",
    "Total location sync runs by final status.",
    labelnames=("status",),
)

REVIEWS_RECONCILED = Counter(
    "reviews_reconciled_total",
    "Reviews classified during reconciliation, by outcome.",
    labelnames=("outcome",),
)

EXTERNAL_API_RESPONSES = Counter(
    "review_api_responses_total",
    "Responses received from the external review API, by status code.",
    labelnames=("status_code",),
)

ALERTS_TRIGGERED = Counter(
    "review_alerts_triggered_total",
    "Newly inserted alerts by rule and severity.",
    labelnames=("rule", "severity"),
)

NOTIFICATIONS = Counter(
    "review_alert_notifications_total",
    "Alert notification send attempts by outcome.",
    labelnames=("outcome",),
)

JOBS_PROCESSED = Counter(
    "review_sync_jobs_total",
    "Queue jobs handled by outcome.",
    labelnames=("outcome",),
)

SYNC_DURATION = Histogram(
    "review_sync_duration_seconds",
    "Distribution of per-location sync durations in seconds.",
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 20, 30, 60),
)


def record_sync_run(status: str) -> None:
    """Increment the sync run counter for the given final status."""

    SYNC_RUNS.labels(status=status).inc()


def record_reconciled(inserted: int, updated: int, skipped: int) -> None:
    for outcome, count in (("inserted", inserted), ("updated", updated), ("skipped", skipped)):
        if count:
            REVIEWS_RECONCILED.labels(outcome=outcome).inc(count)


def record_api_statuses(histogram: dict[int, int]) -> None:
    """Add a fetch status histogram to the API response counter."""

    for status_code, count in histogram.items():
        EXTERNAL_API_RESPONSES.labels(status_code=str(status_code)).inc(count)


def record_alert(rule: str, severity: str) -> None:
    ALERTS_TRIGGERED.labels(rule=rule, severity=severity).inc()


def record_notification(outcome: str) -> None:
    NOTIFICATIONS.labels(outcome=outcome).inc()


def record_job(outcome: str) -> None:
    JOBS_PROCESSED.labels(outcome=outcome).inc()


def observe_sync_duration(duration_seconds: float) -> None:
    """Record a location sync duration in the histogram."""

    SYNC_DURATION.observe(max(duration_seconds, 0.0))

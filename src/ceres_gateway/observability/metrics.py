"""Prometheus metrics for gateway lifecycle and remote schema federation.

Key Responsibilities:
    - Define counters for remote schema fetches, retry attempts and exhausted
      retry budgets
    - Track aggregate application readiness as a gauge
    - Expose the metrics endpoint on the FastAPI application

Collaborators:
    - Upstream: ``Server`` and ``GraphQLBase`` record metrics through the
      helper functions below
    - Downstream: Prometheus scrapes the ``/metrics`` endpoint

Thread Safety:
    - Thread-safe: Prometheus client metric operations are atomic
"""

# ==============================================================================
# IMPORTS
# ==============================================================================

from __future__ import annotations

from fastapi import FastAPI
from prometheus_client import Counter, Gauge, Histogram, make_asgi_app

from ceres_gateway.config.settings import AppSettings

# ==============================================================================
# METRIC DEFINITIONS
# ==============================================================================

REMOTE_SCHEMA_FETCHES_TOTAL = Counter(
    "ceres_remote_schema_fetches_total",
    "Remote schema introspection attempts",
    ["url", "outcome"],
)

REMOTE_SCHEMA_RETRY_ATTEMPTS_TOTAL = Counter(
    "ceres_remote_schema_retry_attempts_total",
    "Retry attempts scheduled for remote schemas",
    ["url"],
)

REMOTE_SCHEMA_RETRY_EXHAUSTED_TOTAL = Counter(
    "ceres_remote_schema_retry_exhausted_total",
    "Remote schemas whose retry budget was exhausted",
    ["url"],
)

REMOTE_SCHEMA_ACTIVE = Gauge(
    "ceres_remote_schema_active",
    "Remote schema status (1=active, 0=inactive)",
    ["url"],
)

APPLICATION_READY = Gauge(
    "ceres_application_ready",
    "Aggregate readiness of the gateway (1=ready, 0=not ready)",
)

GRAPHQL_REQUEST_DURATION_SECONDS = Histogram(
    "ceres_graphql_request_duration_seconds",
    "Duration of GraphQL requests served by the gateway",
    ["status"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# ==============================================================================
# RECORDING HELPERS
# ==============================================================================


def record_remote_schema_fetch(url: str, *, success: bool) -> None:
    """Count an introspection attempt and update the per-URL status gauge."""
    REMOTE_SCHEMA_FETCHES_TOTAL.labels(url=url, outcome="success" if success else "failure").inc()
    if success:
        REMOTE_SCHEMA_ACTIVE.labels(url=url).set(1)


def mark_remote_schema_inactive(url: str) -> None:
    REMOTE_SCHEMA_ACTIVE.labels(url=url).set(0)


def record_retry_attempt(url: str) -> None:
    REMOTE_SCHEMA_RETRY_ATTEMPTS_TOTAL.labels(url=url).inc()


def record_retry_exhausted(url: str) -> None:
    REMOTE_SCHEMA_RETRY_EXHAUSTED_TOTAL.labels(url=url).inc()


def set_application_ready(ready: bool) -> None:
    APPLICATION_READY.set(1 if ready else 0)


def observe_graphql_request(status: str, duration: float) -> None:
    GRAPHQL_REQUEST_DURATION_SECONDS.labels(status=status).observe(duration)


def register_metrics(app: FastAPI, settings: AppSettings) -> None:
    """Mount the Prometheus scrape endpoint when metrics are enabled."""
    metrics_settings = settings.observability.metrics
    if not metrics_settings.enabled:
        return
    app.mount(metrics_settings.path, make_asgi_app())


# ==============================================================================
# EXPORTS
# ==============================================================================

__all__ = [
    "APPLICATION_READY",
    "GRAPHQL_REQUEST_DURATION_SECONDS",
    "REMOTE_SCHEMA_ACTIVE",
    "REMOTE_SCHEMA_FETCHES_TOTAL",
    "REMOTE_SCHEMA_RETRY_ATTEMPTS_TOTAL",
    "REMOTE_SCHEMA_RETRY_EXHAUSTED_TOTAL",
    "mark_remote_schema_inactive",
    "observe_graphql_request",
    "record_remote_schema_fetch",
    "record_retry_attempt",
    "record_retry_exhausted",
    "register_metrics",
    "set_application_ready",
]

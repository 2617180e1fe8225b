"""
Prometheus metrics for the SEO Hub.

Everything is registered under the seo_hub_ prefix on the default registry
and served from /metrics.
"""

import time
from enum import Enum
from typing import Callable

from prometheus_client import REGISTRY, Counter, Gauge, Histogram, Info, generate_latest

from app.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    EVENT_TYPE = "event_type"
    OUTCOME = "outcome"
    SOURCE = "source"
    ERROR_TYPE = "error_type"


class SEOHubMetrics:
    """
    Centralized metrics for the SEO Hub API.

    Covers:
    - HTTP requests (rate, duration, errors)
    - SEOWorks webhook intake (by event type and outcome)
    - Orphaned task storage and reconciliation
    - Property resolution (by kind and source)
    - Connection provisioning and outbound vendor calls
    """

    def __init__(self) -> None:
        # Service Info
        self.service_info = Info(
            "seo_hub_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # HTTP Metrics
        self.http_requests_total = Counter(
            "seo_hub_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "seo_hub_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "seo_hub_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # Webhook Metrics
        self.webhook_events_total = Counter(
            "seo_hub_webhook_events_total",
            "SEOWorks webhook events received",
            [MetricLabels.EVENT_TYPE, MetricLabels.OUTCOME],
        )

        self.orphaned_tasks_stored_total = Counter(
            "seo_hub_orphaned_tasks_stored_total",
            "Webhook events stored as orphaned tasks",
            [MetricLabels.EVENT_TYPE],
        )

        # Reconciliation Metrics
        self.orphaned_tasks_reconciled_total = Counter(
            "seo_hub_orphaned_tasks_reconciled_total",
            "Orphaned tasks handled during reconciliation",
            [MetricLabels.OUTCOME],
        )

        self.reconciliation_duration_seconds = Histogram(
            "seo_hub_reconciliation_duration_seconds",
            "Orphaned task reconciliation run duration in seconds",
            buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
        )

        # Property Resolution Metrics
        self.property_resolutions_total = Counter(
            "seo_hub_property_resolutions_total",
            "Property resolutions by kind and source",
            ["kind", MetricLabels.SOURCE],
        )

        # Provisioning / Vendor Metrics
        self.connections_provisioned_total = Counter(
            "seo_hub_connections_provisioned_total",
            "Connection stubs created for new dealerships",
            ["kind"],
        )

        self.vendor_requests_total = Counter(
            "seo_hub_vendor_requests_total",
            "Outbound SEOWorks API calls",
            [MetricLabels.OPERATION, "success"],
        )

        self.vendor_request_duration_seconds = Histogram(
            "seo_hub_vendor_request_duration_seconds",
            "Outbound SEOWorks API call duration in seconds",
            [MetricLabels.OPERATION],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        # Error Metrics
        self.errors_total = Counter(
            "seo_hub_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Count a finished request and observe its latency."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_webhook_event(self, event_type: str, outcome: str) -> None:
        """Record a webhook delivery and how it was handled."""
        self.webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()
        if outcome == "orphaned":
            self.orphaned_tasks_stored_total.labels(event_type=event_type).inc()

    def record_reconciliation(
        self, processed: int, created: int, skipped: int, failed: int, duration: float
    ) -> None:
        """Record the outcome counts of one reconciliation run."""
        counts = {"processed": processed, "created": created, "skipped": skipped, "failed": failed}
        for outcome, count in counts.items():
            self.orphaned_tasks_reconciled_total.labels(outcome=outcome).inc(count)
        self.reconciliation_duration_seconds.observe(duration)

    def record_property_resolution(self, kind: str, source: str) -> None:
        """Record which fallback layer answered a resolution."""
        self.property_resolutions_total.labels(kind=kind, source=source).inc()

    def record_connection_provisioned(self, kind: str) -> None:
        self.connections_provisioned_total.labels(kind=kind).inc()

    def record_vendor_request(self, operation: str, success: bool, duration: float) -> None:
        """Record outbound SEOWorks call metrics."""
        self.vendor_requests_total.labels(operation=operation, success=str(success)).inc()
        self.vendor_request_duration_seconds.labels(operation=operation).observe(duration)

    def record_error(self, error_type: str, operation: str) -> None:
        """Count an error by exception class and the operation that raised it."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


metrics = SEOHubMetrics()


class track_http_request:
    """
    Context manager for tracking HTTP requests.

    Usage:
        with track_http_request("/api/seoworks/webhook", "POST") as tracker:
            # ... process request
            tracker.set_status_code(200)
    """

    def __init__(self, endpoint: str, method: str) -> None:
        self.endpoint = endpoint
        self.method = method
        self.status_code = 200
        self.start_time: float = 0.0

    def set_status_code(self, status_code: int) -> None:
        self.status_code = status_code

    def __enter__(self) -> "track_http_request":
        self.start_time = time.perf_counter()
        metrics.http_requests_in_progress.labels(
            endpoint=self.endpoint, method=self.method
        ).inc()
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        duration = time.perf_counter() - self.start_time
        if exc_type is not None:
            self.status_code = 500
        metrics.record_http_request(self.endpoint, self.method, self.status_code, duration)
        metrics.http_requests_in_progress.labels(
            endpoint=self.endpoint, method=self.method
        ).dec()


def get_metrics_handler() -> Callable[[], bytes]:
    """Callable rendering the default registry in text exposition format."""
    def metrics_endpoint() -> bytes:
        return generate_latest(REGISTRY)

    return metrics_endpoint

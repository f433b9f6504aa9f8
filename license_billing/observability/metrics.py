"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

from enum import StrEnum

from prometheus_client import Counter, Gauge, Histogram, Info

from license_billing.config import settings


class MetricLabels(StrEnum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class BillingMetrics:
    """
    Centralized metrics for the License Billing API.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Webhook reconciliation outcomes
    - License authority calls (rate, success/failure, latency)
    - Invite code validations and admin mutations
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        self.service_info = Info(
            "license_billing_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "license_billing_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "license_billing_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "license_billing_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Webhook Metrics
        # ====================================================================
        self.webhooks_total = Counter(
            "license_billing_webhooks_total",
            "Payment webhooks processed by reconciliation outcome",
            [MetricLabels.OUTCOME],
        )

        self.webhook_signature_failures_total = Counter(
            "license_billing_webhook_signature_failures_total",
            "Webhooks rejected because of an invalid or missing signature",
        )

        # ====================================================================
        # License Authority Metrics
        # ====================================================================
        self.license_calls_total = Counter(
            "license_billing_license_calls_total",
            "Calls to the license authority",
            [MetricLabels.OPERATION, "success"],
        )

        self.license_call_duration_seconds = Histogram(
            "license_billing_license_call_duration_seconds",
            "License authority call duration in seconds",
            [MetricLabels.OPERATION],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        # ====================================================================
        # Invite / Admin Metrics
        # ====================================================================
        self.invite_validations_total = Counter(
            "license_billing_invite_validations_total",
            "Invite code validations by result",
            ["result"],
        )

        self.admin_subscription_updates_total = Counter(
            "license_billing_admin_subscription_updates_total",
            "Operator-initiated subscription updates",
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "license_billing_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_webhook(self, outcome: str) -> None:
        """Record a reconciliation outcome."""
        self.webhooks_total.labels(outcome=outcome).inc()

    def record_license_call(self, operation: str, success: bool, duration: float) -> None:
        """Record a license authority call."""
        self.license_calls_total.labels(operation=operation, success=str(success)).inc()
        self.license_call_duration_seconds.labels(operation=operation).observe(duration)

    def record_invite_validation(self, result: str) -> None:
        """Record an invite code validation result ("ok" or a rejection kind)."""
        self.invite_validations_total.labels(result=result).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = BillingMetrics()

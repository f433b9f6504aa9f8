"""
Observability module - Logging, Metrics, and Tracing.
"""

from license_billing.observability.logging import get_logger, log_context, mask_secret, setup_logging
from license_billing.observability.metrics import metrics
from license_billing.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "get_logger",
    "log_context",
    "mask_secret",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]

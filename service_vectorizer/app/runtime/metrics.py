"""Metrics collection facade for the vectorizer.

Re-exports the shared metrics helpers. The worker records run outcomes,
per-review outcomes and embedding provider latency.
"""

from libs.common.metrics import MetricsCollector, get_metrics_collector

SERVICE_NAME = "review-vectorizer"


def get_service_metrics() -> MetricsCollector:
    """Return the process-wide collector for this service."""
    return get_metrics_collector(SERVICE_NAME)

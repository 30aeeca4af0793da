"""Metrics collection for the vectorizer.

Provides a thin convenience wrapper around ``prometheus_client`` so the worker
records run, record, embedding and vector store metrics consistently.

Design notes
- Metrics and labels are predeclared to keep cardinality bounded
- A single registry is kept per collector (can be injected for tests)
"""

import time
from functools import wraps
from typing import Any, Callable, Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

logger = structlog.get_logger("metrics")


class MetricsCollector:
    """Centralized metrics collection for the vectorizer.

    Parameters
    - service_name: Logical name used for scoping
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.vectorize_runs = Counter(
            'vectorize_runs_total',
            'Vectorization runs partitioned by final status.',
            ['status'],
            registry=self.registry
        )

        self.vectorize_run_duration = Histogram(
            'vectorize_run_duration_seconds',
            'Vectorization run duration seconds.',
            registry=self.registry
        )

        self.vectorize_records = Counter(
            'vectorize_records_total',
            'Reviews handled by the pipeline partitioned by outcome.',
            ['outcome'],
            registry=self.registry
        )

        self.active_runs = Gauge(
            'vectorize_active_runs',
            'Number of runs currently in progress',
            registry=self.registry
        )

        self.embedding_requests = Counter(
            'embedding_requests_total',
            'Embedding provider calls partitioned by provider and status.',
            ['provider', 'status'],
            registry=self.registry
        )

        self.embedding_duration = Histogram(
            'embedding_request_duration_seconds',
            'Embedding provider call duration',
            ['provider'],
            registry=self.registry
        )

        self.vector_store_operations = Counter(
            'vector_store_operations_total',
            'Total vector store operations',
            ['operation', 'status'],
            registry=self.registry
        )

    def record_run(self, status: str, duration: Optional[float] = None) -> None:
        """Record a finished run (``completed``, ``cancelled`` or ``failed``)."""
        self.vectorize_runs.labels(status=status).inc()
        if duration is not None:
            self.vectorize_run_duration.observe(duration)

    def record_records(self, outcome: str, count: int = 1) -> None:
        """Record reviews by outcome (``processed``, ``skipped``, ``failed``)."""
        if count > 0:
            self.vectorize_records.labels(outcome=outcome).inc(count)

    def record_embedding(self, provider: str, status: str, duration: float) -> None:
        """Record an embedding provider call.

        duration is expected in seconds to match Prometheus histogram units.
        """
        self.embedding_requests.labels(provider=provider, status=status).inc()
        self.embedding_duration.labels(provider=provider).observe(duration)

    def record_vector_store_operation(self, operation: str, status: str) -> None:
        """Record vector store operation metrics."""
        self.vector_store_operations.labels(operation=operation, status=status).inc()

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create metrics collector for a service.

    Returns a process‑wide singleton to avoid duplicate collectors/labels.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
    return _metrics_collector


def measure_time(operation: str, **labels: Any) -> Callable:
    """Decorator logging the duration of an async operation.

    Example
    >>> @measure_time("init_schema", table="review_embeddings")
    ... async def initialize():
    ...     ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Operation {operation} failed",
                    operation=operation,
                    duration_ms=(time.perf_counter() - start_time) * 1000,
                    error=str(e),
                    **labels
                )
                raise
            logger.info(
                f"Operation {operation} completed",
                operation=operation,
                duration_ms=(time.perf_counter() - start_time) * 1000,
                **labels
            )
            return result
        return wrapper
    return decorator

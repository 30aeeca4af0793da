"""Resilience helpers for embedding pipelines.

Provider calls are wrapped in ``RetryHandler`` so transient HTTP and API
failures are retried with a linearly growing pause before a sub-batch is
given up on.
"""

"""Retry handler with linear backoff for embedding provider calls."""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

import structlog

logger = structlog.get_logger("retry_handler")


class RetryConfig:
    """Configuration for retry behavior.

    ``max_retries`` counts retries, so an operation runs at most
    ``max_retries + 1`` times. Before attempt ``n`` (0-based, ``n > 0``) the
    handler waits ``n * backoff_seconds``.
    """

    def __init__(
        self,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        retryable_exceptions: Tuple[Type[BaseException], ...] = (Exception,)
    ):
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.retryable_exceptions = retryable_exceptions

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


class RetryHandler:
    """Handles retry logic with linear backoff."""

    def __init__(
        self,
        config: RetryConfig,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None
    ):
        self.config = config
        self._sleep = sleep or asyncio.sleep

    async def execute_with_retry(
        self,
        func: Callable,
        *args,
        operation_name: str = "unknown",
        **kwargs
    ) -> Any:
        """Execute function with retry logic.

        The first successful result is returned immediately. When every
        attempt fails the last exception is re-raised unchanged.
        """
        last_exception: Optional[BaseException] = None

        for attempt in range(self.config.max_attempts):
            if attempt > 0:
                delay = self._calculate_delay(attempt)
                logger.warning(
                    "Operation failed, retrying",
                    operation=operation_name,
                    attempt=attempt + 1,
                    total_attempts=self.config.max_attempts,
                    delay_seconds=delay,
                    error=str(last_exception)
                )
                await self._sleep(delay)

            try:
                result = func(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
            except self.config.retryable_exceptions as e:
                last_exception = e
                continue

            if attempt > 0:
                logger.info(
                    "Operation succeeded after retry",
                    operation=operation_name,
                    attempt=attempt + 1,
                    total_attempts=self.config.max_attempts
                )
            return result

        logger.error(
            "Operation failed after all retries",
            operation=operation_name,
            attempts=self.config.max_attempts,
            error=str(last_exception)
        )
        raise last_exception

    def _calculate_delay(self, attempt: int) -> float:
        """Linear backoff: ``attempt * backoff_seconds``."""
        return attempt * self.config.backoff_seconds

"""Review vectorizer service entry point.

Listens for vectorize requests on Redis pub/sub and runs them one at a time.
SIGINT/SIGTERM stop the listener and cancel the in-flight run at its next
page boundary.
"""

import asyncio
import signal
from typing import Any, Dict, Optional, Tuple

import structlog
from prometheus_client import start_http_server

from libs.common.config import VectorizerConfig
from libs.common.events import EventPublisher, EventSubscriber, EventType
from libs.common.logging import configure_logging
from libs.vector_store.base import ReviewVectorRepository, VectorStoreError
from libs.vector_store.factory import create_review_repository

from .embedders.base import Embedder
from .embedders.factory import create_embedder
from .runtime.metrics import SERVICE_NAME, get_service_metrics
from .workers.requests import VectorizeRunError
from .workers.vectorize_worker import VectorizeWorker

logger = structlog.get_logger("vectorizer")

QUEUE_POLL_SECONDS = 1.0


class VectorizerService:
    """Wires the repository, embedder and worker to the Redis transport."""

    def __init__(self, config: VectorizerConfig):
        self.config = config
        self.metrics = get_service_metrics()
        self.repository: Optional[ReviewVectorRepository] = None
        self.embedder: Optional[Embedder] = None
        self.event_publisher: Optional[EventPublisher] = None
        self.event_subscriber: Optional[EventSubscriber] = None
        self.worker: Optional[VectorizeWorker] = None
        self.requests: Optional["asyncio.Queue[Tuple[Optional[str], Any]]"] = None

    async def initialize(self) -> None:
        """Connect to the store, pick an embedder and subscribe to requests."""
        self.requests = asyncio.Queue()
        self.repository = create_review_repository(self.config)
        await self.repository.initialize()

        try:
            stats = await self.repository.get_table_stats()
            logger.info("Table statistics", **{k: str(v) for k, v in stats.items()})
        except VectorStoreError as e:
            logger.warning("Failed to get table stats", error=str(e))

        self.embedder = create_embedder(self.config)
        self.event_publisher = EventPublisher(
            self.config.redis_url,
            channel_prefix=self.config.events_channel_prefix,
        )
        self.worker = VectorizeWorker(
            self.config,
            self.repository,
            self.embedder,
            event_publisher=self.event_publisher,
            metrics_collector=self.metrics,
        )

        self.event_subscriber = EventSubscriber(
            self.config.redis_url,
            channel_prefix=self.config.events_channel_prefix,
        )
        self.event_subscriber.subscribe(EventType.REVIEW_VECTORIZE_REQUEST, self._enqueue_request)

        if self.config.metrics_port > 0:
            start_http_server(self.config.metrics_port, registry=self.metrics.registry)
            logger.info("Metrics exporter started", port=self.config.metrics_port)

        logger.info("Vectorizer service initialized")

    def _enqueue_request(self, event: Dict[str, Any]) -> None:
        """Queue a request so runs never overlap."""
        saga_id = event.get("saga_id") if isinstance(event, dict) else None
        self.requests.put_nowait((saga_id, event))
        logger.info("Queued vectorize request", saga_id=saga_id, queued=self.requests.qsize())

    async def _consume_requests(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                saga_id, event = await asyncio.wait_for(
                    self.requests.get(), timeout=QUEUE_POLL_SECONDS
                )
            except asyncio.TimeoutError:
                continue

            try:
                await self.worker.handle_event(event, saga_id=saga_id, cancel_event=stop_event)
            except VectorizeRunError:
                # Already logged with the partial counts by the worker.
                pass
            except Exception:
                logger.exception("Vectorize request failed", saga_id=saga_id)
            finally:
                self.requests.task_done()

    async def run(self, stop_event: asyncio.Event) -> None:
        """Serve requests until ``stop_event`` is set."""
        listener = asyncio.create_task(self.event_subscriber.start_listening(stop_event))
        consumer = asyncio.create_task(self._consume_requests(stop_event))
        try:
            done, _ = await asyncio.wait(
                {listener, consumer}, return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                # Re-raise listener/consumer crashes.
                task.result()
        finally:
            stop_event.set()
            if not listener.done():
                listener.cancel()
            # The consumer returns once the in-flight run reaches a page boundary.
            await asyncio.gather(listener, consumer, return_exceptions=True)

    async def cleanup(self) -> None:
        """Release connections in reverse order of creation."""
        if self.event_subscriber:
            await self.event_subscriber.close()
        if self.event_publisher:
            self.event_publisher.close()
        if self.embedder:
            await self.embedder.aclose()
        if self.repository:
            await self.repository.close()
        logger.info("Vectorizer service stopped")


async def serve(config: VectorizerConfig) -> None:
    """Run the service until SIGINT/SIGTERM."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    service = VectorizerService(config)
    try:
        await service.initialize()
        await service.run(stop_event)
    finally:
        await service.cleanup()


def main() -> None:
    config = VectorizerConfig()
    configure_logging(SERVICE_NAME, config.log_level, config.log_format)
    logger.info(
        "Starting vectorizer service",
        env=config.service_env,
        page_size=config.processing_batch_size,
        sub_batch_size=config.vectorizer_batch_size,
        model=config.embedding_model
    )
    asyncio.run(serve(config))


if __name__ == "__main__":
    main()

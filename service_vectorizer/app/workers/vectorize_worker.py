"""Vectorize worker: pages through clean reviews and stores their embeddings.

A run walks the eligible reviews page by page (newest first), splits each
page into provider-sized sub-batches, embeds review content and developer
responses, and writes one vector per review with insert-or-skip semantics.

Execution model
- Strictly sequential: every store and provider call is awaited in order
- Cancellation is cooperative and checked before each page fetch
- A failed page fetch aborts the run; embedding and write failures only
  count against the sub-batch or review they hit
"""

import asyncio
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Sequence

import numpy as np
import redis
import structlog

from libs.common.config import VectorizerConfig
from libs.common.events import EventPublisher
from libs.common.logging import bind_run_context, clear_run_context
from libs.common.metrics import MetricsCollector
from libs.vector_store.base import ReviewVectorRepository, VectorStoreError
from libs.vector_store.models import CleanReview

from ..embedders.base import Embedder, EmbeddingError, EmbeddingProviderError
from ..runtime.metrics import get_service_metrics
from .batching import align_response_vectors, assemble_vector, response_indices, split_batches
from .requests import (
    ReviewFetchError,
    RunCancelledError,
    RunResult,
    VectorizeRequest,
    VectorizeRunError,
    parse_vectorize_request,
)

logger = structlog.get_logger("vectorize_worker")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VectorizeWorker:
    """Runs the review vectorization pipeline against a repository."""

    def __init__(
        self,
        config: VectorizerConfig,
        repository: ReviewVectorRepository,
        embedder: Embedder,
        event_publisher: Optional[EventPublisher] = None,
        metrics_collector: Optional[MetricsCollector] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.repository = repository
        self.embedder = embedder
        self.event_publisher = event_publisher
        self.metrics = metrics_collector or get_service_metrics()
        self.clock = clock or _utcnow

        self.model = config.embedding_model
        self.dimension = config.vectorizer_max_vector_length
        self.sub_batch_size = config.vectorizer_batch_size

    def page_size_for(self, request: VectorizeRequest) -> int:
        """An explicit request limit wins over the configured page size."""
        if request.limit > 0:
            return request.limit
        return self.config.processing_batch_size

    async def run_once(
        self,
        request: VectorizeRequest,
        cancel_event: Optional[asyncio.Event] = None
    ) -> RunResult:
        """Execute one run and return its counters.

        Raises
        - ``RunCancelledError`` when ``cancel_event`` is set between pages
        - ``ReviewFetchError`` when a page cannot be read

        Both carry the partial ``RunResult`` accumulated before the stop.
        """
        page_size = self.page_size_for(request)
        filters = request.to_filters(vectorized_before=self.clock())
        result = RunResult()
        offset = 0
        pages = 0
        started = time.perf_counter()

        logger.info(
            "Starting vectorization run",
            page_size=page_size,
            sub_batch_size=self.sub_batch_size,
            provider=self.embedder.provider_name,
            model=self.model,
            **request.to_log_dict()
        )
        self.metrics.active_runs.inc()

        try:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    logger.warning(
                        "Vectorization run cancelled",
                        pages=pages,
                        processed=result.processed,
                        skipped=result.skipped,
                        failed=result.failed
                    )
                    raise RunCancelledError("Vectorization run cancelled", result)

                try:
                    reviews = await self.repository.fetch_reviews_for_vectorization(
                        filters, page_size, offset
                    )
                except VectorStoreError as e:
                    logger.error(
                        "Failed to fetch reviews",
                        offset=offset,
                        limit=page_size,
                        error=str(e)
                    )
                    raise ReviewFetchError(f"Failed to fetch reviews: {e}", result) from e

                if not reviews:
                    break

                result = result + await self._process_page(reviews)
                pages += 1

                logger.info(
                    "Vectorization progress",
                    page=pages,
                    offset=offset,
                    page_records=len(reviews),
                    processed=result.processed,
                    skipped=result.skipped,
                    failed=result.failed
                )

                if request.limit > 0 or len(reviews) < page_size:
                    break
                offset += page_size

        except VectorizeRunError as e:
            status = "cancelled" if isinstance(e, RunCancelledError) else "failed"
            self.metrics.record_run(status, time.perf_counter() - started)
            raise
        finally:
            self.metrics.active_runs.dec()

        duration = time.perf_counter() - started
        self.metrics.record_run("completed", duration)
        logger.info(
            "Vectorization run completed",
            pages=pages,
            processed=result.processed,
            skipped=result.skipped,
            failed=result.failed,
            duration_seconds=round(duration, 3)
        )
        return result

    async def _process_page(self, reviews: Sequence[CleanReview]) -> RunResult:
        result = RunResult()
        for batch in split_batches(reviews, self.sub_batch_size):
            result = result + await self._process_batch(batch)
        return result

    async def _process_batch(self, batch: List[CleanReview]) -> RunResult:
        """Embed and store one sub-batch.

        Content vectors are mandatory: if they cannot be computed the whole
        sub-batch counts as failed and nothing is written. Response vectors
        are best effort.
        """
        try:
            content_vectors = await self._embed(
                [review.content_clean for review in batch], kind="content"
            )
        except EmbeddingError as e:
            logger.error(
                "Failed to embed review content, skipping sub-batch",
                batch_size=len(batch),
                first_review_id=batch[0].id,
                error=str(e)
            )
            self.metrics.record_records("failed", len(batch))
            return RunResult(failed=len(batch))

        response_vectors = await self._embed_responses(batch)
        created_at = self.clock()

        processed = skipped = failed = 0
        stored_ids: List[str] = []

        for review, content_vec, response_vec in zip(batch, content_vectors, response_vectors):
            if content_vec is None:
                logger.debug("Skipping review without usable content", review_id=review.id)
                skipped += 1
                continue

            vector = assemble_vector(
                review,
                content_vec,
                response_vec,
                model=self.model,
                dim=self.dimension,
                created_at=created_at,
            )

            try:
                inserted = await self.repository.upsert_vector(vector)
            except VectorStoreError as e:
                logger.error("Failed to store review vector", error=str(e), **vector.to_record())
                self.metrics.record_vector_store_operation("upsert", "error")
                failed += 1
                continue

            self.metrics.record_vector_store_operation("upsert", "success")
            if inserted:
                processed += 1
                stored_ids.append(review.id)
            else:
                skipped += 1

        self.metrics.record_records("processed", processed)
        self.metrics.record_records("skipped", skipped)
        self.metrics.record_records("failed", failed)

        return RunResult(
            processed=processed,
            skipped=skipped,
            failed=failed,
            review_ids=tuple(stored_ids),
        )

    async def _embed_responses(self, batch: List[CleanReview]) -> List[Optional[np.ndarray]]:
        """Response vectors aligned with ``batch``; ``None`` where absent."""
        indices = response_indices(batch)
        if not indices:
            return [None] * len(batch)

        try:
            vectors = await self._embed(
                [batch[i].response_content_clean for i in indices], kind="response"
            )
        except EmbeddingError as e:
            logger.warning(
                "Failed to embed developer responses, storing content vectors only",
                responses=len(indices),
                error=str(e)
            )
            return [None] * len(batch)

        return align_response_vectors(len(batch), indices, vectors)

    async def _embed(self, texts: List[str], kind: str) -> List[Optional[np.ndarray]]:
        provider = self.embedder.provider_name
        started = time.perf_counter()
        try:
            vectors = await self.embedder.embed_batch(texts)
            if len(vectors) != len(texts):
                raise EmbeddingProviderError(
                    f"Embedder returned {len(vectors)} vectors for {len(texts)} texts"
                )
        except EmbeddingError:
            self.metrics.record_embedding(provider, "error", time.perf_counter() - started)
            raise

        self.metrics.record_embedding(provider, "success", time.perf_counter() - started)
        logger.debug("Embedded batch", kind=kind, count=len(texts), provider=provider)
        return vectors

    async def handle_event(
        self,
        payload: Any,
        saga_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> RunResult:
        """Run the pipeline for a trigger payload and report completion.

        A completion event is published only when the run finishes without a
        run-level error. Run errors are logged and re-raised.
        """
        request = parse_vectorize_request(payload)
        saga_id = saga_id or str(uuid.uuid4())
        bind_run_context(saga_id=saga_id)

        try:
            try:
                result = await self.run_once(request, cancel_event=cancel_event)
            except VectorizeRunError as e:
                logger.error(
                    "Vectorization run did not complete",
                    error=str(e),
                    processed=e.result.processed,
                    skipped=e.result.skipped,
                    failed=e.result.failed
                )
                raise

            await self._publish_completed(saga_id, result)
            return result
        finally:
            clear_run_context("saga_id")

    async def _publish_completed(self, saga_id: str, result: RunResult) -> None:
        if self.event_publisher is None:
            return
        try:
            await asyncio.to_thread(
                self.event_publisher.publish_vectorize_completed,
                saga_id,
                result.processed,
                result.skipped,
                result.failed,
                list(result.review_ids),
            )
        except redis.RedisError as e:
            logger.error("Failed to publish completion event", saga_id=saga_id, error=str(e))

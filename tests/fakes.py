"""In-memory stand-ins for the store, embedders and event publisher."""

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from libs.vector_store.base import (
    ReviewVectorRepository,
    VectorStoreQueryError,
    VectorStoreValidationError,
)
from libs.vector_store.models import CleanReview, CleanReviewFilters, ReviewVector
from service_vectorizer.app.embedders.base import Embedder, EmbeddingProviderError
from service_vectorizer.app.embedders.fallback import StubEmbedder

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_review(
    index: int,
    response: Optional[str] = None,
    content: Optional[str] = None,
    **overrides
) -> CleanReview:
    """Review ``index``; higher indexes are older."""
    fields = dict(
        id=f"review-{index:04d}",
        app_id="app-1",
        content_clean=content if content is not None else f"Review number {index} is quite helpful",
        country="us",
        rating=(index % 5) + 1,
        language="en",
        reviewed_at=BASE_TIME - timedelta(minutes=index),
        response_content_clean=response,
    )
    fields.update(overrides)
    return CleanReview(**fields)


def make_reviews(count: int) -> List[CleanReview]:
    return [make_review(i) for i in range(count)]


class TickingClock:
    """Clock advancing one second per call, so timestamps never tie."""

    def __init__(self, start: datetime = BASE_TIME):
        self.current = start

    def __call__(self) -> datetime:
        self.current = self.current + timedelta(seconds=1)
        return self.current


class InMemoryReviewRepository(ReviewVectorRepository):
    """Dict-backed repository mirroring the pgvector query semantics."""

    def __init__(self, reviews: Sequence[CleanReview] = (), vector_dimension: int = 8):
        self.reviews = list(reviews)
        self.vector_dimension = vector_dimension
        self.vectors: Dict[str, ReviewVector] = {}
        self.fetch_calls: List[Tuple[int, int]] = []
        self.upsert_calls: List[str] = []
        self.fail_fetch_on_call: Optional[int] = None
        self.fail_upsert_ids: Set[str] = set()
        self.after_fetch: Optional[Callable[[int], None]] = None
        self.initialized = False
        self.closed = False

    async def initialize(self) -> None:
        self.initialized = True

    def _eligible(self, review: CleanReview, filters: CleanReviewFilters) -> bool:
        if not review.is_contentful or not review.content_clean:
            return False
        if not filters.force_recompute:
            stored = self.vectors.get(review.id)
            if stored is not None and (
                filters.vectorized_before is None
                or stored.created_at < filters.vectorized_before
            ):
                return False
        if filters.app_id and review.app_id != filters.app_id:
            return False
        if filters.countries and review.country not in filters.countries:
            return False
        if filters.languages and review.language not in filters.languages:
            return False
        if filters.date_from and review.reviewed_at < filters.date_from:
            return False
        if filters.date_to and review.reviewed_at > filters.date_to:
            return False
        return True

    async def fetch_reviews_for_vectorization(self, filters, limit, offset=0):
        self.fetch_calls.append((limit, offset))
        call_number = len(self.fetch_calls)
        if self.fail_fetch_on_call == call_number:
            raise VectorStoreQueryError("Query failed: connection reset")

        eligible = sorted(
            (r for r in self.reviews if self._eligible(r, filters)),
            key=lambda r: r.id,
        )
        eligible.sort(key=lambda r: r.reviewed_at, reverse=True)
        page = eligible[offset:offset + limit]

        if self.after_fetch is not None:
            self.after_fetch(call_number)
        return page

    async def upsert_vector(self, vector: ReviewVector) -> bool:
        self.upsert_calls.append(vector.review_id)
        if len(vector.content_vec) != self.vector_dimension:
            raise VectorStoreValidationError("wrong content dimension")
        if vector.review_id in self.fail_upsert_ids:
            raise VectorStoreQueryError("Query failed: deadlock detected")
        if vector.review_id in self.vectors:
            return False
        self.vectors[vector.review_id] = vector
        return True

    async def get_table_stats(self):
        return {"total_embeddings": len(self.vectors)}

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        self.closed = True


class RecordingEmbedder(Embedder):
    """Stub embedder that records every batch and can fail on demand."""

    provider_name = "recording"

    def __init__(
        self,
        dimension: int = 8,
        fail_when: Optional[Callable[[List[str]], bool]] = None,
        seed: int = 7,
    ):
        super().__init__(dimension)
        self.calls: List[List[str]] = []
        self.fail_when = fail_when
        self._stub = StubEmbedder(dimension, seed=seed)

    async def embed_batch(self, texts):
        batch = list(texts)
        self.calls.append(batch)
        if self.fail_when is not None and self.fail_when(batch):
            raise EmbeddingProviderError("OpenAI API error: Rate limit reached (code: rate_limit_exceeded)")
        return await self._stub.embed_batch(batch)


class SkippingEmbedder(RecordingEmbedder):
    """Returns ``None`` for texts containing ``marker``, like a rejected input."""

    def __init__(self, marker: str, dimension: int = 8):
        super().__init__(dimension)
        self.marker = marker

    async def embed_batch(self, texts):
        vectors = await super().embed_batch(texts)
        return [None if self.marker in text else vector for text, vector in zip(texts, vectors)]


class RecordingPublisher:
    """Captures completion events instead of talking to Redis."""

    def __init__(self):
        self.completed: List[dict] = []

    def publish_vectorize_completed(self, saga_id, processed, skipped, failed, review_ids):
        self.completed.append({
            "saga_id": saga_id,
            "processed": processed,
            "skipped": skipped,
            "failed": failed,
            "review_ids": review_ids,
        })


def as_vector(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=np.float32)

"""Sub-batch splitting and vector assembly helpers."""

from datetime import datetime
from typing import List, Optional, Sequence, TypeVar

import numpy as np

from libs.vector_store.models import CleanReview, ReviewVector

T = TypeVar("T")


def split_batches(items: Sequence[T], batch_size: int) -> List[List[T]]:
    """Split ``items`` into contiguous, order-preserving slices.

    Produces ``ceil(len(items) / batch_size)`` slices; only the last one may
    be shorter than ``batch_size``.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


def response_indices(reviews: Sequence[CleanReview]) -> List[int]:
    """Positions of the reviews that carry a developer response."""
    return [i for i, review in enumerate(reviews) if review.has_response]


def align_response_vectors(
    total: int,
    indices: Sequence[int],
    vectors: Sequence[Optional[np.ndarray]]
) -> List[Optional[np.ndarray]]:
    """Spread response-only vectors back over the full batch.

    ``vectors[k]`` belongs to the review at ``indices[k]``; every other
    position gets ``None``.
    """
    if len(indices) != len(vectors):
        raise ValueError(
            f"Got {len(vectors)} response vectors for {len(indices)} responses"
        )

    aligned: List[Optional[np.ndarray]] = [None] * total
    for position, vector in zip(indices, vectors):
        aligned[position] = vector
    return aligned


def assemble_vector(
    review: CleanReview,
    content_vec: np.ndarray,
    response_vec: Optional[np.ndarray],
    model: str,
    dim: int,
    created_at: Optional[datetime] = None
) -> ReviewVector:
    """Build the persistable vector for ``review``."""
    vector = ReviewVector(
        review_id=review.id,
        app_id=review.app_id,
        model=model,
        dim=dim,
        content_vec=content_vec,
        response_vec=response_vec,
        language=review.language,
        rating=review.rating,
        country=review.country,
    )
    if created_at is not None:
        vector.created_at = created_at
    return vector

"""Data types exchanged with the review vector store.

``CleanReview`` rows are owned by the upstream cleaning pipeline and are only
ever read here. ``ReviewVector`` is what the vectorizer writes back, at most
once per review.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import numpy as np


@dataclass(frozen=True)
class CleanReview:
    """A cleaned app-store review eligible for vectorization."""
    id: str
    app_id: str
    content_clean: str
    country: Optional[str] = None
    rating: Optional[int] = None
    language: Optional[str] = None
    title: Optional[str] = None
    content_en: Optional[str] = None
    is_contentful: bool = True
    reviewed_at: Optional[datetime] = None
    response_date: Optional[datetime] = None
    response_content_clean: Optional[str] = None

    @property
    def has_response(self) -> bool:
        """True when the developer response carries any non-blank text."""
        return bool(self.response_content_clean and self.response_content_clean.strip())

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "CleanReview":
        """Build a review from a database row or plain mapping."""
        rating = record.get("rating")
        return cls(
            id=str(record["id"]),
            app_id=str(record["app_id"]),
            content_clean=record.get("content_clean") or "",
            country=record.get("country"),
            rating=int(rating) if rating is not None else None,
            language=record.get("language"),
            title=record.get("title"),
            content_en=record.get("content_en"),
            is_contentful=bool(record.get("is_contentful", True)),
            reviewed_at=record.get("reviewed_at"),
            response_date=record.get("response_date"),
            response_content_clean=record.get("response_content_clean"),
        )


@dataclass
class ReviewVector:
    """Persistable embedding of a single review."""
    review_id: str
    app_id: str
    model: str
    dim: int
    content_vec: np.ndarray
    response_vec: Optional[np.ndarray] = None
    language: Optional[str] = None
    rating: Optional[int] = None
    country: Optional[str] = None
    embedding_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_record(self) -> Dict[str, Any]:
        """Flatten into column order used by the store (vectors excluded from logs)."""
        return {
            "embedding_id": self.embedding_id,
            "review_id": self.review_id,
            "app_id": self.app_id,
            "language": self.language,
            "rating": self.rating,
            "country": self.country,
            "model": self.model,
            "dim": self.dim,
            "has_response_vec": self.response_vec is not None,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class CleanReviewFilters:
    """Selection criteria for reviews awaiting vectorization.

    ``vectorized_before`` pins which stored vectors exclude a review: only
    rows created before that instant count, so pages fetched later in the
    same run are not shifted by vectors the run itself just wrote.
    """
    force_recompute: bool = False
    app_id: Optional[str] = None
    countries: List[str] = field(default_factory=list)
    languages: List[str] = field(default_factory=list)
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    vectorized_before: Optional[datetime] = None

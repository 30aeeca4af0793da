"""Base review vector repository interface.

Defines the contract the vectorizer depends on, independent of the backing
implementation. All methods are asynchronous.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from .models import CleanReview, CleanReviewFilters, ReviewVector


class ReviewVectorRepository(ABC):
    """Abstract source of clean reviews and sink for their vectors.

    Implementations must make ``upsert_vector`` insert-or-skip: a second write
    for the same review id leaves the first row untouched.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create the vector table and indexes if they do not exist."""
        pass

    @abstractmethod
    async def fetch_reviews_for_vectorization(
        self,
        filters: CleanReviewFilters,
        limit: int,
        offset: int = 0
    ) -> List[CleanReview]:
        """Fetch one page of eligible reviews, most recent first.

        Raises
        - ``VectorStoreError`` when the store cannot be read
        """
        pass

    @abstractmethod
    async def upsert_vector(self, vector: ReviewVector) -> bool:
        """Insert a review vector unless one already exists.

        Returns
        - ``True`` when a row was written, ``False`` when the review already
          had a stored vector

        Raises
        - ``VectorStoreError`` on any other failure
        """
        pass

    @abstractmethod
    async def get_table_stats(self) -> Dict[str, Any]:
        """Summarize what is currently stored."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the store is reachable."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release connections held by the repository."""
        pass


class VectorStoreError(Exception):
    """Base exception for vector store operations."""
    pass


class VectorStoreConnectionError(VectorStoreError):
    """Connection error to vector store."""
    pass


class VectorStoreQueryError(VectorStoreError):
    """Query error in vector store."""
    pass


class VectorStoreValidationError(VectorStoreError):
    """Vector rejected before reaching the store (e.g. wrong dimension)."""
    pass

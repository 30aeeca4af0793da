"""Embedder interface, text preprocessing and embedding errors."""

import re
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np

MIN_TEXT_LENGTH = 3

_WHITESPACE_RE = re.compile(r"\s+")


def preprocess_text(text: Optional[str]) -> str:
    """Normalize text before it is sent to an embedding provider.

    Leading/trailing whitespace is stripped and internal whitespace runs are
    collapsed to single spaces. Results shorter than ``MIN_TEXT_LENGTH``
    characters are rejected and returned as ``""``.
    """
    if not text:
        return ""
    normalized = _WHITESPACE_RE.sub(" ", text).strip()
    if len(normalized) < MIN_TEXT_LENGTH:
        return ""
    return normalized


class EmbeddingError(Exception):
    """Base exception for embedding failures."""
    pass


class AllInputsInvalidError(EmbeddingError):
    """No input survived preprocessing, nothing was sent to the provider."""
    pass


class EmbeddingProviderError(EmbeddingError):
    """The provider call failed (HTTP, API or response decoding error)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EmbedderConfigurationError(EmbeddingError):
    """An embedder could not be constructed from the given settings."""
    pass


class Embedder(ABC):
    """Turns a batch of texts into fixed-dimension float32 vectors.

    ``embed_batch`` returns one entry per input, in input order. An entry is
    ``None`` when that particular input was rejected by preprocessing; a
    failure of the batch as a whole raises ``EmbeddingError``.
    """

    provider_name: str = "unknown"

    def __init__(self, dimension: int):
        if dimension <= 0:
            raise EmbedderConfigurationError("dimension must be positive")
        self.dimension = dimension

    @abstractmethod
    async def embed_batch(self, texts: Sequence[str]) -> List[Optional[np.ndarray]]:
        """Embed ``texts`` and return vectors aligned with the input."""
        pass

    async def aclose(self) -> None:
        """Release any resources held by the embedder."""
        return None

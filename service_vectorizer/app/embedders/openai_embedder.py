"""OpenAI-compatible embeddings over HTTP.

``OpenAIEmbeddingClient`` speaks the ``POST /embeddings`` protocol: requests
are split into small chunks, each chunk is retried with linear backoff, and
a short pause separates consecutive chunk requests to stay under provider
rate limits. ``OpenAIEmbedder`` adds preprocessing and keeps results aligned
with the caller's inputs.
"""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional, Sequence

import httpx
import numpy as np
import structlog

from ..pipelines.retry_handler import RetryConfig, RetryHandler
from .base import (
    AllInputsInvalidError,
    EmbedderConfigurationError,
    Embedder,
    EmbeddingProviderError,
    preprocess_text,
)

logger = structlog.get_logger("embedders.openai")

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_TIMEOUT_SECONDS = 30.0


class OpenAIEmbeddingClient:
    """Thin async client for an OpenAI-style embeddings endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = DEFAULT_BASE_URL,
        max_retries: int = 3,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        request_chunk_size: int = 10,
        request_pause_seconds: float = 0.1,
        retry_backoff_seconds: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        if not api_key:
            raise EmbedderConfigurationError("OpenAI API key is required")
        if request_chunk_size <= 0:
            raise EmbedderConfigurationError("request_chunk_size must be positive")

        self.api_key = api_key
        self.model = model
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds or DEFAULT_TIMEOUT_SECONDS
        self.request_chunk_size = request_chunk_size
        self.request_pause_seconds = request_pause_seconds

        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=self.timeout_seconds)
        self._sleep = sleep or asyncio.sleep
        self.retry_handler = RetryHandler(
            RetryConfig(
                max_retries=max_retries,
                backoff_seconds=retry_backoff_seconds,
                retryable_exceptions=(EmbeddingProviderError, httpx.HTTPError),
            ),
            sleep=self._sleep,
        )

    @property
    def embeddings_url(self) -> str:
        return f"{self.base_url}/embeddings"

    async def create_embeddings(self, texts: Sequence[str]) -> List[np.ndarray]:
        """Embed ``texts`` in order, chunking requests to the provider.

        Raises
        - ``EmbeddingProviderError`` once a chunk exhausts its retries
        """
        vectors: List[np.ndarray] = []

        for start in range(0, len(texts), self.request_chunk_size):
            if start > 0 and self.request_pause_seconds > 0:
                await self._sleep(self.request_pause_seconds)

            chunk = list(texts[start:start + self.request_chunk_size])
            try:
                chunk_vectors = await self.retry_handler.execute_with_retry(
                    self._request_embeddings,
                    chunk,
                    operation_name="openai_embeddings",
                )
            except httpx.HTTPError as e:
                raise EmbeddingProviderError(f"Embedding request failed: {e}") from e

            vectors.extend(chunk_vectors)

        return vectors

    async def _request_embeddings(self, texts: List[str]) -> List[np.ndarray]:
        """Issue a single embeddings request."""
        response = await self.http_client.post(
            self.embeddings_url,
            json={"input": texts, "model": self.model},
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout_seconds,
        )

        if response.status_code != 200:
            raise EmbeddingProviderError(
                self._error_message(response),
                status_code=response.status_code,
            )

        try:
            body = response.json()
            data = body["data"]
            ordered = sorted(data, key=lambda item: item.get("index", 0))
            vectors = [np.asarray(item["embedding"], dtype=np.float32) for item in ordered]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise EmbeddingProviderError(f"Failed to decode embeddings response: {e}") from e

        if len(vectors) != len(texts):
            raise EmbeddingProviderError(
                f"Expected {len(texts)} embeddings, got {len(vectors)}"
            )

        logger.debug("Received embeddings", count=len(vectors), model=self.model)
        return vectors

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """Prefer the provider's structured error, else raw status and body."""
        try:
            error = response.json().get("error") or {}
            message = error.get("message")
        except (ValueError, AttributeError):
            message = None
            error = {}

        if message:
            return f"OpenAI API error: {message} (code: {error.get('code')})"
        return f"HTTP {response.status_code}: {response.text}"

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()


class OpenAIEmbedder(Embedder):
    """Embedder backed by ``OpenAIEmbeddingClient``.

    Every input is preprocessed first. Inputs rejected by preprocessing are
    never sent to the provider and come back as ``None``; if nothing survives
    the batch fails with ``AllInputsInvalidError`` without any network call.
    """

    provider_name = "openai"

    def __init__(self, client: OpenAIEmbeddingClient, dimension: int):
        super().__init__(dimension)
        self.client = client

    @property
    def model(self) -> str:
        return self.client.model

    async def embed_batch(self, texts: Sequence[str]) -> List[Optional[np.ndarray]]:
        processed = [preprocess_text(text) for text in texts]
        valid_positions = [i for i, text in enumerate(processed) if text]

        if not valid_positions:
            raise AllInputsInvalidError(
                f"All {len(texts)} texts were empty or too short after preprocessing"
            )

        if len(valid_positions) < len(texts):
            logger.info(
                "Dropped texts rejected by preprocessing",
                rejected=len(texts) - len(valid_positions),
                total=len(texts)
            )

        vectors = await self.client.create_embeddings(
            [processed[i] for i in valid_positions]
        )

        results: List[Optional[np.ndarray]] = [None] * len(texts)
        for position, vector in zip(valid_positions, vectors):
            if vector.shape != (self.dimension,):
                raise EmbeddingProviderError(
                    f"Provider returned dimension {vector.shape[-1] if vector.ndim else 0}, "
                    f"expected {self.dimension}"
                )
            results[position] = vector
        return results

    async def aclose(self) -> None:
        await self.client.aclose()

"""Embedder selection at service startup."""

from typing import Optional

import httpx
import structlog

from libs.common.config import VectorizerConfig

from .base import Embedder, EmbedderConfigurationError
from .fallback import StubEmbedder
from .openai_embedder import OpenAIEmbedder, OpenAIEmbeddingClient

logger = structlog.get_logger("embedders.factory")


def create_embedder(
    config: VectorizerConfig,
    http_client: Optional[httpx.AsyncClient] = None
) -> Embedder:
    """Pick the embedder for this process.

    An API key selects the OpenAI embedder. Without one, or when the client
    cannot be built from the configured settings, the stub embedder is used
    so the pipeline keeps running.
    """
    dimension = config.vectorizer_max_vector_length

    if not config.openai_api_key:
        logger.info("No OpenAI API key configured, using stub embedder", dimension=dimension)
        return StubEmbedder(dimension, seed=config.stub_seed)

    try:
        client = OpenAIEmbeddingClient(
            api_key=config.openai_api_key,
            model=config.embedding_model,
            base_url=config.openai_base_url,
            max_retries=config.openai_max_retries,
            timeout_seconds=config.openai_timeout_seconds,
            request_chunk_size=config.openai_request_chunk_size,
            request_pause_seconds=config.openai_request_pause_seconds,
            retry_backoff_seconds=config.openai_retry_backoff_seconds,
            http_client=http_client,
        )
        embedder = OpenAIEmbedder(client, dimension)
    except EmbedderConfigurationError as e:
        logger.warning(
            "Failed to create OpenAI embedder, falling back to stub embedder",
            error=str(e)
        )
        return StubEmbedder(dimension, seed=config.stub_seed)

    logger.info(
        "Using OpenAI embedder",
        model=config.embedding_model,
        base_url=client.base_url,
        dimension=dimension
    )
    return embedder

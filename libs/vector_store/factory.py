"""Repository factory for the review vector store.

Centralizes creation of concrete ``ReviewVectorRepository`` backends so
callers don't depend on implementation details.
"""

from enum import Enum
from typing import Any, Dict, Mapping

import structlog

from libs.common.config import VectorizerConfig

from .base import ReviewVectorRepository
from .pgvector import PgVectorReviewRepository

logger = structlog.get_logger("vector_store.factory")


class VectorStoreType(Enum):
    """Supported repository backends."""
    PGVECTOR = "pgvector"


class ReviewRepositoryFactory:
    """Factory for creating repository instances."""

    @staticmethod
    def create(
        store_type: VectorStoreType,
        config: Mapping[str, Any],
    ) -> ReviewVectorRepository:
        """Create a repository instance.

        Parameters
        - store_type: A ``VectorStoreType`` enum value
        - config: Backend‑specific parameters (e.g., DSN for pgvector)
        """
        if store_type == VectorStoreType.PGVECTOR:
            dsn = config.get("dsn")
            if not dsn:
                raise ValueError("PgVector requires 'dsn' in config")

            return PgVectorReviewRepository(
                dsn=dsn,
                pool_size=int(config.get("pool_size", 10)),
                max_queries=int(config.get("max_queries", 50000)),
                command_timeout=int(config.get("command_timeout", 60)),
                vector_dimension=int(config.get("vector_dimension", 1536)),
            )

        raise ValueError(f"Unsupported vector store type: {store_type}")

    @staticmethod
    def create_from_config(config: Mapping[str, Any]) -> ReviewVectorRepository:
        """Create a repository from a configuration dictionary.

        Expects a ``type`` key and any implementation‑specific fields.
        """
        store_type_str = config.get("type", "pgvector")

        try:
            store_type = VectorStoreType(store_type_str)
        except ValueError:
            raise ValueError(f"Unsupported vector store type: {store_type_str}") from None

        return ReviewRepositoryFactory.create(store_type, config)


def create_review_repository(config: VectorizerConfig) -> ReviewVectorRepository:
    """Create the repository described by a typed service config."""
    repository_config: Dict[str, Any] = {
        "type": "pgvector",
        "dsn": config.pg_dsn,
        "pool_size": config.pg_pool_size,
        "command_timeout": config.pg_command_timeout_seconds,
        "vector_dimension": config.vectorizer_max_vector_length,
    }
    logger.info(
        "Creating review repository",
        backend=repository_config["type"],
        vector_dimension=repository_config["vector_dimension"]
    )
    return ReviewRepositoryFactory.create_from_config(repository_config)


def create_review_repository_from_env(env_config: Mapping[str, str]) -> ReviewVectorRepository:
    """Create a repository from a flat mapping of environment variables.

    Parameters
    - env_config: Environment variable names to values (e.g. ``os.environ``)
    """
    dsn = env_config.get("PG_DSN")
    if not dsn:
        raise ValueError("PG_DSN environment variable is required")

    return ReviewRepositoryFactory.create_from_config({
        "type": env_config.get("VECTOR_BACKEND", "pgvector"),
        "dsn": dsn,
        "pool_size": env_config.get("PG_POOL_SIZE", "10"),
        "max_queries": env_config.get("PG_MAX_QUERIES", "50000"),
        "command_timeout": env_config.get("PG_COMMAND_TIMEOUT_SECONDS", "60"),
        "vector_dimension": env_config.get("VECTORIZER_MAX_VECTOR_LENGTH", "1536"),
    })

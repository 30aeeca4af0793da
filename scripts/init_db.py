#!/usr/bin/env python3
"""Initialize the review embeddings schema with the configured vector dimension."""

import asyncio
import sys

import structlog

from libs.common.config import VectorizerConfig
from libs.common.logging import configure_logging
from libs.vector_store.base import VectorStoreError
from libs.vector_store.factory import create_review_repository

logger = structlog.get_logger("init_db")


async def init_database(config: VectorizerConfig) -> bool:
    """Create the pgvector extension, ``review_embeddings`` table and indexes."""
    repository = create_review_repository(config)
    try:
        await repository.initialize()
        stats = await repository.get_table_stats()
        logger.info(
            "Database initialization completed",
            vector_dimension=config.vectorizer_max_vector_length,
            total_embeddings=stats.get("total_embeddings", 0)
        )
        return True
    except VectorStoreError as e:
        logger.error("Database initialization failed", error=str(e))
        return False
    finally:
        await repository.close()


def main():
    """Main function for CLI."""
    config = VectorizerConfig()
    configure_logging("init_db", config.log_level, config.log_format)

    print(f"Initializing database with vector dimension: {config.vectorizer_max_vector_length}")
    if asyncio.run(init_database(config)):
        print("✓ review_embeddings schema ready")
        sys.exit(0)
    print("✗ database initialization failed")
    sys.exit(1)


if __name__ == "__main__":
    main()

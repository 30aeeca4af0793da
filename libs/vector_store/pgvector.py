"""PgVector implementation of the review vector repository.

Reviews are read from ``clean_reviews`` and their embeddings written to
``review_embeddings`` using the pgvector extension. Writes are
insert-or-skip keyed on ``review_id`` so the first stored vector wins.

Connection management
- A shared asyncpg pool is created on demand and reused across calls
- Every connection registers the pgvector codec so numpy arrays map to
  ``vector`` columns directly
- Queries are funneled through ``_execute_query`` for uniform error handling
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple

import asyncpg
import numpy as np
import structlog
from asyncpg import Connection, Pool
from pgvector.asyncpg import register_vector

from libs.common.metrics import measure_time

from .base import (
    ReviewVectorRepository,
    VectorStoreConnectionError,
    VectorStoreError,
    VectorStoreQueryError,
    VectorStoreValidationError,
)
from .models import CleanReview, CleanReviewFilters, ReviewVector

logger = structlog.get_logger("vector_store.pgvector")

EMBEDDINGS_TABLE = "review_embeddings"
REVIEWS_TABLE = "clean_reviews"


def build_fetch_query(
    filters: CleanReviewFilters,
    limit: int,
    offset: int = 0
) -> Tuple[str, List[Any]]:
    """Build the page query for reviews awaiting vectorization.

    Returns the SQL text and its positional arguments. Ordering is by review
    time, newest first, with the review id as a tiebreak so that offsets are
    stable between pages.
    """
    conditions = [
        "cr.is_contentful = true",
        "cr.content_clean IS NOT NULL",
        "cr.content_clean <> ''",
    ]
    args: List[Any] = []

    def bind(value: Any) -> str:
        args.append(value)
        return f"${len(args)}"

    if not filters.force_recompute:
        exclusion = (
            f"NOT EXISTS (SELECT 1 FROM {EMBEDDINGS_TABLE} re "
            "WHERE re.review_id = cr.id::text"
        )
        if filters.vectorized_before is not None:
            exclusion += f" AND re.created_at < {bind(filters.vectorized_before)}"
        conditions.append(exclusion + ")")

    if filters.app_id:
        conditions.append(f"cr.app_id = {bind(filters.app_id)}")
    if filters.countries:
        conditions.append(f"cr.country = ANY({bind(list(filters.countries))}::text[])")
    if filters.languages:
        conditions.append(f"cr.language = ANY({bind(list(filters.languages))}::text[])")
    if filters.date_from is not None:
        conditions.append(f"cr.reviewed_at >= {bind(filters.date_from)}")
    if filters.date_to is not None:
        conditions.append(f"cr.reviewed_at <= {bind(filters.date_to)}")

    limit_param = bind(limit)
    offset_param = bind(offset)

    query = f"""
        SELECT
            cr.id::text AS id,
            cr.app_id,
            cr.country,
            cr.rating,
            cr.title,
            cr.content_clean,
            cr.language,
            cr.content_en,
            cr.is_contentful,
            cr.reviewed_at,
            cr.response_date,
            cr.response_content_clean
        FROM {REVIEWS_TABLE} cr
        WHERE {' AND '.join(conditions)}
        ORDER BY cr.reviewed_at DESC, cr.id
        LIMIT {limit_param} OFFSET {offset_param}
    """
    return query, args


def _rows_affected(status: str) -> int:
    """Parse the row count from an asyncpg command tag such as ``INSERT 0 1``."""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


class PgVectorReviewRepository(ReviewVectorRepository):
    """PgVector implementation of the review vector repository."""

    def __init__(
        self,
        dsn: str,
        pool_size: int = 10,
        max_queries: int = 50000,
        command_timeout: int = 60,
        vector_dimension: int = 1536,
    ):
        """Configure a PgVector-backed repository.

        Parameters
        - dsn: PostgreSQL DSN including database and credentials
        - pool_size: Max size of asyncpg connection pool
        - max_queries: Queries per connection before recycling
        - command_timeout: Seconds to allow per DB command
        - vector_dimension: Declared dimensionality of stored vectors
        """
        self.dsn = dsn
        self.pool_size = pool_size
        self.max_queries = max_queries
        self.command_timeout = command_timeout
        self.vector_dimension = vector_dimension
        self._pool: Optional[Pool] = None

    async def _init_connection(self, conn: Connection) -> None:
        """Register pgvector codec for asyncpg connections."""
        await register_vector(conn)

    async def _get_pool(self) -> Pool:
        """Get or create connection pool.

        Lazily initializes an asyncpg pool so callers don't pay startup cost
        unless/until they make a call that requires the database.
        """
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=1,
                    max_size=self.pool_size,
                    max_queries=self.max_queries,
                    command_timeout=self.command_timeout,
                    init=self._init_connection,
                )
                logger.info("Created PgVector connection pool", pool_size=self.pool_size)
            except Exception as e:
                logger.error("Failed to create PgVector connection pool", error=str(e))
                raise VectorStoreConnectionError(f"Failed to create connection pool: {e}") from e

        return self._pool

    async def _execute_query(
        self,
        query: str,
        *args: Any,
        fetch: bool = False,
        fetch_one: bool = False
    ) -> Any:
        """Execute a query with error handling.

        The ``fetch``/``fetch_one`` flags control how results are retrieved.
        All failures are wrapped in ``VectorStoreQueryError`` for consistency.
        """
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                if fetch_one:
                    return await conn.fetchrow(query, *args)
                if fetch:
                    return await conn.fetch(query, *args)
                return await conn.execute(query, *args)
        except Exception as e:
            logger.error("Query execution failed", error=str(e))
            raise VectorStoreQueryError(f"Query failed: {e}") from e

    @measure_time("initialize_schema", table=EMBEDDINGS_TABLE)
    async def initialize(self) -> None:
        """Create the pgvector extension, vector table and indexes."""
        # The extension must exist before the codec can be registered on
        # pooled connections, so bootstrap it on a bare connection first.
        try:
            conn = await asyncpg.connect(self.dsn)
        except Exception as e:
            raise VectorStoreConnectionError(f"Failed to connect: {e}") from e
        try:
            await conn.execute("CREATE EXTENSION IF NOT EXISTS vector")
        except Exception as e:
            raise VectorStoreQueryError(f"Failed to enable pgvector: {e}") from e
        finally:
            await conn.close()

        statements = [
            f"""
            CREATE TABLE IF NOT EXISTS {EMBEDDINGS_TABLE} (
                embedding_id VARCHAR(255) PRIMARY KEY,
                review_id VARCHAR(255) UNIQUE NOT NULL,
                app_id VARCHAR(255) NOT NULL,
                language VARCHAR(10),
                rating SMALLINT,
                country VARCHAR(10),
                model VARCHAR(100) NOT NULL,
                dim INTEGER NOT NULL,
                content_vec vector({self.vector_dimension}),
                response_vec vector({self.vector_dimension}),
                created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
                updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
            )
            """,
            f"CREATE INDEX IF NOT EXISTS idx_review_embeddings_app_id ON {EMBEDDINGS_TABLE}(app_id)",
            f"CREATE INDEX IF NOT EXISTS idx_review_embeddings_language ON {EMBEDDINGS_TABLE}(language)",
            f"CREATE INDEX IF NOT EXISTS idx_review_embeddings_rating ON {EMBEDDINGS_TABLE}(rating)",
            f"CREATE INDEX IF NOT EXISTS idx_review_embeddings_country ON {EMBEDDINGS_TABLE}(country)",
            f"CREATE INDEX IF NOT EXISTS idx_review_embeddings_model ON {EMBEDDINGS_TABLE}(model)",
            f"CREATE INDEX IF NOT EXISTS idx_review_embeddings_created_at ON {EMBEDDINGS_TABLE}(created_at)",
            f"CREATE INDEX IF NOT EXISTS idx_review_embeddings_updated_at ON {EMBEDDINGS_TABLE}(updated_at)",
        ]
        for statement in statements:
            await self._execute_query(statement)

        logger.info(
            "Review embeddings schema ready",
            table=EMBEDDINGS_TABLE,
            vector_dimension=self.vector_dimension
        )

    async def fetch_reviews_for_vectorization(
        self,
        filters: CleanReviewFilters,
        limit: int,
        offset: int = 0
    ) -> List[CleanReview]:
        """Fetch one page of reviews that still need a vector."""
        query, args = build_fetch_query(filters, limit, offset)
        rows = await self._execute_query(query, *args, fetch=True)
        reviews = [CleanReview.from_record(row) for row in rows]
        logger.debug(
            "Fetched reviews for vectorization",
            count=len(reviews),
            limit=limit,
            offset=offset
        )
        return reviews

    async def upsert_vector(self, vector: ReviewVector) -> bool:
        """Insert a review vector, leaving any existing row untouched."""
        content_vec = self._ensure_vector_dimension(vector.content_vec)
        response_vec = None
        if vector.response_vec is not None:
            response_vec = self._ensure_vector_dimension(vector.response_vec)

        query = f"""
            INSERT INTO {EMBEDDINGS_TABLE} (
                embedding_id, review_id, app_id, language, rating, country,
                model, dim, content_vec, response_vec, created_at, updated_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $11)
            ON CONFLICT (review_id) DO NOTHING
        """

        status = await self._execute_query(
            query,
            vector.embedding_id,
            vector.review_id,
            vector.app_id,
            vector.language,
            vector.rating,
            vector.country,
            vector.model,
            vector.dim,
            content_vec,
            response_vec,
            vector.created_at,
        )

        inserted = _rows_affected(status) > 0
        if not inserted:
            logger.info("Review vector already stored", **vector.to_record())
        return inserted

    async def get_table_stats(self) -> Dict[str, Any]:
        """Aggregate counts over the stored vectors."""
        query = f"""
            SELECT
                COUNT(*) AS total_embeddings,
                COUNT(DISTINCT app_id) AS unique_apps,
                COUNT(DISTINCT language) AS unique_languages,
                COUNT(DISTINCT model) AS unique_models,
                AVG(dim) AS avg_dimension,
                MIN(created_at) AS oldest_embedding,
                MAX(created_at) AS newest_embedding
            FROM {EMBEDDINGS_TABLE}
        """
        row = await self._execute_query(query, fetch_one=True)
        if row is None:
            return {}

        stats = dict(row)
        if stats.get("avg_dimension") is not None:
            stats["avg_dimension"] = float(stats["avg_dimension"])
        return stats

    async def health_check(self) -> bool:
        """Check if the database is reachable."""
        try:
            await self._execute_query("SELECT 1", fetch_one=True)
            return True
        except VectorStoreError as e:
            logger.error("Health check failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Closed PgVector connection pool")

    def _ensure_vector_dimension(self, vector: Iterable[float]) -> np.ndarray:
        """Ensure a vector matches the declared dimensionality."""
        array = np.asarray(vector, dtype=np.float32)
        if array.ndim != 1:
            raise VectorStoreValidationError("Vector must be one-dimensional")

        if array.shape[0] != self.vector_dimension:
            raise VectorStoreValidationError(
                f"Expected vector dimension {self.vector_dimension}, "
                f"got {array.shape[0]}"
            )
        return array

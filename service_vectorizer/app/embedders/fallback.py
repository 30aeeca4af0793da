"""Offline fallback embedder.

Produces shape-compatible placeholder vectors so the pipeline can run end to
end without an embedding provider. The values carry no meaning.
"""

from typing import List, Optional, Sequence

import numpy as np
import structlog

from .base import Embedder

logger = structlog.get_logger("embedders.fallback")

STUB_MAGNITUDE = 0.01


class StubEmbedder(Embedder):
    """Returns small pseudo-random vectors of a fixed dimension.

    Owns its own ``numpy.random.Generator``; pass ``seed`` for reproducible
    output. Input content is ignored, so every input gets a vector.
    """

    provider_name = "stub"

    def __init__(self, dimension: int, seed: Optional[int] = None):
        super().__init__(dimension)
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    async def embed_batch(self, texts: Sequence[str]) -> List[Optional[np.ndarray]]:
        vectors = [
            self._rng.random(self.dimension, dtype=np.float32) * np.float32(STUB_MAGNITUDE)
            for _ in texts
        ]
        logger.debug("Generated stub embeddings", count=len(vectors), dimension=self.dimension)
        return vectors

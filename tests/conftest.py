"""Shared fixtures for vectorizer tests."""

import pytest
from prometheus_client import CollectorRegistry

from libs.common.config import VectorizerConfig
from libs.common.metrics import MetricsCollector

from tests.fakes import InMemoryReviewRepository, RecordingEmbedder, TickingClock


@pytest.fixture
def config(monkeypatch) -> VectorizerConfig:
    """Small pages and sub-batches with an 8-dimensional stub embedder."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    return VectorizerConfig(
        processing_batch_size=4,
        vectorizer_batch_size=2,
        vectorizer_max_vector_length=8,
        vectorizer_model="test-embedding",
        stub_seed=7,
    )


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector("test-vectorizer", registry=CollectorRegistry())


@pytest.fixture
def repository() -> InMemoryReviewRepository:
    return InMemoryReviewRepository(vector_dimension=8)


@pytest.fixture
def embedder() -> RecordingEmbedder:
    return RecordingEmbedder(dimension=8)


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()

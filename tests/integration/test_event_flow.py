"""Integration tests for vectorize events over a live Redis."""

import asyncio

import pytest
import redis

from libs.common.config import BaseConfig
from libs.common.events import (
    EventType,
    create_event_publisher,
    create_event_subscriber,
)


@pytest.mark.integration
class TestEventFlow:
    """Test event flow between the trigger script and the worker."""

    @pytest.fixture(scope="class")
    def config(self):
        """Get configuration."""
        return BaseConfig(events_channel_prefix="review_events_test")

    @pytest.fixture(scope="class")
    def redis_client(self, config):
        """Create Redis client."""
        try:
            client = redis.from_url(config.redis_url)
            client.ping()
            return client
        except redis.ConnectionError:
            pytest.skip("Redis not available")

    def test_redis_connection(self, redis_client):
        assert redis_client.ping()

    @pytest.mark.asyncio
    async def test_vectorize_request_reaches_subscriber(self, config, redis_client):
        publisher = create_event_publisher(config.redis_url, config.events_channel_prefix)
        subscriber = create_event_subscriber(config.redis_url, config.events_channel_prefix)
        received = asyncio.Queue()
        subscriber.subscribe(EventType.REVIEW_VECTORIZE_REQUEST, received.put_nowait)

        stop_event = asyncio.Event()
        listener = asyncio.create_task(subscriber.start_listening(stop_event))
        try:
            # Give the listener time to subscribe before publishing
            await asyncio.sleep(0.5)
            saga_id = await asyncio.to_thread(
                publisher.publish_vectorize_request, {"force_recompute": True, "limit": 5}
            )

            message = await asyncio.wait_for(received.get(), timeout=5.0)
        finally:
            stop_event.set()
            await asyncio.wait_for(listener, timeout=5.0)
            await subscriber.close()
            publisher.close()

        assert message["saga_id"] == saga_id
        assert message["event_type"] == EventType.REVIEW_VECTORIZE_REQUEST.value
        assert message["payload"] == {"force_recompute": True, "limit": 5}

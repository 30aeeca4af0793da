"""Event system for triggering and reporting vectorization runs.

Runs are requested and reported over Redis pub/sub. Producers publish JSON
payloads on namespaced channels derived from ``EventType``; consumers
subscribe and register Python callbacks.

Key concepts
- ``EventType`` identifiers are versioned (``.v1`` suffix)
- ``EventPublisher`` composes channel names as ``{prefix}:{event_type}``
- ``EventSubscriber`` manages a map of event handlers and message dispatch
"""

import asyncio
import json
import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import redis
import redis.asyncio as redis_async
import structlog

logger = structlog.get_logger("events")


class EventType(Enum):
    """Event types exchanged by the vectorizer."""
    REVIEW_VECTORIZE_REQUEST = "reviews.vectorize.request.v1"
    REVIEW_VECTORIZE_COMPLETED = "reviews.vectorize.completed.v1"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class BaseEvent:
    """Base event class.

    Child events set their ``event_type`` in ``__post_init__`` and extend the
    payload with whatever the domain needs.
    """
    timestamp: int
    event_type: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary."""
        return asdict(self)

    def to_json(self) -> str:
        """Convert event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


@dataclass
class VectorizeRequestEvent(BaseEvent):
    """Request to run the vectorization pipeline.

    ``payload`` is deliberately loose: consumers decode it tolerantly and
    fall back to defaults for anything they do not recognize.
    """
    saga_id: str = ""
    payload: Any = None

    def __post_init__(self):
        self.event_type = EventType.REVIEW_VECTORIZE_REQUEST.value
        if not self.timestamp:
            self.timestamp = _now_ms()
        if not self.saga_id:
            self.saga_id = str(uuid.uuid4())


@dataclass
class VectorizeCompletedEvent(BaseEvent):
    """Emitted after a run finishes without a run-level error."""
    saga_id: str = ""
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    review_ids: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.event_type = EventType.REVIEW_VECTORIZE_COMPLETED.value
        if not self.timestamp:
            self.timestamp = _now_ms()


class EventPublisher:
    """Publishes events to Redis.

    Notes
    - Failures are retried with exponential backoff, then logged and re‑raised.
    - Messages are serialized as JSON to keep consumers language‑agnostic.
    """

    def __init__(
        self,
        redis_url: str,
        channel_prefix: str = "review_events",
        redis_client: Optional[redis.Redis] = None,
        max_retries: int = 3,
        base_delay: float = 0.5,
    ):
        self.redis_client = redis_client or redis.from_url(redis_url)
        self.channel_prefix = channel_prefix
        self.max_retries = max_retries
        self.base_delay = base_delay

    def channel_for(self, event_type: str) -> str:
        return f"{self.channel_prefix}:{event_type}"

    def publish(self, event: BaseEvent) -> None:
        """Publish an event with retry logic.

        The channel is derived from the event's type so subscribers can filter
        without payload inspection.
        """
        channel = self.channel_for(event.event_type)
        message = event.to_json()

        for attempt in range(self.max_retries):
            try:
                self.redis_client.publish(channel, message)
                logger.info(
                    "Event published",
                    event_type=event.event_type,
                    channel=channel
                )
                return
            except redis.RedisError as e:
                if attempt == self.max_retries - 1:
                    logger.error(
                        "Failed to publish event after all retries",
                        event_type=event.event_type,
                        error=str(e)
                    )
                    raise

                delay = self.base_delay * (2 ** attempt)
                logger.warning(
                    "Event publish failed, retrying",
                    event_type=event.event_type,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay=delay,
                    error=str(e)
                )
                time.sleep(delay)

    def publish_vectorize_request(self, payload: Any, saga_id: str = "") -> str:
        """Publish a vectorize request and return its saga id."""
        event = VectorizeRequestEvent(
            timestamp=_now_ms(),
            event_type="",
            saga_id=saga_id,
            payload=payload,
        )
        self.publish(event)
        return event.saga_id

    def publish_vectorize_completed(
        self,
        saga_id: str,
        processed: int,
        skipped: int,
        failed: int,
        review_ids: List[str],
    ) -> None:
        """Publish a run completion notification."""
        event = VectorizeCompletedEvent(
            timestamp=_now_ms(),
            event_type="",
            saga_id=saga_id,
            processed=processed,
            skipped=skipped,
            failed=failed,
            review_ids=list(review_ids),
        )
        self.publish(event)

    def close(self) -> None:
        """Close the underlying Redis connection pool."""
        try:
            self.redis_client.close()
        except redis.RedisError as e:
            logger.warning("Error closing redis client", error=str(e))


class EventSubscriber:
    """Subscribes to events from Redis.

    Maintains a mapping of ``event_type -> List[callables]``. When a message
    arrives, ``_handle_message`` decodes JSON and invokes each registered
    handler with the decoded payload. Coroutine handlers are awaited.
    """

    def __init__(
        self,
        redis_url: str,
        channel_prefix: str = "review_events",
        redis_client: Optional[redis_async.Redis] = None,
    ):
        self.redis_client = redis_client or redis_async.from_url(redis_url, decode_responses=False)
        self.channel_prefix = channel_prefix
        self.handlers: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: EventType, handler: Callable) -> None:
        """Subscribe to an event type."""
        self.handlers.setdefault(event_type.value, []).append(handler)
        logger.info(
            "Subscribed to event",
            event_type=event_type.value,
            handler=getattr(handler, "__name__", repr(handler))
        )

    async def start_listening(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Listen for events until cancelled or ``stop_event`` is set."""
        pubsub = self.redis_client.pubsub()

        try:
            channels = [
                f"{self.channel_prefix}:{event_type}"
                for event_type in self.handlers
            ]
            await pubsub.subscribe(*channels)

            logger.info("Started listening for events", channels=channels)

            while stop_event is None or not stop_event.is_set():
                try:
                    message = await pubsub.get_message(
                        ignore_subscribe_messages=True,
                        timeout=1.0
                    )
                    if message and message.get("type") == "message":
                        await self._handle_message(message)
                except asyncio.CancelledError:
                    raise
                except redis.RedisError as e:
                    logger.error("Error in event listener loop", error=str(e))
                    await asyncio.sleep(1.0)

        except asyncio.CancelledError:
            logger.info("Event listener cancelled")
            raise
        finally:
            try:
                await pubsub.aclose()
                logger.info("Event listener stopped")
            except redis.RedisError as e:
                logger.warning("Error closing pubsub", error=str(e))

    async def _handle_message(self, message: Dict[str, Any]) -> None:
        """Handle incoming event message.

        Undecodable messages are logged and dropped. Dispatch errors from
        individual handlers are logged and do not prevent other handlers from
        executing.
        """
        channel_raw = message.get("channel")
        data_raw = message.get("data")

        if isinstance(channel_raw, (bytes, bytearray)):
            channel = channel_raw.decode("utf-8")
        else:
            channel = str(channel_raw)

        try:
            if isinstance(data_raw, (bytes, bytearray)):
                data_raw = data_raw.decode("utf-8")
            payload = json.loads(data_raw)
        except (UnicodeDecodeError, TypeError, ValueError) as e:
            logger.error("Error decoding event message", channel=channel, error=str(e))
            return

        event_type = channel.split(":")[-1]
        handlers = self.handlers.get(event_type)
        if not handlers:
            logger.warning("No handlers for event type", event_type=event_type)
            return

        for handler in handlers:
            try:
                result = handler(payload)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(
                    "Error handling event",
                    event_type=event_type,
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(e)
                )

    async def close(self) -> None:
        """Close the Redis client used by the subscriber."""
        try:
            await self.redis_client.aclose()
        except redis.RedisError as e:
            logger.warning("Error closing redis client", error=str(e))


def create_event_publisher(redis_url: str, channel_prefix: str = "review_events") -> EventPublisher:
    """Create an event publisher."""
    return EventPublisher(redis_url, channel_prefix=channel_prefix)


def create_event_subscriber(redis_url: str, channel_prefix: str = "review_events") -> EventSubscriber:
    """Create an event subscriber."""
    return EventSubscriber(redis_url, channel_prefix=channel_prefix)

"""
Message-bus publisher backed by Redis Streams.

A topic is a stream name. Each event becomes one stream entry whose
``data`` field holds the JSON event; ``trace_id`` and the W3C
``traceparent`` ride alongside so consumers can correlate without
decoding the payload. Streams are trimmed with approximate MAXLEN.
"""

import json
import logging
from types import TracebackType
from typing import Any, Protocol

import redis.asyncio as redis

from subscription_worker.observability.tracing import inject_trace_context

logger = logging.getLogger(__name__)


class EventPublisher(Protocol):
    """Anything that can publish an event to a topic and return its message id."""

    async def publish(self, topic: str, event: dict[str, Any]) -> str: ...


class StreamPublisher:
    """
    Publishes JSON events to Redis Streams.

    Usage:
        async with StreamPublisher(redis_url) as publisher:
            message_id = await publisher.publish("processor-results", event)
    """

    def __init__(
        self,
        redis_url: str | None = None,
        max_stream_length: int = 100_000,
        stream_lengths: dict[str, int] | None = None,
        client: redis.Redis | None = None,
    ):
        """
        Initialize the publisher.

        Args:
            redis_url: Redis connection URL (ignored when client is given)
            max_stream_length: Default approximate MAXLEN per topic
            stream_lengths: Per-topic MAXLEN overrides
            client: Existing Redis client; the publisher won't close it
        """
        if redis_url is None and client is None:
            raise ValueError("StreamPublisher needs a redis_url or a client")
        self._redis_url = redis_url
        self._max_stream_length = max_stream_length
        self._stream_lengths = dict(stream_lengths or {})
        self._redis = client
        self._owns_client = client is None

    async def connect(self) -> None:
        """Open the Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            self._owns_client = True
            logger.info("Publisher connected to Redis")

    async def close(self) -> None:
        """Close the Redis connection if this publisher opened it."""
        if self._redis is not None and self._owns_client:
            await self._redis.close()
            self._redis = None
            logger.info("Publisher Redis connection closed")

    async def __aenter__(self) -> "StreamPublisher":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def redis(self) -> redis.Redis:
        """Get Redis client, raising if not connected."""
        if self._redis is None:
            raise RuntimeError("Not connected to Redis. Call connect() first.")
        return self._redis

    async def publish(self, topic: str, event: dict[str, Any]) -> str:
        """
        Append an event to a topic stream.

        Args:
            topic: Stream name
            event: JSON-serializable event

        Returns:
            Redis stream message id
        """
        fields: dict[str, str] = {
            "data": json.dumps(event, default=str, ensure_ascii=False),
            **inject_trace_context(),
        }
        if event.get("trace_id"):
            fields["trace_id"] = str(event["trace_id"])

        message_id = await self.redis.xadd(
            name=topic,
            fields=fields,
            maxlen=self._stream_lengths.get(topic, self._max_stream_length),
            approximate=True,
        )
        logger.debug(f"Published event to {topic}: {message_id}")
        return str(message_id)

    async def health_check(self) -> bool:
        """Check if Redis connection is healthy."""
        try:
            await self.redis.ping()
            return True
        except Exception:
            return False

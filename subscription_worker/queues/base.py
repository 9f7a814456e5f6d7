"""
Base class for Redis Streams consumers.

Handles the consumer-group lifecycle shared by stream consumers:
- Connection lifecycle and consumer group creation
- Reading new entries with XREADGROUP
- Reclaiming entries orphaned by crashed consumers with XAUTOCLAIM
- Dead-lettering entries that cannot be parsed or keep failing
- Acknowledgment

Delivery is at-least-once: an entry is only acknowledged after the
handler finishes, and an unacknowledged entry is redelivered to some
consumer once it has been idle for ``idle_timeout_ms``.
"""

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from types import TracebackType
from typing import Generic, TypeVar

import redis.asyncio as redis

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class StreamConfig:
    """
    Configuration for a consumed Redis Stream.

    Attributes:
        stream_name: Stream to consume
        consumer_group: Consumer group shared by all workers
        dlq_stream_name: Stream receiving dead-lettered entries
        max_stream_length: Approximate MAXLEN when publishing
        idle_timeout_ms: Idle time before a pending entry may be reclaimed
        max_delivery_attempts: Deliveries before an entry is dead-lettered
    """

    stream_name: str
    consumer_group: str
    dlq_stream_name: str
    max_stream_length: int = 50_000
    idle_timeout_ms: int = 60_000
    max_delivery_attempts: int = 3


class BaseRedisQueue(ABC, Generic[T]):
    """
    Abstract Redis Streams consumer yielding parsed jobs of type T.

    Subclasses implement:
        - _parse_job(): Convert entry fields (and delivery count) to T
        - _get_consumer_prefix(): Prefix for the generated consumer name

    Usage:
        async with MyQueue(redis_url, stream_config) as queue:
            async for message_id, job in queue.consume():
                await handle(job)
                await queue.ack(message_id)
    """

    def __init__(self, redis_url: str, stream_config: StreamConfig):
        self._redis_url = redis_url
        self.stream_config = stream_config
        self._redis: redis.Redis | None = None
        self._consumer_name: str | None = None

    @abstractmethod
    def _parse_job(self, message_id: str, fields: dict[str, str], deliveries: int) -> T:
        """Parse a stream entry; raise to dead-letter it."""
        ...

    @abstractmethod
    def _get_consumer_prefix(self) -> str:
        """Prefix for consumer names, e.g. ``trigger_worker``."""
        ...

    async def connect(self) -> None:
        """Connect and make sure the stream and consumer group exist."""
        self._redis = redis.from_url(
            self._redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        self._consumer_name = f"{self._get_consumer_prefix()}_{uuid.uuid4().hex[:8]}"

        try:
            await self._redis.xgroup_create(
                name=self.stream_config.stream_name,
                groupname=self.stream_config.consumer_group,
                id="0",
                mkstream=True,
            )
            logger.info(
                f"Created consumer group '{self.stream_config.consumer_group}' "
                f"for stream '{self.stream_config.stream_name}'"
            )
        except redis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

        logger.info(
            f"Connected to Redis, consumer={self._consumer_name}, "
            f"stream={self.stream_config.stream_name}"
        )

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.close()
            self._redis = None
            logger.info(f"Redis connection closed for stream {self.stream_config.stream_name}")

    async def __aenter__(self) -> "BaseRedisQueue[T]":
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

    async def consume(
        self,
        count: int = 10,
        block_ms: int = 5000,
    ) -> AsyncIterator[tuple[str, T]]:
        """
        Yield ``(message_id, job)`` pairs until cancelled.

        Reclaims idle pending entries before reading new ones so entries
        orphaned by a crashed consumer are not starved.
        """
        if self._consumer_name is None:
            raise RuntimeError("Not connected. Call connect() first.")

        while True:
            try:
                async for item in self._reclaim_pending(count):
                    yield item

                response = await self.redis.xreadgroup(
                    groupname=self.stream_config.consumer_group,
                    consumername=self._consumer_name,
                    streams={self.stream_config.stream_name: ">"},
                    count=count,
                    block=block_ms,
                )
                for _stream, entries in response or []:
                    for message_id, fields in entries:
                        job = await self._parse_or_dead_letter(message_id, fields, 1)
                        if job is not None:
                            yield message_id, job

            except asyncio.CancelledError:
                logger.info("Consumer cancelled, stopping gracefully")
                break
            except redis.ConnectionError:
                # Let the owning worker's supervisor reconnect
                raise
            except Exception as e:
                logger.error(f"Error consuming messages: {e}")
                await asyncio.sleep(1)

    async def _parse_or_dead_letter(
        self, message_id: str, fields: dict[str, str], deliveries: int
    ) -> T | None:
        try:
            return self._parse_job(message_id, fields, deliveries)
        except Exception as e:
            logger.error(f"Failed to parse message {message_id}: {e}")
            await self._move_to_dlq(message_id, fields, f"parse_error: {e}")
            await self.ack(message_id)
            return None

    async def _reclaim_pending(self, count: int) -> AsyncIterator[tuple[str, T]]:
        """Claim entries idle past the timeout; dead-letter those delivered too often."""
        try:
            result = await self.redis.xautoclaim(
                name=self.stream_config.stream_name,
                groupname=self.stream_config.consumer_group,
                consumername=self._consumer_name,
                min_idle_time=self.stream_config.idle_timeout_ms,
                start_id="0-0",
                count=count,
            )
        except redis.ResponseError as e:
            logger.error(f"Error reclaiming pending messages: {e}")
            return

        claimed = result[1] if result and len(result) > 1 else []
        if claimed:
            logger.info(
                f"Reclaimed {len(claimed)} pending messages "
                f"from {self.stream_config.stream_name}"
            )

        for message_id, fields in claimed:
            deliveries = await self._delivery_count(message_id)
            if deliveries > self.stream_config.max_delivery_attempts:
                await self._move_to_dlq(message_id, fields, "max_deliveries_exceeded")
                await self.ack(message_id)
                continue

            job = await self._parse_or_dead_letter(message_id, fields, deliveries)
            if job is not None:
                yield message_id, job

    async def _delivery_count(self, message_id: str) -> int:
        try:
            pending = await self.redis.xpending_range(
                name=self.stream_config.stream_name,
                groupname=self.stream_config.consumer_group,
                min=message_id,
                max=message_id,
                count=1,
            )
        except redis.ResponseError as e:
            logger.error(f"Error reading delivery count for {message_id}: {e}")
            return 1
        return pending[0]["times_delivered"] if pending else 1

    async def ack(self, message_id: str) -> None:
        """Acknowledge a processed entry."""
        await self.redis.xack(
            self.stream_config.stream_name,
            self.stream_config.consumer_group,
            message_id,
        )
        logger.debug(f"Acknowledged message {message_id}")

    async def _move_to_dlq(
        self,
        original_id: str,
        fields: dict[str, str],
        error: str | None,
    ) -> None:
        """Copy an entry to the dead-letter stream with failure details."""
        await self.redis.xadd(
            self.stream_config.dlq_stream_name,
            {
                **fields,
                "original_id": original_id,
                "error": error or "unknown",
                "failed_at": str(time.time()),
            },
            maxlen=10_000,
            approximate=True,
        )
        logger.warning(f"Moved message {original_id} to DLQ: {error}")

    async def health_check(self) -> bool:
        """Check if Redis connection is healthy."""
        try:
            await self.redis.ping()
            return True
        except Exception:
            return False

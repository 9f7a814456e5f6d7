"""
Redis Streams queue of on-demand processing triggers.

Anything that wants a subscription processed now (an HTTP layer, an
admin CLI, another service) publishes its id here; polling workers
consume the stream alongside their due scan. A trigger only asks for a
run: the ledger claim still decides whether one starts.
"""

import logging
from dataclasses import dataclass, field

from subscription_worker.observability.tracing import inject_trace_context
from subscription_worker.pipeline.config import PipelineConfig
from subscription_worker.queues import BaseRedisQueue, StreamConfig

logger = logging.getLogger(__name__)


@dataclass
class ProcessTrigger:
    """Request to process one subscription, read from the trigger stream."""

    subscription_id: str
    message_id: str
    deliveries: int = 1
    fields: dict[str, str] = field(default_factory=dict)


class TriggerQueue(BaseRedisQueue[ProcessTrigger]):
    """
    Trigger stream producer and consumer.

    Usage:
        async with TriggerQueue(redis_url) as queue:
            await queue.publish(subscription_id)

            async for message_id, trigger in queue.consume():
                await pipeline.process_one(trigger.subscription_id)
                await queue.ack(message_id)
    """

    def __init__(self, redis_url: str, config: PipelineConfig | None = None):
        """
        Initialize queue.

        Args:
            redis_url: Redis connection URL
            config: Pipeline configuration holding the trigger stream settings
        """
        self._config = config or PipelineConfig()
        super().__init__(
            redis_url=redis_url,
            stream_config=StreamConfig(
                stream_name=self._config.trigger_stream_name,
                consumer_group=self._config.trigger_consumer_group,
                dlq_stream_name=self._config.trigger_dlq_stream_name,
                max_stream_length=self._config.trigger_max_stream_length,
                idle_timeout_ms=self._config.trigger_idle_timeout_ms,
                max_delivery_attempts=self._config.trigger_max_delivery_attempts,
            ),
        )

    def _get_consumer_prefix(self) -> str:
        return "subscription_worker"

    def _parse_job(
        self, message_id: str, fields: dict[str, str], deliveries: int
    ) -> ProcessTrigger:
        subscription_id = fields.get("subscription_id", "").strip()
        if not subscription_id:
            raise ValueError("trigger has no subscription_id")
        return ProcessTrigger(
            subscription_id=subscription_id,
            message_id=message_id,
            deliveries=deliveries,
            fields=dict(fields),
        )

    async def publish(self, subscription_id: str) -> str:
        """
        Ask workers to process a subscription now.

        Args:
            subscription_id: Subscription to process

        Returns:
            Stream message ID
        """
        message_id = await self.redis.xadd(
            name=self.stream_config.stream_name,
            fields={"subscription_id": subscription_id, **inject_trace_context()},
            maxlen=self.stream_config.max_stream_length,
            approximate=True,
        )
        logger.debug(f"Published trigger for subscription_id={subscription_id}")
        return str(message_id)

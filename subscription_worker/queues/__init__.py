"""
Redis Streams consumer base and retry backoff.

Classes:
    BaseRedisQueue: Abstract consumer-group reader with pending reclaim and DLQ
    StreamConfig: Stream, group and delivery limits for a consumer
    ExponentialBackoff: Delay schedule for supervised reconnect loops
"""

from subscription_worker.queues.backoff import ExponentialBackoff
from subscription_worker.queues.base import BaseRedisQueue, StreamConfig

__all__ = ["BaseRedisQueue", "ExponentialBackoff", "StreamConfig"]

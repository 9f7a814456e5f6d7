"""Notification persistence and message-bus fan-out.

Components:
- Notification: Dataclass mapping to the notifications table
- NotificationEvent: Message-bus projection of a stored notification
- FanOutResult: Per-job insert/publish/dead-letter counts
- NotificationRepository: Inserts notifications
- StreamPublisher / EventPublisher: Redis Streams publisher and its protocol
- NotificationFanOut: Sequential insert-then-publish with DLQ rerouting
- NotificationConfig: Pydantic settings (NOTIFICATIONS_ prefix)
"""

from subscription_worker.notifications.config import NotificationConfig
from subscription_worker.notifications.fanout import (
    NotificationFanOut,
    build_notification,
)
from subscription_worker.notifications.publisher import EventPublisher, StreamPublisher
from subscription_worker.notifications.repository import NotificationRepository
from subscription_worker.notifications.schemas import (
    FanOutResult,
    Notification,
    NotificationEvent,
)

__all__ = [
    "EventPublisher",
    "FanOutResult",
    "Notification",
    "NotificationConfig",
    "NotificationEvent",
    "NotificationFanOut",
    "NotificationRepository",
    "StreamPublisher",
    "build_notification",
]

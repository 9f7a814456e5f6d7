"""Schema definitions for notifications.

``Notification`` maps 1:1 to the ``notifications`` table: one row per
analyzer match, immutable once written. ``NotificationEvent`` is the
projection published on the message bus after the row is stored.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class Notification:
    """A persisted notification.

    Attributes:
        user_id: Recipient.
        subscription_id: Subscription whose match produced it.
        title: Display title.
        content: Body text (the match summary).
        source_url: Link to the matched document, if any.
        entity_type: ``{subscription type}:{document type}``.
        metadata: Prompt, relevance, document details and trace_id.
        id: UUID4 identifier.
        created_at: When the row was created.
    """

    user_id: str
    subscription_id: str
    title: str
    content: str
    source_url: str | None = None
    entity_type: str = "subscription:generic"
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def __post_init__(self) -> None:
        if not self.title:
            raise ValueError("Notification title must not be empty")

    @classmethod
    def from_row(cls, row: Any) -> "Notification":
        """Create a Notification from an asyncpg Record or dict."""
        metadata = row.get("metadata") or {}
        if isinstance(metadata, str):
            metadata = json.loads(metadata)

        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            subscription_id=str(row["subscription_id"]),
            title=row["title"],
            content=row["content"],
            source_url=row.get("source_url"),
            entity_type=row.get("entity_type") or "subscription:generic",
            metadata=metadata,
            created_at=row.get("created_at") or datetime.now(timezone.utc),
        )


@dataclass
class NotificationEvent:
    """Message-bus projection of a stored notification."""

    notification_id: str
    user_id: str
    subscription_id: str
    subscription_type: str
    title: str
    content: str
    source_url: str | None
    entity_type: str
    metadata: dict[str, Any]
    trace_id: str
    created_at: str

    @classmethod
    def from_notification(
        cls, notification: Notification, subscription_type: str, trace_id: str
    ) -> "NotificationEvent":
        """Project a stored notification for publishing."""
        return cls(
            notification_id=notification.id,
            user_id=notification.user_id,
            subscription_id=notification.subscription_id,
            subscription_type=subscription_type,
            title=notification.title,
            content=notification.content,
            source_url=notification.source_url,
            entity_type=notification.entity_type,
            metadata=dict(notification.metadata),
            trace_id=trace_id,
            created_at=notification.created_at.isoformat(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "notification_id": self.notification_id,
            "user_id": self.user_id,
            "subscription_id": self.subscription_id,
            "subscription_type": self.subscription_type,
            "title": self.title,
            "content": self.content,
            "source_url": self.source_url,
            "entity_type": self.entity_type,
            "metadata": self.metadata,
            "trace_id": self.trace_id,
            "created_at": self.created_at,
        }


@dataclass
class FanOutResult:
    """Aggregate outcome of fanning out one job's matches.

    Attributes:
        created: Notifications persisted.
        errors: Matches whose notification insert failed.
        published: Events accepted by the message bus.
        publish_errors: Events the message bus rejected (rows still stored).
        dead_lettered: Rejected events rerouted to the dead-letter topic.
        notification_ids: Ids of persisted notifications, in match order.
    """

    created: int = 0
    errors: int = 0
    published: int = 0
    publish_errors: int = 0
    dead_lettered: int = 0
    notification_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "created": self.created,
            "errors": self.errors,
            "published": self.published,
            "publish_errors": self.publish_errors,
            "dead_lettered": self.dead_lettered,
        }

"""
Notification fan-out - one stored notification and one event per match.

Matches are handled sequentially in analyzer order. For each match the
notification row is written first; a failed insert is counted and the
next match proceeds. Only stored notifications are published. A failed
publish leaves the row in place, is counted separately, and the event
is rerouted to the dead-letter topic when one is configured; a failed
dead-letter publish is logged and nothing more.
"""

from datetime import datetime, timezone
from typing import Any

import structlog

from subscription_worker.analyzer.schemas import Match
from subscription_worker.notifications.config import NotificationConfig
from subscription_worker.notifications.publisher import EventPublisher
from subscription_worker.notifications.repository import NotificationRepository
from subscription_worker.notifications.schemas import (
    FanOutResult,
    Notification,
    NotificationEvent,
)
from subscription_worker.observability.metrics import get_metrics
from subscription_worker.subscriptions.schemas import Subscription

logger = structlog.get_logger(__name__)


def build_notification(subscription: Subscription, match: Match, trace_id: str) -> Notification:
    """Map a match to the notification row stored for the subscription's owner."""
    return Notification(
        user_id=subscription.user_id,
        subscription_id=subscription.id,
        title=match.notification_title,
        content=match.summary,
        source_url=match.source_url,
        entity_type=f"{subscription.type_slug}:{match.document_type.lower()}",
        metadata={
            "prompt": match.prompt,
            "relevance": match.relevance_score,
            "document_type": match.document_type,
            "original_title": match.title,
            "publication_date": match.publication_date,
            "issuing_body": match.issuing_body,
            "section": match.section,
            "links": dict(match.links),
            "trace_id": trace_id,
        },
    )


class NotificationFanOut:
    """
    Persists and publishes notifications for a job's matches.

    Usage:
        fanout = NotificationFanOut(repository, publisher)
        result = await fanout.fan_out(subscription, matches, trace_id)
        result.created, result.errors
    """

    def __init__(
        self,
        repository: NotificationRepository,
        publisher: EventPublisher | None = None,
        config: NotificationConfig | None = None,
    ) -> None:
        """
        Initialize the fan-out.

        Args:
            repository: Notification persistence
            publisher: Message-bus publisher; None stores without publishing
            config: Topics and publishing switches
        """
        if repository is None:
            raise ValueError("NotificationFanOut requires a notification repository")
        self._repository = repository
        self._publisher = publisher
        self._config = config or NotificationConfig()

    @property
    def publishing(self) -> bool:
        """Whether events are published after insert."""
        return self._publisher is not None and self._config.publish_enabled

    async def fan_out(
        self,
        subscription: Subscription,
        matches: list[Match],
        trace_id: str,
    ) -> FanOutResult:
        """
        Store and publish one notification per match.

        Args:
            subscription: Subscription the matches belong to
            matches: Normalized matches, in analyzer order
            trace_id: Pipeline run correlation id

        Returns:
            Counts for inserts, publishes and dead-lettered events
        """
        result = FanOutResult()
        dlq_errors = 0

        for index, match in enumerate(matches):
            try:
                notification = await self._repository.create(
                    build_notification(subscription, match, trace_id)
                )
            except Exception as e:
                result.errors += 1
                logger.error(
                    "Failed to create notification",
                    subscription_id=subscription.id,
                    match_index=index,
                    title=match.notification_title,
                    error=str(e),
                )
                continue

            result.created += 1
            result.notification_ids.append(notification.id)

            if not self.publishing:
                continue

            event = NotificationEvent.from_notification(
                notification, subscription.type_name, trace_id
            ).to_dict()

            try:
                await self._publisher.publish(self._config.topic, event)
                result.published += 1
            except Exception as e:
                result.publish_errors += 1
                logger.error(
                    "Failed to publish notification event",
                    notification_id=notification.id,
                    topic=self._config.topic,
                    error=str(e),
                )
                if await self._dead_letter(event, e):
                    result.dead_lettered += 1
                elif self._config.dlq_enabled:
                    dlq_errors += 1

        get_metrics().record_fanout(
            created=result.created,
            errors=result.errors,
            publish_errors=result.publish_errors,
            dead_lettered=result.dead_lettered,
            dlq_errors=dlq_errors,
        )
        logger.info(
            "Notification fan-out finished",
            subscription_id=subscription.id,
            matches=len(matches),
            **result.to_dict(),
        )
        return result

    async def _dead_letter(self, event: dict[str, Any], error: Exception) -> bool:
        """Republish a failed event to the DLQ topic. Returns True on success."""
        if not self._config.dlq_enabled:
            return False

        dlq_event = {
            **event,
            "original_topic": self._config.topic,
            "error": str(error) or type(error).__name__,
            "failed_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await self._publisher.publish(self._config.dlq_topic, dlq_event)
        except Exception as e:
            logger.error(
                "Failed to publish event to dead-letter topic",
                notification_id=event.get("notification_id"),
                topic=self._config.dlq_topic,
                error=str(e),
            )
            return False

        logger.warning(
            "Notification event dead-lettered",
            notification_id=event.get("notification_id"),
            topic=self._config.dlq_topic,
        )
        return True

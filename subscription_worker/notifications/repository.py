"""Notification repository.

Each insert acquires and releases its own pooled connection, so a
job with many matches never pins a connection for the whole fan-out
and one failed insert cannot poison the others.
"""

import logging

from subscription_worker.notifications.schemas import Notification
from subscription_worker.storage.database import Database

logger = logging.getLogger(__name__)


class NotificationRepository:
    """Repository for notification persistence."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create the notifications table if it doesn't exist."""
        sql = """
            CREATE TABLE IF NOT EXISTS notifications (
                id UUID PRIMARY KEY,
                user_id UUID NOT NULL,
                subscription_id UUID NOT NULL,
                title TEXT NOT NULL,
                content TEXT NOT NULL,
                source_url TEXT,
                entity_type TEXT NOT NULL,
                metadata JSONB NOT NULL DEFAULT '{}',
                read BOOLEAN NOT NULL DEFAULT FALSE,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );

            CREATE INDEX IF NOT EXISTS idx_notifications_user_created
                ON notifications(user_id, created_at DESC);

            CREATE INDEX IF NOT EXISTS idx_notifications_subscription
                ON notifications(subscription_id);
        """
        await self._db.execute(sql)
        logger.info("Notification tables ready")

    async def create(self, notification: Notification) -> Notification:
        """Insert a notification.

        Args:
            notification: Notification to persist.

        Returns:
            The stored notification.
        """
        sql = """
            INSERT INTO notifications (
                id, user_id, subscription_id, title, content,
                source_url, entity_type, metadata, created_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            RETURNING *
        """
        row = await self._db.fetchrow(
            sql,
            notification.id,
            notification.user_id,
            notification.subscription_id,
            notification.title,
            notification.content,
            notification.source_url,
            notification.entity_type,
            notification.metadata,
            notification.created_at,
        )
        return Notification.from_row(row)

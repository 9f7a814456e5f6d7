"""Subscription repository.

Reads subscriptions joined with their type, and performs the single
write this service is allowed to make against them: stamping
``last_check_at`` after a pipeline run.
"""

import logging

from subscription_worker.storage.database import Database
from subscription_worker.subscriptions.schemas import Subscription

logger = logging.getLogger(__name__)

_SELECT_SUBSCRIPTION = """
    SELECT s.id, s.user_id, s.type_id, s.name, s.prompts, s.frequency,
           s.active, s.match_limit, s.metadata, s.last_check_at,
           t.name AS type_name, t.slug AS type_slug, t.parser_url
    FROM subscriptions s
    JOIN subscription_types t ON t.id = s.type_id
"""


class SubscriptionRepository:
    """Repository for subscription lookups."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create the subscription tables for local development.

        In deployment these tables belong to the subscription management
        service; the statements are idempotent so running them against a
        shared database is harmless.
        """
        sql = """
            CREATE TABLE IF NOT EXISTS subscription_types (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                slug TEXT,
                display_name TEXT,
                parser_url TEXT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );

            CREATE TABLE IF NOT EXISTS subscriptions (
                id UUID PRIMARY KEY,
                user_id UUID NOT NULL,
                type_id TEXT NOT NULL REFERENCES subscription_types(id),
                name TEXT NOT NULL DEFAULT '',
                prompts JSONB NOT NULL DEFAULT '[]',
                frequency TEXT NOT NULL DEFAULT 'daily'
                    CHECK (frequency IN ('immediate', 'daily')),
                active BOOLEAN NOT NULL DEFAULT TRUE,
                match_limit INTEGER CHECK (match_limit IS NULL OR match_limit > 0),
                metadata JSONB NOT NULL DEFAULT '{}',
                last_check_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );

            CREATE INDEX IF NOT EXISTS idx_subscriptions_user
                ON subscriptions(user_id);
        """
        await self._db.execute(sql)
        logger.info("Subscription tables ready")

    async def get_by_id(self, subscription_id: str) -> Subscription | None:
        """Get a subscription with its type's analyzer endpoint.

        Args:
            subscription_id: Subscription UUID.

        Returns:
            Subscription or None if not found.
        """
        row = await self._db.fetchrow(
            _SELECT_SUBSCRIPTION + " WHERE s.id = $1", subscription_id
        )
        if row is None:
            return None
        return Subscription.from_row(row)

    async def touch_last_checked(self, subscription_id: str) -> bool:
        """Set ``last_check_at`` to now.

        Args:
            subscription_id: Subscription UUID.

        Returns:
            True if a row was updated.
        """
        result = await self._db.execute(
            """
            UPDATE subscriptions
            SET last_check_at = NOW(), updated_at = NOW()
            WHERE id = $1
            """,
            subscription_id,
        )
        return result.endswith(" 1")

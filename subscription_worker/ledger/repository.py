"""Processing ledger repository.

All statements run on a connection supplied by the caller so that the
claim manager and finalizer own the transaction boundary: selecting a
due row with ``FOR UPDATE SKIP LOCKED`` and writing ``sending`` happen
in the same transaction, and other workers never wait on (or see) a row
that is mid-claim.

Status-changing writes after the claim are fenced on ``claim_token``
and a claimed status, so a worker that lost its record to the stuck
sweep cannot overwrite the new owner's state.
"""

import logging
from datetime import timedelta
from typing import Any

import asyncpg

from subscription_worker.ledger.schemas import (
    CLAIMED_STATUSES,
    VALID_STATUSES,
    ProcessingRecord,
)
from subscription_worker.storage.database import Database

logger = logging.getLogger(__name__)

_CLAIMED = tuple(sorted(CLAIMED_STATUSES))


class LedgerRepository:
    """Store operations over the ``subscription_processing`` table."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create the ledger table and indexes if they don't exist."""
        sql = """
            CREATE TABLE IF NOT EXISTS subscription_processing (
                id UUID PRIMARY KEY,
                subscription_id UUID NOT NULL UNIQUE
                    REFERENCES subscriptions(id) ON DELETE CASCADE,
                status TEXT NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'sending', 'processing',
                                      'completed', 'failed', 'skipped')),
                next_run_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                last_run_at TIMESTAMPTZ,
                error TEXT,
                metadata JSONB NOT NULL DEFAULT '{}',
                claim_token UUID,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );

            CREATE INDEX IF NOT EXISTS idx_subscription_processing_due
                ON subscription_processing(next_run_at)
                WHERE status IN ('pending', 'failed');

            CREATE INDEX IF NOT EXISTS idx_subscription_processing_rearm
                ON subscription_processing(next_run_at)
                WHERE status IN ('completed', 'skipped');

            CREATE INDEX IF NOT EXISTS idx_subscription_processing_claimed
                ON subscription_processing(last_run_at)
                WHERE status IN ('sending', 'processing');
        """
        await self._db.execute(sql)
        logger.info("Ledger tables ready")

    async def get_by_subscription(
        self, conn: asyncpg.Connection, subscription_id: str
    ) -> ProcessingRecord | None:
        """Read a subscription's record without locking it."""
        row = await conn.fetchrow(
            "SELECT * FROM subscription_processing WHERE subscription_id = $1",
            subscription_id,
        )
        return ProcessingRecord.from_row(row) if row else None

    async def ensure_record(
        self,
        conn: asyncpg.Connection,
        record_id: str,
        subscription_id: str,
    ) -> ProcessingRecord:
        """Create a pending record for a subscription unless one exists.

        A concurrent creator wins on the unique subscription_id; the
        existing row is returned in that case.

        Args:
            conn: Connection inside the caller's transaction.
            record_id: UUID for the new record.
            subscription_id: Subscription to schedule.

        Returns:
            The new or existing record.
        """
        row = await conn.fetchrow(
            """
            INSERT INTO subscription_processing (
                id, subscription_id, status, next_run_at, metadata
            ) VALUES ($1, $2, 'pending', NOW(), $3)
            ON CONFLICT (subscription_id) DO NOTHING
            RETURNING *
            """,
            record_id,
            subscription_id,
            {"created_by": "subscription-worker"},
        )
        if row is None:
            row = await conn.fetchrow(
                "SELECT * FROM subscription_processing WHERE subscription_id = $1",
                subscription_id,
            )
        else:
            logger.info(f"Created ledger record for subscription {subscription_id}")
        return ProcessingRecord.from_row(row)

    async def rearm_elapsed(
        self, conn: asyncpg.Connection, limit: int
    ) -> int:
        """Return completed/skipped records whose next run has arrived to pending.

        Rows locked by another transaction are skipped. Run inside the
        claim transaction, the re-armed rows stay locked for fetch_due.

        Returns:
            Number of records re-armed.
        """
        result = await conn.execute(
            """
            WITH elapsed AS (
                SELECT id
                FROM subscription_processing
                WHERE status IN ('completed', 'skipped')
                  AND next_run_at <= NOW()
                ORDER BY next_run_at
                LIMIT $1
                FOR UPDATE SKIP LOCKED
            )
            UPDATE subscription_processing sp
            SET status = 'pending',
                updated_at = NOW()
            FROM elapsed
            WHERE sp.id = elapsed.id
            """,
            limit,
        )
        return int(result.split()[-1]) if result else 0

    async def fetch_due(
        self, conn: asyncpg.Connection, limit: int
    ) -> list[ProcessingRecord]:
        """Select and lock due records of active subscriptions.

        Rows locked by another transaction are skipped, not waited on.
        The locks last until the caller's transaction ends.

        Args:
            conn: Connection inside the caller's transaction.
            limit: Maximum records to select.

        Returns:
            Locked due records, oldest next_run_at first.
        """
        rows = await conn.fetch(
            """
            SELECT sp.*
            FROM subscription_processing sp
            JOIN subscriptions s ON s.id = sp.subscription_id
            WHERE sp.status IN ('pending', 'failed')
              AND sp.next_run_at <= NOW()
              AND s.active = TRUE
            ORDER BY sp.next_run_at
            LIMIT $1
            FOR UPDATE OF sp SKIP LOCKED
            """,
            limit,
        )
        return [ProcessingRecord.from_row(row) for row in rows]

    async def reserve_for_processing(
        self, conn: asyncpg.Connection, record_id: str
    ) -> ProcessingRecord | None:
        """Lock one record by id, regardless of next_run_at.

        Returns None when the row is locked by another transaction or
        does not exist. The caller must check ``is_claimed`` on the
        result: a record already in sending/processing is held by a
        worker even though its row lock was released at claim commit.
        """
        row = await conn.fetchrow(
            """
            SELECT * FROM subscription_processing
            WHERE id = $1
            FOR UPDATE SKIP LOCKED
            """,
            record_id,
        )
        return ProcessingRecord.from_row(row) if row else None

    async def mark_sending(
        self,
        conn: asyncpg.Connection,
        record_ids: list[str],
        claim_token: str,
    ) -> list[ProcessingRecord]:
        """Write the claim for records locked in the same transaction.

        Args:
            conn: Connection inside the caller's transaction.
            record_ids: Records returned by fetch_due / reserve_for_processing.
            claim_token: Token identifying this claim.

        Returns:
            The claimed records as now stored.
        """
        if not record_ids:
            return []

        rows = await conn.fetch(
            """
            UPDATE subscription_processing
            SET status = 'sending',
                last_run_at = NOW(),
                claim_token = $2,
                updated_at = NOW()
            WHERE id = ANY($1::uuid[])
            RETURNING *
            """,
            record_ids,
            claim_token,
        )
        return [ProcessingRecord.from_row(row) for row in rows]

    async def set_status(
        self,
        conn: asyncpg.Connection,
        record_id: str,
        status: str,
        *,
        claim_token: str,
        error: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ProcessingRecord | None:
        """Move a claimed record to a new status.

        Only applies while the record is in sending/processing under the
        given claim token. ``error`` replaces the stored error (None
        clears it); ``metadata`` is merged into the stored bag. Leaving
        sending/processing releases the claim token.

        Returns:
            The updated record, or None when the claim no longer holds.
        """
        if status not in VALID_STATUSES:
            raise ValueError(f"Invalid status {status!r}")

        row = await conn.fetchrow(
            """
            UPDATE subscription_processing
            SET status = $2,
                error = $3,
                metadata = metadata || $4::jsonb,
                claim_token = CASE WHEN $2 = ANY($6::text[])
                                   THEN claim_token ELSE NULL END,
                updated_at = NOW()
            WHERE id = $1
              AND claim_token = $5
              AND status = ANY($6::text[])
            RETURNING *
            """,
            record_id,
            status,
            error,
            metadata or {},
            claim_token,
            list(_CLAIMED),
        )
        if row is None:
            logger.warning(
                f"Ledger record {record_id} is no longer held by claim "
                f"{claim_token}, status {status} not written"
            )
            return None
        return ProcessingRecord.from_row(row)

    async def reschedule_after(
        self,
        conn: asyncpg.Connection,
        record_id: str,
        interval: timedelta,
    ) -> ProcessingRecord | None:
        """Set ``next_run_at`` to the database's NOW() plus ``interval``."""
        row = await conn.fetchrow(
            """
            UPDATE subscription_processing
            SET next_run_at = NOW() + $2::interval,
                updated_at = NOW()
            WHERE id = $1
            RETURNING *
            """,
            record_id,
            interval,
        )
        return ProcessingRecord.from_row(row) if row else None

    async def reclaim_stuck(
        self,
        conn: asyncpg.Connection,
        older_than: timedelta,
        limit: int,
    ) -> list[ProcessingRecord]:
        """Fail records left in sending/processing by a crashed worker.

        Records claimed more than ``older_than`` ago are moved to
        ``failed`` and made due immediately; their claim token is
        cleared so the original worker's late finalize is rejected.

        Returns:
            The reclaimed records.
        """
        rows = await conn.fetch(
            """
            WITH stuck AS (
                SELECT id
                FROM subscription_processing
                WHERE status IN ('sending', 'processing')
                  AND last_run_at < NOW() - $1::interval
                ORDER BY last_run_at
                LIMIT $2
                FOR UPDATE SKIP LOCKED
            )
            UPDATE subscription_processing sp
            SET status = 'failed',
                error = 'Processing abandoned: claim exceeded ' || $1::interval::text,
                next_run_at = NOW(),
                claim_token = NULL,
                metadata = sp.metadata || jsonb_build_object(
                    'reclaimed_at', NOW(),
                    'reclaimed_from', sp.status
                ),
                updated_at = NOW()
            FROM stuck
            WHERE sp.id = stuck.id
            RETURNING sp.*
            """,
            older_than,
            limit,
        )
        return [ProcessingRecord.from_row(row) for row in rows]

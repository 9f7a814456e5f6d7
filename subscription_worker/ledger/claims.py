"""
Claim manager - reserves due ledger records for exclusive processing.

Each claim is one short transaction: lock candidate rows with
``FOR UPDATE SKIP LOCKED``, write ``sending`` with a fresh claim token,
commit. Concurrent workers polling at the same moment therefore split
the due set between them instead of blocking or double-claiming; a
worker that finds nothing simply polls again later.
"""

import uuid
from datetime import timedelta

import structlog

from subscription_worker.ledger.repository import LedgerRepository
from subscription_worker.ledger.schemas import ProcessingRecord
from subscription_worker.observability.metrics import get_metrics
from subscription_worker.storage.database import Database

logger = structlog.get_logger(__name__)


class ClaimManager:
    """
    Atomically reserves ledger records.

    Usage:
        claims = ClaimManager(database, LedgerRepository(database))
        for record in await claims.claim_due(limit=10):
            ...
    """

    def __init__(self, database: Database, ledger: LedgerRepository) -> None:
        if database is None or ledger is None:
            raise ValueError("ClaimManager requires a database and a ledger repository")
        self._db = database
        self._ledger = ledger

    async def claim_due(self, limit: int = 1) -> list[ProcessingRecord]:
        """
        Claim up to ``limit`` due records.

        Args:
            limit: Maximum records to claim in this transaction.

        Returns:
            Records now in ``sending`` and owned by the caller. Empty when
            nothing is due or every due row is held by another worker.
        """
        claim_token = str(uuid.uuid4())

        async with self._db.transaction() as conn:
            await self._ledger.rearm_elapsed(conn, limit)
            due = await self._ledger.fetch_due(conn, limit)
            claimed = await self._ledger.mark_sending(
                conn, [record.id for record in due], claim_token
            )

        get_metrics().record_claims(len(claimed))
        if claimed:
            logger.info(
                "Claimed due records",
                count=len(claimed),
                processing_ids=[record.id for record in claimed],
            )
        return claimed

    async def claim_subscription(self, subscription_id: str) -> ProcessingRecord | None:
        """
        Claim one subscription's record on request, ignoring next_run_at.

        Creates the record when it is missing. Refuses (returns None)
        when another transaction has the row locked or a worker already
        holds it in sending/processing, so duplicate requests coalesce
        onto the run in flight.

        Args:
            subscription_id: Subscription to claim.

        Returns:
            The claimed record, or None when it is already being processed.
        """
        claim_token = str(uuid.uuid4())
        metrics = get_metrics()

        async with self._db.transaction() as conn:
            existing = await self._ledger.get_by_subscription(conn, subscription_id)
            if existing is None:
                existing = await self._ledger.ensure_record(
                    conn, str(uuid.uuid4()), subscription_id
                )

            record = await self._ledger.reserve_for_processing(conn, existing.id)
            if record is None or record.is_claimed:
                metrics.record_claim_conflict()
                logger.info(
                    "Subscription already being processed",
                    subscription_id=subscription_id,
                    processing_id=existing.id,
                    status=record.status if record else "locked",
                )
                return None

            claimed = await self._ledger.mark_sending(conn, [record.id], claim_token)

        metrics.record_claims(len(claimed))
        return claimed[0] if claimed else None

    async def mark_processing(self, record: ProcessingRecord) -> ProcessingRecord | None:
        """
        Record that analysis has started for a claimed record.

        Returns:
            The updated record, or None if the claim was lost.
        """
        async with self._db.transaction() as conn:
            return await self._ledger.set_status(
                conn,
                record.id,
                "processing",
                claim_token=record.claim_token,
                error=record.error,
            )

    async def reclaim_stuck(
        self, older_than: timedelta, limit: int = 100
    ) -> list[ProcessingRecord]:
        """
        Fail records held in sending/processing for longer than ``older_than``.

        Args:
            older_than: Age after which a claim counts as abandoned.
            limit: Maximum records per sweep.

        Returns:
            Records moved to ``failed``.
        """
        async with self._db.transaction() as conn:
            reclaimed = await self._ledger.reclaim_stuck(conn, older_than, limit)

        if reclaimed:
            get_metrics().ledger_reclaimed.inc(len(reclaimed))
            logger.warning(
                "Reclaimed stuck ledger records",
                count=len(reclaimed),
                subscription_ids=[record.subscription_id for record in reclaimed],
            )
        return reclaimed

"""
Status finalizer - the only writer of terminal ledger state.

Writes completed / failed / skipped for a claimed record and schedules
its next run in the same transaction, then stamps the subscription's
``last_check_at`` as separate best-effort bookkeeping.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from subscription_worker.ledger.config import LedgerConfig
from subscription_worker.ledger.repository import LedgerRepository
from subscription_worker.ledger.schemas import ProcessingRecord
from subscription_worker.storage.database import Database
from subscription_worker.subscriptions.repository import SubscriptionRepository

logger = structlog.get_logger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class StatusFinalizer:
    """
    Finalizes claimed ledger records.

    Cadence per outcome:
    - completed / skipped: regular interval for the subscription frequency
    - failed: short cool-down while consecutive failures stay under the
      cap, the regular interval after that

    Each method returns the stored record, or None when the claim was
    lost (for example to the stuck-record sweep) and nothing was written.
    """

    def __init__(
        self,
        database: Database,
        ledger: LedgerRepository,
        subscriptions: SubscriptionRepository,
        config: LedgerConfig | None = None,
    ) -> None:
        if database is None or ledger is None or subscriptions is None:
            raise ValueError(
                "StatusFinalizer requires a database, ledger and subscription repository"
            )
        self._db = database
        self._ledger = ledger
        self._subscriptions = subscriptions
        self._config = config or LedgerConfig()

    async def complete(
        self,
        record: ProcessingRecord,
        frequency: str,
        *,
        matches_found: int,
        notifications_created: int,
        notification_errors: int,
        processing_time_ms: int,
        trace_id: str,
    ) -> ProcessingRecord | None:
        """Mark a run successful and schedule the next regular run."""
        metadata = {
            "last_run_stats": {
                "processed_at": _now_iso(),
                "matches_found": matches_found,
                "notifications_created": notifications_created,
                "notification_errors": notification_errors,
                "processing_time_ms": processing_time_ms,
                "trace_id": trace_id,
            },
            "consecutive_failures": 0,
        }
        return await self._finalize(
            record,
            "completed",
            error=None,
            metadata=metadata,
            next_run_after=self._config.cadence_for(frequency),
        )

    async def fail(
        self,
        record: ProcessingRecord,
        frequency: str,
        *,
        error: str,
        error_type: str,
        trace_id: str,
    ) -> ProcessingRecord | None:
        """Mark a run failed and schedule a bounded re-attempt."""
        failures = record.consecutive_failures + 1
        if failures < self._config.max_consecutive_failures:
            interval = self._config.failure_cooldown
        else:
            interval = self._config.cadence_for(frequency)

        metadata = {
            "last_error": {
                "message": error,
                "error_type": error_type,
                "trace_id": trace_id,
                "failed_at": _now_iso(),
            },
            "consecutive_failures": failures,
        }
        return await self._finalize(
            record,
            "failed",
            error=error,
            metadata=metadata,
            next_run_after=interval,
        )

    async def skip(
        self,
        record: ProcessingRecord,
        frequency: str,
        *,
        reason: str,
        trace_id: str,
    ) -> ProcessingRecord | None:
        """Mark a run skipped; the record still moves to its next regular slot."""
        metadata = {
            "last_skip": {
                "reason": reason,
                "trace_id": trace_id,
                "skipped_at": _now_iso(),
            },
            "consecutive_failures": 0,
        }
        return await self._finalize(
            record,
            "skipped",
            error=None,
            metadata=metadata,
            next_run_after=self._config.cadence_for(frequency),
        )

    async def touch_subscription(self, subscription_id: str) -> None:
        """Stamp the subscription's last_check_at, logging any failure."""
        try:
            updated = await self._subscriptions.touch_last_checked(subscription_id)
            if not updated:
                logger.warning(
                    "Subscription vanished before last_check_at update",
                    subscription_id=subscription_id,
                )
        except Exception as e:
            logger.warning(
                "Failed to update subscription last_check_at",
                subscription_id=subscription_id,
                error=str(e),
            )

    async def _finalize(
        self,
        record: ProcessingRecord,
        status: str,
        *,
        error: str | None,
        metadata: dict[str, Any],
        next_run_after: timedelta,
    ) -> ProcessingRecord | None:
        async with self._db.transaction() as conn:
            updated = await self._ledger.set_status(
                conn,
                record.id,
                status,
                claim_token=record.claim_token,
                error=error,
                metadata=metadata,
            )
            if updated is None:
                return None
            updated = await self._ledger.reschedule_after(
                conn, record.id, next_run_after
            )

        logger.info(
            "Ledger record finalized",
            processing_id=record.id,
            subscription_id=record.subscription_id,
            status=status,
            next_run_at=updated.next_run_at.isoformat() if updated else None,
        )
        return updated

"""
Pipeline orchestrator - Claim, Analyze, Normalize, Fan-out, Finalize.

``SubscriptionPipeline`` is the entry point the CLI, the trigger
consumer and any HTTP layer call into. All collaborators are passed in
at construction; nothing here reaches for a global client.

Every run gets a fresh trace_id, bound into the structlog context and
set on the run's span, stored in ledger metadata and notification rows,
and carried on published events.

Failure handling per run:
- subscription gone or type without analyzer: finalized ``skipped``
- analyzer rejected / retries exhausted: finalized ``failed`` (cool-down)
- individual notification insert or publish failures: counted, run continues
- every match failed to persist: finalized ``failed``
- unexpected exception: finalized ``failed`` best-effort, reported as error
"""

import asyncio
import time
from collections.abc import Callable
from datetime import timedelta

import structlog

from subscription_worker.analyzer.client import AnalyzerError, AnalyzerGateway
from subscription_worker.analyzer.config import AnalyzerConfig
from subscription_worker.analyzer.normalizer import normalize_response
from subscription_worker.analyzer.schemas import AnalyzerRequest
from subscription_worker.ledger.claims import ClaimManager
from subscription_worker.ledger.config import LedgerConfig
from subscription_worker.ledger.finalizer import StatusFinalizer
from subscription_worker.ledger.schemas import ProcessingRecord
from subscription_worker.notifications.fanout import NotificationFanOut
from subscription_worker.observability.metrics import get_metrics
from subscription_worker.observability.tracing import (
    generate_trace_id,
    get_tracer,
    traced,
)
from subscription_worker.pipeline.config import PipelineConfig
from subscription_worker.pipeline.schemas import (
    Acknowledgement,
    BatchSummary,
    ProcessOutcome,
)
from subscription_worker.subscriptions.repository import SubscriptionRepository
from subscription_worker.subscriptions.schemas import Subscription

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)

REASON_NO_PARSER_URL = "no_parser_url"
REASON_NOT_FOUND = "subscription_not_found"
REASON_ALREADY_PROCESSING = "already_processing"
REASON_CLAIM_LOST = "claim_lost"


class SubscriptionPipeline:
    """
    Runs subscriptions through the dispatch pipeline.

    Usage:
        pipeline = SubscriptionPipeline(
            claims=claims,
            finalizer=finalizer,
            subscriptions=subscription_repo,
            analyzer=gateway,
            fanout=fanout,
        )
        outcome = await pipeline.process_one(subscription_id)
        summary = await pipeline.process_due(max_batch=20)
    """

    def __init__(
        self,
        claims: ClaimManager,
        finalizer: StatusFinalizer,
        subscriptions: SubscriptionRepository,
        analyzer: AnalyzerGateway,
        fanout: NotificationFanOut,
        config: PipelineConfig | None = None,
        analyzer_config: AnalyzerConfig | None = None,
        ledger_config: LedgerConfig | None = None,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            claims: Ledger claim manager
            finalizer: Ledger status finalizer
            subscriptions: Subscription lookup
            analyzer: Analyzer gateway (opened by the caller)
            fanout: Notification fan-out
            config: Batch sizes
            analyzer_config: Request defaults (result limit)
            ledger_config: Stuck-record sweep settings

        Raises:
            ValueError: If a required collaborator is missing
        """
        missing = [
            name
            for name, dependency in (
                ("claims", claims),
                ("finalizer", finalizer),
                ("subscriptions", subscriptions),
                ("analyzer", analyzer),
                ("fanout", fanout),
            )
            if dependency is None
        ]
        if missing:
            raise ValueError(f"SubscriptionPipeline missing dependencies: {', '.join(missing)}")

        self._claims = claims
        self._finalizer = finalizer
        self._subscriptions = subscriptions
        self._analyzer = analyzer
        self._fanout = fanout
        self._config = config or PipelineConfig()
        self._analyzer_config = analyzer_config or AnalyzerConfig()
        self._ledger_config = ledger_config or LedgerConfig()
        self._background: set[asyncio.Task] = set()

    # ── Entry points ──────────────────────────────────────

    async def process_one(self, subscription_id: str) -> ProcessOutcome:
        """
        Claim one subscription and run the full pipeline synchronously.

        A concurrent request for the same subscription gets
        ``already_processing`` instead of starting a second run.

        Args:
            subscription_id: Subscription to process

        Returns:
            Outcome of the run (or of the refusal to start one)
        """
        try:
            subscription = await self._subscriptions.get_by_id(subscription_id)
            if subscription is None:
                logger.warning("Subscription not found", subscription_id=subscription_id)
                return ProcessOutcome(
                    status="error",
                    subscription_id=subscription_id,
                    reason=REASON_NOT_FOUND,
                    error="Subscription not found",
                )
            if not subscription.active:
                logger.warning(
                    "Processing inactive subscription on request",
                    subscription_id=subscription_id,
                )

            record = await self._claims.claim_subscription(subscription_id)
        except Exception as e:
            logger.error(
                "Failed to claim subscription",
                subscription_id=subscription_id,
                error=str(e),
            )
            return ProcessOutcome(
                status="error",
                subscription_id=subscription_id,
                error=f"Claim failed: {e}",
            )

        if record is None:
            return ProcessOutcome(
                status="already_processing",
                subscription_id=subscription_id,
                subscription_type=subscription.type_name,
                reason=REASON_ALREADY_PROCESSING,
            )

        return await self.run_claimed(record, subscription)

    async def submit(self, subscription_id: str) -> Acknowledgement:
        """
        Claim a subscription now and finish the run in the background.

        Returns as soon as the claim is decided. The run's result is
        visible in the ledger; call drain() to wait for background runs.
        """
        try:
            subscription = await self._subscriptions.get_by_id(subscription_id)
            if subscription is None:
                return Acknowledgement(
                    status="not_found",
                    subscription_id=subscription_id,
                    message="Subscription not found",
                )
            record = await self._claims.claim_subscription(subscription_id)
        except Exception as e:
            logger.error(
                "Failed to claim subscription",
                subscription_id=subscription_id,
                error=str(e),
            )
            return Acknowledgement(
                status="error",
                subscription_id=subscription_id,
                message=f"Claim failed: {e}",
            )

        if record is None:
            return Acknowledgement(
                status="already_processing",
                subscription_id=subscription_id,
                message="Subscription is already being processed",
            )

        task = asyncio.create_task(self.run_claimed(record, subscription))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

        return Acknowledgement(
            status="accepted",
            subscription_id=subscription_id,
            processing_id=record.id,
            message="Processing started",
        )

    async def drain(self) -> list[ProcessOutcome]:
        """Wait for all background runs started by submit()."""
        if not self._background:
            return []
        return list(await asyncio.gather(*self._background))

    async def process_due(
        self,
        max_batch: int | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> BatchSummary:
        """
        Claim and run due records until ``max_batch`` are done or none remain.

        Records are claimed ``claim_batch_size`` at a time and run one
        after another. ``should_stop`` is checked before every claim, so a
        stopping worker finishes the records it holds and claims no more.

        Args:
            max_batch: Upper bound on records processed (config default if None)
            should_stop: Returns True once no further records may be claimed

        Returns:
            Totals and per-type breakdown
        """
        max_batch = max_batch or self._config.max_batch
        summary = BatchSummary()

        while summary.processed < max_batch:
            if should_stop is not None and should_stop():
                logger.info("Stopping due scan early", processed=summary.processed)
                break

            limit = min(self._config.claim_batch_size, max_batch - summary.processed)
            try:
                records = await self._claims.claim_due(limit)
            except Exception as e:
                logger.error("Failed to claim due records", error=str(e))
                summary.claim_error = str(e)
                break

            if not records:
                break

            for record in records:
                summary.add(await self.run_claimed(record))

        if summary.processed:
            logger.info("Due records processed", **summary.to_dict())
        return summary

    async def reclaim_stuck(self) -> int:
        """Fail records abandoned in sending/processing. Returns the count."""
        reclaimed = await self._claims.reclaim_stuck(
            self._ledger_config.stuck_timeout,
            limit=self._ledger_config.reclaim_batch_size,
        )
        return len(reclaimed)

    # ── Single run ────────────────────────────────────────

    async def run_claimed(
        self,
        record: ProcessingRecord,
        subscription: Subscription | None = None,
    ) -> ProcessOutcome:
        """
        Run the pipeline for a record this worker has claimed.

        Args:
            record: Claimed ledger record (status ``sending``)
            subscription: Already-loaded subscription, looked up if None

        Returns:
            Outcome of the run; never raises for pipeline failures
        """
        trace_id = generate_trace_id()
        started = time.monotonic()

        with structlog.contextvars.bound_contextvars(
            trace_id=trace_id,
            subscription_id=record.subscription_id,
            processing_id=record.id,
        ):
            with traced(
                tracer,
                "pipeline.run",
                {
                    "pipeline.trace_id": trace_id,
                    "subscription.id": record.subscription_id,
                    "ledger.processing_id": record.id,
                },
            ) as span:
                try:
                    outcome = await self._run(record, subscription, trace_id, started)
                except Exception as e:
                    logger.exception("Unexpected pipeline failure", error=str(e))
                    await self._fail_quietly(
                        record,
                        subscription.frequency if subscription else "daily",
                        error=f"Unexpected error: {e}",
                        error_type=type(e).__name__,
                        trace_id=trace_id,
                    )
                    outcome = ProcessOutcome(
                        status="error",
                        subscription_id=record.subscription_id,
                        trace_id=trace_id,
                        processing_id=record.id,
                        subscription_type=subscription.type_name if subscription else "unknown",
                        error=str(e),
                    )
                span.set_attribute("pipeline.status", outcome.status)

            get_metrics().record_job(
                outcome.subscription_type,
                outcome.status,
                latency=time.monotonic() - started,
            )
            logger.info("Pipeline run finished", **outcome.to_dict())

        return outcome

    async def _run(
        self,
        record: ProcessingRecord,
        subscription: Subscription | None,
        trace_id: str,
        started: float,
    ) -> ProcessOutcome:
        if subscription is None:
            subscription = await self._subscriptions.get_by_id(record.subscription_id)

        if subscription is None:
            await self._finalizer.skip(
                record, "daily", reason=REASON_NOT_FOUND, trace_id=trace_id
            )
            return ProcessOutcome(
                status="error",
                subscription_id=record.subscription_id,
                trace_id=trace_id,
                processing_id=record.id,
                reason=REASON_NOT_FOUND,
                error="Subscription not found",
            )

        outcome = ProcessOutcome(
            status="success",
            subscription_id=subscription.id,
            trace_id=trace_id,
            processing_id=record.id,
            subscription_type=subscription.type_name,
        )

        if not subscription.has_analyzer:
            logger.info("Subscription type has no analyzer endpoint, skipping")
            await self._finalizer.skip(
                record,
                subscription.frequency,
                reason=REASON_NO_PARSER_URL,
                trace_id=trace_id,
            )
            outcome.status = "skipped"
            outcome.reason = REASON_NO_PARSER_URL
            return outcome

        processing = await self._claims.mark_processing(record)
        if processing is None:
            logger.warning("Claim lost before analysis, abandoning run")
            outcome.status = "error"
            outcome.reason = REASON_CLAIM_LOST
            outcome.error = "Ledger claim no longer held"
            return outcome
        record = processing

        request = AnalyzerRequest(
            prompts=subscription.prompts,
            user_id=subscription.user_id,
            subscription_id=subscription.id,
            type_id=subscription.type_id,
            type_name=subscription.type_name,
            trace_id=trace_id,
            limit=subscription.match_limit or self._analyzer_config.result_limit,
        )

        try:
            with traced(tracer, "pipeline.analyze", {"prompt_count": len(request.prompts)}):
                raw = await self._analyzer.analyze(subscription.parser_url, request)
        except AnalyzerError as e:
            await self._finalizer.fail(
                record,
                subscription.frequency,
                error=str(e),
                error_type=type(e).__name__,
                trace_id=trace_id,
            )
            await self._finalizer.touch_subscription(subscription.id)
            outcome.status = "error"
            outcome.error = str(e)
            return outcome

        matches = normalize_response(raw, subscription.prompts)
        outcome.matches_count = len(matches)

        with traced(tracer, "pipeline.fan_out", {"match_count": len(matches)}):
            result = await self._fanout.fan_out(subscription, matches, trace_id)

        outcome.notifications_created = result.created
        outcome.notification_errors = result.errors
        outcome.publish_errors = result.publish_errors

        if matches and result.created == 0:
            message = f"All {len(matches)} notification inserts failed"
            await self._finalizer.fail(
                record,
                subscription.frequency,
                error=message,
                error_type="NotificationPersistenceError",
                trace_id=trace_id,
            )
            outcome.status = "error"
            outcome.error = message
        else:
            await self._finalizer.complete(
                record,
                subscription.frequency,
                matches_found=len(matches),
                notifications_created=result.created,
                notification_errors=result.errors,
                processing_time_ms=int((time.monotonic() - started) * 1000),
                trace_id=trace_id,
            )

        await self._finalizer.touch_subscription(subscription.id)
        return outcome

    async def _fail_quietly(
        self, record: ProcessingRecord, frequency: str, **kwargs
    ) -> None:
        try:
            await self._finalizer.fail(record, frequency, **kwargs)
        except Exception as e:
            logger.error("Failed to record pipeline failure in ledger", error=str(e))

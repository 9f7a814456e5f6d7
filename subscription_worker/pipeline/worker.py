"""
Polling worker - keeps the ledger drained.

Runs as a standalone service that:
1. Optionally sweeps abandoned claims back to ``failed``
2. Claims due ledger records and runs them through the pipeline
3. Sleeps for the poll interval once nothing is due
4. Meanwhile consumes on-demand triggers from a Redis stream

Any number of workers can run side by side; the ledger's skip-locked
claims keep them from processing the same subscription twice.
"""

import asyncio
import contextlib

import structlog

from subscription_worker.config.settings import get_settings
from subscription_worker.observability.metrics import get_metrics
from subscription_worker.observability.tracing import (
    extract_trace_context,
    get_tracer,
    traced,
)
from subscription_worker.pipeline.factory import PipelineResources
from subscription_worker.pipeline.orchestrator import SubscriptionPipeline
from subscription_worker.pipeline.schemas import BatchSummary
from subscription_worker.pipeline.triggers import ProcessTrigger, TriggerQueue
from subscription_worker.queues.backoff import ExponentialBackoff

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)


class PipelineWorker:
    """
    Supervised polling worker for the subscription pipeline.

    Usage:
        worker = PipelineWorker()
        await worker.start()  # Runs until stopped
    """

    def __init__(
        self,
        resources: PipelineResources | None = None,
        trigger_queue: TriggerQueue | None = None,
    ):
        """
        Initialize the worker.

        Args:
            resources: Pipeline dependencies (or create from config)
            trigger_queue: Trigger stream consumer (or create from config
                when triggers are enabled)
        """
        self._resources = resources or PipelineResources()
        self._config = self._resources.pipeline_config
        self._ledger_config = self._resources.ledger_config

        if trigger_queue is None and self._config.triggers_enabled:
            trigger_queue = TriggerQueue(
                redis_url=str(get_settings().redis_url),
                config=self._config,
            )
        self._triggers = trigger_queue

        self._pipeline: SubscriptionPipeline | None = None
        self._trigger_task: asyncio.Task | None = None
        # Cleared while a trigger-started run holds a ledger claim
        self._trigger_idle = asyncio.Event()
        self._trigger_idle.set()
        self._stop_event = asyncio.Event()
        self._running = False

        logger.info(
            "PipelineWorker initialized",
            max_batch=self._config.max_batch,
            poll_interval=self._config.poll_interval_seconds,
            triggers=self._triggers is not None,
            reclaim=self._ledger_config.reclaim_enabled,
        )

    @property
    def is_running(self) -> bool:
        """Whether the worker loop is active."""
        return self._running

    @property
    def pipeline(self) -> SubscriptionPipeline:
        """Pipeline built on the connected resources."""
        if self._pipeline is None:
            raise RuntimeError("Worker not connected. Call start() first.")
        return self._pipeline

    async def _connect_dependencies(self) -> None:
        """Connect to PostgreSQL, Redis and the analyzer client."""
        await self._resources.connect()
        self._pipeline = self._resources.build_pipeline()
        if self._triggers is not None:
            await self._triggers.connect()

    async def start(self) -> None:
        """
        Start the worker with a supervised retry loop.

        Reconnects on transient failures using exponential backoff.
        Exits after max_consecutive_failures or on CancelledError.
        """
        self._running = True
        self._stop_event.clear()
        settings = get_settings()
        backoff = ExponentialBackoff(
            base_delay=settings.worker_backoff_base_delay,
            max_delay=settings.worker_backoff_max_delay,
            jitter=settings.worker_backoff_base_delay,
            max_attempts=settings.worker_max_consecutive_failures,
        )
        metrics = get_metrics()
        metrics.worker_running.set(1)

        logger.info("Starting pipeline worker")

        try:
            while self._running:
                try:
                    await self._connect_dependencies()
                    await self._poll_loop()
                    if not self._running:
                        break
                except asyncio.CancelledError:
                    logger.info("Pipeline worker cancelled")
                    break
                except Exception as e:
                    if backoff.exhausted:
                        logger.error(
                            "Pipeline worker exceeded max consecutive failures",
                            failures=backoff.attempt,
                            error=str(e),
                        )
                        raise
                    delay = backoff.next_delay()
                    logger.warning(
                        "Pipeline worker error, retrying",
                        error=str(e),
                        attempt=backoff.attempt,
                        retry_delay=round(delay, 1),
                    )
                    await self._cleanup()
                    await asyncio.sleep(delay)
                else:
                    backoff.reset()
        finally:
            self._running = False
            metrics.worker_running.set(0)
            await self._cleanup()

    async def stop(self) -> None:
        """Stop the worker after the current run finishes."""
        logger.info("Stopping pipeline worker")
        self._running = False
        self._stop_event.set()

    async def _cleanup(self) -> None:
        """
        Stop the trigger consumer and close connections.

        A trigger run in progress is awaited, not cancelled: its record
        is claimed in the ledger and only the run itself can finalize it.
        The consumer is cancelled once it is back to waiting on the stream.
        """
        if self._trigger_task is not None:
            while not self._trigger_idle.is_set() and not self._trigger_task.done():
                logger.info("Waiting for in-flight trigger run to finish")
                await self._trigger_idle.wait()
            self._trigger_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._trigger_task
            self._trigger_task = None

        if self._pipeline is not None:
            await self._pipeline.drain()
            self._pipeline = None

        if self._triggers is not None:
            await self._triggers.close()
        await self._resources.close()
        logger.info("Pipeline worker cleaned up")

    async def _poll_loop(self) -> None:
        """Alternate due scans with sleeps; surface trigger consumer failures."""
        if self._triggers is not None:
            self._trigger_task = asyncio.create_task(self._trigger_loop())

        while self._running:
            if self._trigger_task is not None and self._trigger_task.done():
                # Re-raises the consumer's error into the supervisor
                self._trigger_task.result()
                self._trigger_task = None

            summary = await self.run_once()

            if summary.claim_error:
                raise RuntimeError(f"Claiming due records failed: {summary.claim_error}")

            # A full batch means more may be due; scan again right away
            if summary.processed >= self._config.max_batch:
                continue

            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self._config.poll_interval_seconds,
                )

    async def run_once(self) -> BatchSummary:
        """
        Run one sweep-and-scan pass.

        Returns:
            Summary of the due records processed
        """
        pipeline = self.pipeline

        if self._ledger_config.reclaim_enabled:
            try:
                await pipeline.reclaim_stuck()
            except Exception as e:
                logger.error("Stuck-record sweep failed", error=str(e))

        summary = await pipeline.process_due(
            self._config.max_batch,
            should_stop=lambda: not self._running,
        )
        get_metrics().due_batch_size.observe(summary.processed)
        return summary

    async def _trigger_loop(self) -> None:
        """Process subscriptions requested through the trigger stream."""
        async for message_id, trigger in self._triggers.consume(
            count=1,
            block_ms=self._config.trigger_block_ms,
        ):
            if not self._running:
                break

            self._trigger_idle.clear()
            try:
                await self._handle_trigger(message_id, trigger)
            finally:
                self._trigger_idle.set()

    async def _handle_trigger(self, message_id: str, trigger: ProcessTrigger) -> None:
        """Run one triggered subscription and acknowledge the message."""
        with traced(
            tracer,
            "pipeline.trigger",
            {
                "subscription.id": trigger.subscription_id,
                "trigger.deliveries": trigger.deliveries,
            },
            parent_context=extract_trace_context(trigger.fields),
        ):
            outcome = await self.pipeline.process_one(trigger.subscription_id)

        logger.info(
            "Trigger handled",
            subscription_id=trigger.subscription_id,
            status=outcome.status,
        )
        await self._triggers.ack(message_id)

    async def health_check(self) -> dict:
        """Report worker and dependency health."""
        health = await self._resources.health_check()
        health["running"] = self._running
        if self._triggers is not None:
            health["triggers"] = await self._triggers.health_check()
            health["healthy"] = health["healthy"] and health["triggers"]
        return health

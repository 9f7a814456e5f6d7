"""Tests for PipelineWorker polling, trigger consumption and supervision."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from subscription_worker.ledger.claims import ClaimManager
from subscription_worker.ledger.config import LedgerConfig
from subscription_worker.ledger.finalizer import StatusFinalizer
from subscription_worker.notifications.fanout import NotificationFanOut
from subscription_worker.pipeline.config import PipelineConfig
from subscription_worker.pipeline.orchestrator import SubscriptionPipeline
from subscription_worker.pipeline.schemas import BatchSummary, ProcessOutcome
from subscription_worker.pipeline.triggers import ProcessTrigger
from subscription_worker.pipeline.worker import PipelineWorker


@pytest.fixture
def pipeline():
    mock = AsyncMock()
    mock.process_due.return_value = BatchSummary(processed=2, success_count=2)
    mock.reclaim_stuck.return_value = 0
    mock.drain.return_value = []
    return mock


@pytest.fixture
def resources(pipeline):
    res = MagicMock()
    res.pipeline_config = PipelineConfig(
        max_batch=5, poll_interval_seconds=30, triggers_enabled=False
    )
    res.ledger_config = LedgerConfig(reclaim_enabled=True)
    res.connect = AsyncMock()
    res.close = AsyncMock()
    res.build_pipeline.return_value = pipeline
    res.health_check = AsyncMock(return_value={"healthy": True, "database": True, "publisher": True})
    return res


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_sweeps_then_processes(self, resources, pipeline):
        worker = PipelineWorker(resources=resources)
        await worker._connect_dependencies()

        summary = await worker.run_once()

        assert summary.processed == 2
        pipeline.reclaim_stuck.assert_awaited_once()
        pipeline.process_due.assert_awaited_once()
        assert pipeline.process_due.await_args.args == (5,)

    @pytest.mark.asyncio
    async def test_due_scan_stops_with_worker(self, resources, pipeline):
        worker = PipelineWorker(resources=resources)
        await worker._connect_dependencies()
        worker._running = True

        await worker.run_once()
        should_stop = pipeline.process_due.await_args.kwargs["should_stop"]
        assert should_stop() is False

        await worker.stop()
        assert should_stop() is True

    @pytest.mark.asyncio
    async def test_sweep_failure_does_not_block_processing(self, resources, pipeline):
        pipeline.reclaim_stuck.side_effect = RuntimeError("lock timeout")
        worker = PipelineWorker(resources=resources)
        await worker._connect_dependencies()

        await worker.run_once()

        pipeline.process_due.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sweep_disabled(self, resources, pipeline):
        resources.ledger_config = LedgerConfig(reclaim_enabled=False)
        worker = PipelineWorker(resources=resources)
        await worker._connect_dependencies()

        await worker.run_once()

        pipeline.reclaim_stuck.assert_not_awaited()

    def test_pipeline_requires_connection(self, resources):
        with pytest.raises(RuntimeError):
            PipelineWorker(resources=resources).pipeline


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_stop_ends_loop_and_cleans_up(self, resources, pipeline):
        worker = PipelineWorker(resources=resources)

        async def process_due(max_batch, should_stop=None):
            await worker.stop()
            return BatchSummary(processed=1)

        pipeline.process_due.side_effect = process_due

        await worker.start()

        assert not worker.is_running
        resources.connect.assert_awaited_once()
        resources.close.assert_awaited()
        pipeline.drain.assert_awaited()

    @pytest.mark.asyncio
    async def test_reconnects_after_failure(self, resources, pipeline):
        worker = PipelineWorker(resources=resources)
        calls = []

        async def process_due(max_batch, should_stop=None):
            calls.append(max_batch)
            if len(calls) == 1:
                raise ConnectionError("postgres gone")
            await worker.stop()
            return BatchSummary()

        pipeline.process_due.side_effect = process_due

        with patch("subscription_worker.pipeline.worker.asyncio.sleep", new_callable=AsyncMock):
            await worker.start()

        assert resources.connect.await_count == 2
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_failures(self, resources, pipeline, test_settings):
        test_settings.worker_max_consecutive_failures = 2
        pipeline.process_due.side_effect = ConnectionError("postgres gone")
        worker = PipelineWorker(resources=resources)

        with patch("subscription_worker.pipeline.worker.get_settings", return_value=test_settings), \
                patch("subscription_worker.pipeline.worker.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(ConnectionError):
                await worker.start()

        assert resources.connect.await_count == 3
        assert not worker.is_running

    @pytest.mark.asyncio
    async def test_health_includes_running_flag(self, resources):
        health = await PipelineWorker(resources=resources).health_check()
        assert health["healthy"] is True
        assert health["running"] is False


class TestTriggerLoop:
    @pytest.mark.asyncio
    async def test_trigger_processed_and_acked(self, resources, pipeline):
        pipeline.process_one.return_value = ProcessOutcome(status="success", subscription_id="sub-1")
        queue = MagicMock()
        queue.ack = AsyncMock()
        queue.connect = AsyncMock()

        async def consume(count, block_ms):
            yield "1-0", ProcessTrigger(
                subscription_id="sub-1",
                message_id="1-0",
                fields={"subscription_id": "sub-1"},
            )

        queue.consume = consume
        worker = PipelineWorker(resources=resources, trigger_queue=queue)
        await worker._connect_dependencies()
        worker._running = True

        await worker._trigger_loop()

        pipeline.process_one.assert_awaited_once_with("sub-1")
        queue.ack.assert_awaited_once_with("1-0")


class TestShutdownDuringTrigger:
    @pytest.fixture
    def real_pipeline(
        self, fake_db, memory_ledger, subscriptions, analyzer, notification_repo, event_publisher
    ):
        return SubscriptionPipeline(
            claims=ClaimManager(fake_db, memory_ledger),
            finalizer=StatusFinalizer(fake_db, memory_ledger, subscriptions, LedgerConfig()),
            subscriptions=subscriptions,
            analyzer=analyzer,
            fanout=NotificationFanOut(notification_repo, event_publisher),
            config=PipelineConfig(max_batch=10),
        )

    @pytest.fixture
    def trigger_queue(self):
        queue = MagicMock()
        queue.connect = AsyncMock()
        queue.close = AsyncMock()
        queue.ack = AsyncMock()

        async def consume(count, block_ms):
            yield "1-0", ProcessTrigger(
                subscription_id="sub-1",
                message_id="1-0",
                fields={"subscription_id": "sub-1"},
            )
            # Blocks like XREADGROUP on an empty stream
            await asyncio.Event().wait()

        queue.consume = consume
        return queue

    @pytest.mark.asyncio
    async def test_stop_lets_trigger_run_finalize(
        self,
        resources,
        real_pipeline,
        trigger_queue,
        analyzer,
        subscriptions,
        memory_ledger,
        make_subscription,
    ):
        resources.ledger_config = LedgerConfig(reclaim_enabled=False)
        resources.build_pipeline.return_value = real_pipeline
        subscriptions.by_id["sub-1"] = make_subscription("sub-1")
        analysis_started = asyncio.Event()

        async def slow_analyze(endpoint, payload):
            analysis_started.set()
            await asyncio.sleep(0.2)
            return {"results": []}

        analyzer.analyze.side_effect = slow_analyze
        worker = PipelineWorker(resources=resources, trigger_queue=trigger_queue)

        run = asyncio.create_task(worker.start())
        await asyncio.wait_for(analysis_started.wait(), timeout=5)
        await worker.stop()
        await asyncio.wait_for(run, timeout=5)

        record = memory_ledger.for_subscription("sub-1")
        assert record.status == "completed"
        assert not record.is_claimed
        trigger_queue.ack.assert_awaited_once_with("1-0")
        trigger_queue.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_idle_trigger_consumer_is_cancelled_on_stop(self, resources, pipeline):
        queue = MagicMock()
        queue.connect = AsyncMock()
        queue.close = AsyncMock()
        queue.ack = AsyncMock()

        async def consume(count, block_ms):
            await asyncio.Event().wait()
            yield  # pragma: no cover

        queue.consume = consume

        async def process_due(max_batch, should_stop=None):
            await worker.stop()
            return BatchSummary()

        pipeline.process_due.side_effect = process_due
        worker = PipelineWorker(resources=resources, trigger_queue=queue)

        await asyncio.wait_for(worker.start(), timeout=5)

        pipeline.process_one.assert_not_awaited()
        queue.close.assert_awaited_once()

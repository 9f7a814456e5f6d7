"""
Command-line interface for subscription-worker.

Provides commands to run the polling worker, process subscriptions on
demand, initialize the database, and run diagnostic checks.

Usage:
    subscription-worker worker                  # Run the polling worker
    subscription-worker process-one <id>        # Process one subscription now
    subscription-worker process-due             # Drain due ledger records once
    subscription-worker reclaim-stuck           # Fail abandoned claims
    subscription-worker trigger <id>            # Ask running workers to process
    subscription-worker init-db                 # Initialize database
    subscription-worker health                  # Check service health
"""

import asyncio
import json
import os
import signal
import sys
from typing import Any

import click

from subscription_worker.config.settings import get_settings
from subscription_worker.observability.logging import setup_logging
from subscription_worker.observability.metrics import get_metrics


def _echo_json(data: dict[str, Any]) -> None:
    click.echo(json.dumps(data, indent=2, default=str, ensure_ascii=False))


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Subscription Worker - analyzer dispatch and notification fan-out."""
    if debug:
        os.environ["LOG_LEVEL"] = "DEBUG"
        get_settings.cache_clear()

    setup_logging()

    # Initialize tracing if enabled
    settings = get_settings()
    if settings.tracing_enabled:
        from subscription_worker.observability.tracing import setup_tracing

        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )


@main.command()
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def worker(metrics: bool, metrics_port: int | None) -> None:
    """Run the polling worker.

    Claims due ledger records, runs them through the analyzer and
    notification fan-out, and consumes on-demand triggers.

    Example:
        subscription-worker worker
        PIPELINE_POLL_INTERVAL_SECONDS=10 subscription-worker worker
    """
    from subscription_worker.pipeline.worker import PipelineWorker

    async def run():
        pipeline_worker = PipelineWorker()

        if metrics:
            get_metrics().start_server(port=metrics_port)

        # Handle shutdown signals
        loop = asyncio.get_event_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig, lambda: asyncio.create_task(pipeline_worker.stop())
            )

        await pipeline_worker.start()

    asyncio.run(run())


@main.command("process-one")
@click.argument("subscription_id")
def process_one(subscription_id: str) -> None:
    """Process a single subscription immediately and print the outcome."""
    from subscription_worker.pipeline.factory import PipelineResources

    async def run():
        async with PipelineResources() as resources:
            outcome = await resources.build_pipeline().process_one(subscription_id)

        _echo_json(outcome.to_dict())
        if outcome.status == "error":
            sys.exit(1)

    asyncio.run(run())


@main.command("process-due")
@click.option("--max-batch", default=None, type=int, help="Maximum records to process")
def process_due(max_batch: int | None) -> None:
    """Process due ledger records once and print a summary."""
    from subscription_worker.pipeline.factory import PipelineResources

    async def run():
        async with PipelineResources() as resources:
            summary = await resources.build_pipeline().process_due(max_batch)

        _echo_json(summary.to_dict())
        if summary.claim_error:
            sys.exit(1)

    asyncio.run(run())


@main.command("reclaim-stuck")
def reclaim_stuck() -> None:
    """Fail ledger records stuck in sending/processing past the timeout."""
    from subscription_worker.pipeline.factory import PipelineResources

    async def run():
        async with PipelineResources() as resources:
            count = await resources.build_pipeline().reclaim_stuck()

        timeout = resources.ledger_config.stuck_timeout_minutes
        click.echo(f"Reclaimed {count} record(s) older than {timeout} minutes")

    asyncio.run(run())


@main.command()
@click.argument("subscription_ids", nargs=-1, required=True)
def trigger(subscription_ids: tuple[str, ...]) -> None:
    """Publish processing triggers for running workers."""
    from subscription_worker.pipeline.triggers import TriggerQueue

    async def run():
        async with TriggerQueue(str(get_settings().redis_url)) as queue:
            for subscription_id in subscription_ids:
                message_id = await queue.publish(subscription_id)
                click.echo(f"Triggered {subscription_id} ({message_id})")

    asyncio.run(run())


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from subscription_worker.ledger.repository import LedgerRepository
    from subscription_worker.notifications.repository import NotificationRepository
    from subscription_worker.storage.database import Database
    from subscription_worker.subscriptions.repository import SubscriptionRepository

    async def run():
        db = Database()
        await db.connect()

        # Ledger and notification tables reference subscriptions
        await SubscriptionRepository(db).create_tables()
        await LedgerRepository(db).create_tables()
        await NotificationRepository(db).create_tables()

        click.echo("Database initialized successfully")

        await db.close()

    asyncio.run(run())


@main.command()
def health() -> None:
    """Check health of all dependencies."""
    import structlog
    logger = structlog.get_logger()

    async def check():
        results: dict[str, bool] = {}

        # Check Redis
        try:
            from subscription_worker.pipeline.triggers import TriggerQueue
            queue = TriggerQueue(str(get_settings().redis_url))
            await queue.connect()
            results["redis"] = await queue.health_check()
            await queue.close()
        except Exception as e:
            results["redis"] = False
            logger.error("Redis health check failed", error=str(e))

        # Check PostgreSQL
        try:
            from subscription_worker.storage.database import Database
            db = Database()
            await db.connect()
            results["postgres"] = await db.health_check()
            await db.close()
        except Exception as e:
            results["postgres"] = False
            logger.error("Postgres health check failed", error=str(e))

        # Print results
        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        all_healthy = True
        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
            if not status:
                all_healthy = False

        click.echo("-" * 40)

        if all_healthy:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())


if __name__ == "__main__":
    main()

"""
Wiring for the pipeline's long-lived resources.

Owns the PostgreSQL pool, the Redis publisher and the analyzer HTTP
client, and builds a SubscriptionPipeline over them. The CLI and the
polling worker both go through here so nothing else constructs clients.
"""

from types import TracebackType
from typing import Any

import structlog

from subscription_worker.analyzer.client import AnalyzerGateway
from subscription_worker.analyzer.config import AnalyzerConfig
from subscription_worker.config.settings import get_settings
from subscription_worker.ledger.claims import ClaimManager
from subscription_worker.ledger.config import LedgerConfig
from subscription_worker.ledger.finalizer import StatusFinalizer
from subscription_worker.ledger.repository import LedgerRepository
from subscription_worker.notifications.config import NotificationConfig
from subscription_worker.notifications.fanout import NotificationFanOut
from subscription_worker.notifications.publisher import StreamPublisher
from subscription_worker.notifications.repository import NotificationRepository
from subscription_worker.pipeline.config import PipelineConfig
from subscription_worker.pipeline.orchestrator import SubscriptionPipeline
from subscription_worker.storage.database import Database
from subscription_worker.subscriptions.repository import SubscriptionRepository

logger = structlog.get_logger(__name__)


class PipelineResources:
    """
    Connected dependencies of a pipeline process.

    Usage:
        async with PipelineResources() as resources:
            pipeline = resources.build_pipeline()
            await pipeline.process_due()
    """

    def __init__(
        self,
        database: Database | None = None,
        publisher: StreamPublisher | None = None,
        analyzer: AnalyzerGateway | None = None,
        pipeline_config: PipelineConfig | None = None,
        analyzer_config: AnalyzerConfig | None = None,
        ledger_config: LedgerConfig | None = None,
        notification_config: NotificationConfig | None = None,
    ):
        settings = get_settings()

        self.pipeline_config = pipeline_config or PipelineConfig()
        self.analyzer_config = analyzer_config or AnalyzerConfig()
        self.ledger_config = ledger_config or LedgerConfig()
        self.notification_config = notification_config or NotificationConfig()

        self.database = database or Database()
        self.analyzer = analyzer or AnalyzerGateway(config=self.analyzer_config)

        if publisher is None and self.notification_config.publish_enabled:
            stream_lengths = {}
            if self.notification_config.dlq_topic:
                stream_lengths[self.notification_config.dlq_topic] = (
                    self.notification_config.dlq_max_stream_length
                )
            publisher = StreamPublisher(
                redis_url=str(settings.redis_url),
                max_stream_length=self.notification_config.max_stream_length,
                stream_lengths=stream_lengths,
            )
        self.publisher = publisher

    async def connect(self) -> None:
        """Open every owned connection."""
        await self.database.connect()
        if self.publisher is not None:
            await self.publisher.connect()
        await self.analyzer.open()

    async def close(self) -> None:
        """Close connections, continuing past individual failures."""
        for name, closer in (
            ("analyzer", self.analyzer.close),
            ("publisher", self.publisher.close if self.publisher else None),
            ("database", self.database.close),
        ):
            if closer is None:
                continue
            try:
                await closer()
            except Exception as e:
                logger.warning("Failed to close resource", resource=name, error=str(e))

    async def __aenter__(self) -> "PipelineResources":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    def build_pipeline(self) -> SubscriptionPipeline:
        """Assemble a pipeline over the connected resources."""
        ledger = LedgerRepository(self.database)
        subscriptions = SubscriptionRepository(self.database)

        return SubscriptionPipeline(
            claims=ClaimManager(self.database, ledger),
            finalizer=StatusFinalizer(
                self.database, ledger, subscriptions, config=self.ledger_config
            ),
            subscriptions=subscriptions,
            analyzer=self.analyzer,
            fanout=NotificationFanOut(
                NotificationRepository(self.database),
                publisher=self.publisher,
                config=self.notification_config,
            ),
            config=self.pipeline_config,
            analyzer_config=self.analyzer_config,
            ledger_config=self.ledger_config,
        )

    async def health_check(self) -> dict[str, Any]:
        """Report reachability of the database and the message bus."""
        database_ok = await self.database.health_check()
        publisher_ok = await self.publisher.health_check() if self.publisher else None
        return {
            "healthy": database_ok and publisher_ok is not False,
            "database": database_ok,
            "publisher": publisher_ok,
        }

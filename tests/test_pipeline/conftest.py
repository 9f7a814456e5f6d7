"""Fixtures wiring a SubscriptionPipeline over the in-memory ledger."""

from unittest.mock import AsyncMock

import pytest

from subscription_worker.ledger.claims import ClaimManager
from subscription_worker.ledger.config import LedgerConfig
from subscription_worker.ledger.finalizer import StatusFinalizer
from subscription_worker.notifications.fanout import NotificationFanOut
from subscription_worker.pipeline.config import PipelineConfig
from subscription_worker.pipeline.orchestrator import SubscriptionPipeline


@pytest.fixture
def subscriptions():
    """Subscription repository mock; tests register subscriptions in ``by_id``."""
    repo = AsyncMock()
    repo.by_id = {}

    async def get_by_id(subscription_id):
        return repo.by_id.get(subscription_id)

    repo.get_by_id.side_effect = get_by_id
    repo.touch_last_checked.return_value = True
    return repo


@pytest.fixture
def analyzer():
    gateway = AsyncMock()
    gateway.analyze.return_value = {"results": []}
    return gateway


@pytest.fixture
def notification_repo():
    repo = AsyncMock()
    repo.create.side_effect = lambda notification: notification
    return repo


@pytest.fixture
def event_publisher():
    publisher = AsyncMock()
    publisher.publish.return_value = "1-0"
    return publisher


@pytest.fixture
def pipeline(fake_db, memory_ledger, subscriptions, analyzer, notification_repo, event_publisher):
    return SubscriptionPipeline(
        claims=ClaimManager(fake_db, memory_ledger),
        finalizer=StatusFinalizer(fake_db, memory_ledger, subscriptions, LedgerConfig()),
        subscriptions=subscriptions,
        analyzer=analyzer,
        fanout=NotificationFanOut(notification_repo, event_publisher),
        config=PipelineConfig(max_batch=10, claim_batch_size=2),
    )

"""Tests for ClaimManager against an in-memory skip-locked ledger."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from subscription_worker.ledger.claims import ClaimManager


@pytest.fixture
def claims(fake_db, memory_ledger):
    return ClaimManager(fake_db, memory_ledger)


class TestClaimDue:
    @pytest.mark.asyncio
    async def test_claims_due_record(self, claims, memory_ledger, make_record):
        memory_ledger.add(make_record())

        claimed = await claims.claim_due(limit=5)

        assert len(claimed) == 1
        assert claimed[0].status == "sending"
        assert claimed[0].claim_token
        assert claimed[0].last_run_at is not None

    @pytest.mark.asyncio
    async def test_nothing_due_is_not_an_error(self, claims, memory_ledger, make_record):
        memory_ledger.add(
            make_record(next_run_at=datetime.now(timezone.utc) + timedelta(hours=1))
        )
        memory_ledger.add(make_record(subscription_id="sub-2", status="sending"))

        assert await claims.claim_due(limit=5) == []

    @pytest.mark.asyncio
    async def test_elapsed_completed_record_is_rearmed(self, claims, memory_ledger, make_record):
        memory_ledger.add(make_record(status="completed"))

        claimed = await claims.claim_due()

        assert [r.subscription_id for r in claimed] == ["sub-1"]

    @pytest.mark.asyncio
    async def test_respects_limit(self, claims, memory_ledger, make_record):
        for i in range(5):
            memory_ledger.add(make_record(subscription_id=f"sub-{i}"))

        assert len(await claims.claim_due(limit=2)) == 2

    @pytest.mark.asyncio
    async def test_concurrent_workers_never_double_claim(self, fake_db, memory_ledger, make_record):
        for i in range(3):
            memory_ledger.add(make_record(subscription_id=f"sub-{i}"))
        workers = [ClaimManager(fake_db, memory_ledger) for _ in range(8)]

        results = await asyncio.gather(*(w.claim_due(limit=1) for w in workers))

        claimed_ids = [record.id for batch in results for record in batch]
        assert len(claimed_ids) == len(set(claimed_ids))
        assert sorted(claimed_ids) == ["proc-sub-0", "proc-sub-1", "proc-sub-2"]


class TestClaimSubscription:
    @pytest.mark.asyncio
    async def test_creates_missing_record(self, claims, memory_ledger):
        record = await claims.claim_subscription("sub-new")

        assert record.status == "sending"
        assert memory_ledger.for_subscription("sub-new").status == "sending"

    @pytest.mark.asyncio
    async def test_ignores_next_run_at(self, claims, memory_ledger, make_record):
        memory_ledger.add(
            make_record(status="completed", next_run_at=datetime.now(timezone.utc) + timedelta(days=1))
        )

        record = await claims.claim_subscription("sub-1")

        assert record is not None

    @pytest.mark.asyncio
    async def test_refuses_record_in_flight(self, claims, memory_ledger, make_record):
        memory_ledger.add(make_record(status="processing", claim_token="other"))

        assert await claims.claim_subscription("sub-1") is None
        assert memory_ledger.for_subscription("sub-1").claim_token == "other"

    @pytest.mark.asyncio
    async def test_concurrent_requests_coalesce(self, fake_db, memory_ledger, make_record):
        memory_ledger.add(make_record())
        managers = [ClaimManager(fake_db, memory_ledger) for _ in range(4)]

        results = await asyncio.gather(*(m.claim_subscription("sub-1") for m in managers))

        assert sum(1 for r in results if r is not None) == 1


class TestMarkProcessing:
    @pytest.mark.asyncio
    async def test_keeps_claim_token(self, claims, memory_ledger, make_record):
        memory_ledger.add(make_record())
        [record] = await claims.claim_due()

        processing = await claims.mark_processing(record)

        assert processing.status == "processing"
        assert processing.claim_token == record.claim_token

    @pytest.mark.asyncio
    async def test_lost_claim_returns_none(self, claims, memory_ledger, make_record):
        memory_ledger.add(make_record())
        [record] = await claims.claim_due()
        record.claim_token = "stale"

        assert await claims.mark_processing(record) is None


class TestReclaimStuck:
    @pytest.mark.asyncio
    async def test_old_claims_failed_and_due(self, claims, memory_ledger, make_record):
        memory_ledger.add(
            make_record(
                status="sending",
                claim_token="tok",
                last_run_at=datetime.now(timezone.utc) - timedelta(hours=2),
            )
        )
        memory_ledger.add(
            make_record(
                subscription_id="sub-2",
                status="processing",
                claim_token="tok2",
                last_run_at=datetime.now(timezone.utc),
            )
        )

        reclaimed = await claims.reclaim_stuck(timedelta(minutes=30))

        assert [r.subscription_id for r in reclaimed] == ["sub-1"]
        record = memory_ledger.for_subscription("sub-1")
        assert record.status == "failed"
        assert record.claim_token is None
        assert record.is_due()
        assert memory_ledger.for_subscription("sub-2").status == "processing"

    def test_requires_dependencies(self, fake_db):
        with pytest.raises(ValueError):
            ClaimManager(fake_db, None)

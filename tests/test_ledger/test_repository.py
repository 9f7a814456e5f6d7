"""Tests for LedgerRepository with mocked connections."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from subscription_worker.ledger.repository import LedgerRepository
from subscription_worker.ledger.schemas import ProcessingRecord


@pytest.fixture
def conn():
    return AsyncMock()


@pytest.fixture
def repo():
    return LedgerRepository(AsyncMock())


def _make_db_row(**overrides):
    """Create a mock asyncpg Record as a dict."""
    row = {
        "id": "proc-1",
        "subscription_id": "sub-1",
        "status": "pending",
        "next_run_at": datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc),
        "last_run_at": None,
        "error": None,
        "metadata": {},
        "claim_token": None,
        "created_at": datetime(2026, 2, 1, tzinfo=timezone.utc),
        "updated_at": datetime(2026, 2, 1, tzinfo=timezone.utc),
    }
    row.update(overrides)
    return row


class TestFromRow:
    def test_basic_conversion(self):
        record = ProcessingRecord.from_row(_make_db_row(claim_token="tok"))
        assert record.id == "proc-1"
        assert record.claim_token == "tok"
        assert not record.is_claimed

    def test_metadata_as_string(self):
        record = ProcessingRecord.from_row(_make_db_row(metadata='{"consecutive_failures": 2}'))
        assert record.consecutive_failures == 2

    def test_invalid_status_rejected(self):
        with pytest.raises(ValueError):
            ProcessingRecord.from_row(_make_db_row(status="done"))


class TestFetchDue:
    @pytest.mark.asyncio
    async def test_uses_skip_locked_and_limit(self, repo, conn):
        conn.fetch.return_value = [_make_db_row(), _make_db_row(id="proc-2")]

        records = await repo.fetch_due(conn, 2)

        assert [r.id for r in records] == ["proc-1", "proc-2"]
        sql, limit = conn.fetch.call_args.args
        assert "FOR UPDATE OF sp SKIP LOCKED" in sql
        assert "sp.status IN ('pending', 'failed')" in sql
        assert "s.active = TRUE" in sql
        assert limit == 2


class TestEnsureRecord:
    @pytest.mark.asyncio
    async def test_returns_inserted_row(self, repo, conn):
        conn.fetchrow.return_value = _make_db_row()

        record = await repo.ensure_record(conn, "proc-1", "sub-1")

        assert record.status == "pending"
        assert conn.fetchrow.await_count == 1

    @pytest.mark.asyncio
    async def test_conflict_falls_back_to_existing(self, repo, conn):
        conn.fetchrow.side_effect = [None, _make_db_row(id="proc-existing", status="completed")]

        record = await repo.ensure_record(conn, "proc-new", "sub-1")

        assert record.id == "proc-existing"
        assert "ON CONFLICT (subscription_id) DO NOTHING" in conn.fetchrow.call_args_list[0].args[0]


class TestMarkSending:
    @pytest.mark.asyncio
    async def test_empty_ids_skip_query(self, repo, conn):
        assert await repo.mark_sending(conn, [], "tok") == []
        conn.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_writes_claim_token(self, repo, conn):
        conn.fetch.return_value = [_make_db_row(status="sending", claim_token="tok")]

        claimed = await repo.mark_sending(conn, ["proc-1"], "tok")

        assert claimed[0].status == "sending"
        assert conn.fetch.call_args.args[1:] == (["proc-1"], "tok")


class TestSetStatus:
    @pytest.mark.asyncio
    async def test_fenced_on_claim_token(self, repo, conn):
        conn.fetchrow.return_value = _make_db_row(status="completed")

        record = await repo.set_status(
            conn, "proc-1", "completed", claim_token="tok", metadata={"k": 1}
        )

        assert record.status == "completed"
        sql, *args = conn.fetchrow.call_args.args
        assert "claim_token = $5" in sql
        assert args == ["proc-1", "completed", None, {"k": 1}, "tok", ["processing", "sending"]]

    @pytest.mark.asyncio
    async def test_lost_claim_returns_none(self, repo, conn):
        conn.fetchrow.return_value = None
        assert await repo.set_status(conn, "proc-1", "failed", claim_token="old") is None

    @pytest.mark.asyncio
    async def test_invalid_status_raises(self, repo, conn):
        with pytest.raises(ValueError):
            await repo.set_status(conn, "proc-1", "done", claim_token="tok")
        conn.fetchrow.assert_not_awaited()


class TestRescheduleAndReclaim:
    @pytest.mark.asyncio
    async def test_reschedule_uses_database_clock(self, repo, conn):
        conn.fetchrow.return_value = _make_db_row(status="completed")

        await repo.reschedule_after(conn, "proc-1", timedelta(hours=24))

        sql, record_id, interval = conn.fetchrow.call_args.args
        assert "NOW() + $2::interval" in sql
        assert interval == timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_reclaim_returns_failed_records(self, repo, conn):
        conn.fetch.return_value = [_make_db_row(status="failed", error="Processing abandoned")]

        records = await repo.reclaim_stuck(conn, timedelta(minutes=30), 10)

        assert records[0].status == "failed"
        sql = conn.fetch.call_args.args[0]
        assert "status IN ('sending', 'processing')" in sql
        assert "SKIP LOCKED" in sql

    @pytest.mark.asyncio
    async def test_rearm_counts_updated_rows(self, repo, conn):
        conn.execute.return_value = "UPDATE 3"

        assert await repo.rearm_elapsed(conn, 10) == 3
        assert "status IN ('completed', 'skipped')" in conn.execute.call_args.args[0]

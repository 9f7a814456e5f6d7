"""Tests for the trigger stream queue."""

from unittest.mock import AsyncMock

import pytest

from subscription_worker.pipeline.config import PipelineConfig
from subscription_worker.pipeline.triggers import TriggerQueue


@pytest.fixture
def queue():
    q = TriggerQueue("redis://localhost:6379/1", PipelineConfig(trigger_stream_name="triggers"))
    q._redis = AsyncMock()
    q._redis.xadd.return_value = "5-0"
    return q


class TestTriggerQueue:
    def test_stream_config_from_pipeline_config(self, queue):
        assert queue.stream_config.stream_name == "triggers"
        assert queue.stream_config.consumer_group == "subscription_workers"
        assert queue.stream_config.max_delivery_attempts == 3

    def test_parse_job(self, queue):
        trigger = queue._parse_job("1-0", {"subscription_id": " sub-1 "}, 2)
        assert trigger.subscription_id == "sub-1"
        assert trigger.deliveries == 2

    def test_parse_job_without_id_fails(self, queue):
        with pytest.raises(ValueError):
            queue._parse_job("1-0", {"other": "x"}, 1)

    @pytest.mark.asyncio
    async def test_publish(self, queue):
        message_id = await queue.publish("sub-1")

        assert message_id == "5-0"
        kwargs = queue._redis.xadd.await_args.kwargs
        assert kwargs["name"] == "triggers"
        assert kwargs["fields"]["subscription_id"] == "sub-1"
        assert kwargs["approximate"] is True

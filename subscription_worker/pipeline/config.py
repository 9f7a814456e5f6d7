"""
Pipeline orchestration and worker configuration.

Batch sizes and polling cadence for the due scan, and the Redis Stream
used to push on-demand processing triggers to workers.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PipelineConfig(BaseSettings):
    """
    Configuration for the pipeline orchestrator and polling worker.

    Settings can be overridden via environment variables prefixed with PIPELINE_.

    Example:
        PIPELINE_MAX_BATCH=100
        PIPELINE_POLL_INTERVAL_SECONDS=30
        PIPELINE_TRIGGERS_ENABLED=false
    """

    model_config = SettingsConfigDict(
        env_prefix="PIPELINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Due scan
    max_batch: int = Field(
        default=50,
        ge=1,
        le=10_000,
        description="Records processed per process_due pass",
    )
    claim_batch_size: int = Field(
        default=1,
        ge=1,
        le=100,
        description="Records claimed per claim transaction",
    )
    poll_interval_seconds: float = Field(
        default=60.0,
        ge=0.1,
        le=3600.0,
        description="Sleep between due scans when the previous pass drained the queue",
    )

    # Push triggers
    triggers_enabled: bool = Field(
        default=True,
        description="Consume on-demand triggers alongside polling",
    )
    trigger_stream_name: str = Field(
        default="subscription_triggers",
        description="Redis stream carrying subscription ids to process now",
    )
    trigger_consumer_group: str = Field(
        default="subscription_workers",
        description="Consumer group shared by all workers",
    )
    trigger_dlq_stream_name: str = Field(
        default="subscription_triggers:dlq",
        description="Dead letter stream for unusable triggers",
    )
    trigger_max_stream_length: int = Field(
        default=10_000,
        ge=100,
        description="Approximate MAXLEN for the trigger stream",
    )
    trigger_idle_timeout_ms: int = Field(
        default=900_000,
        ge=1_000,
        description="Idle time before another worker reclaims an unacknowledged trigger (ms)",
    )
    trigger_max_delivery_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Deliveries before a trigger is dead-lettered",
    )
    trigger_block_ms: int = Field(
        default=5_000,
        ge=100,
        le=60_000,
        description="XREADGROUP block time",
    )

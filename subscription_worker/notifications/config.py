"""
Notification fan-out configuration.

Message-bus topics (Redis Streams) for notification events and their
dead-letter destination.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NotificationConfig(BaseSettings):
    """
    Configuration for notification publishing.

    Settings can be overridden via environment variables prefixed with NOTIFICATIONS_.

    Example:
        NOTIFICATIONS_TOPIC=processor-results
        NOTIFICATIONS_DLQ_TOPIC=        # empty disables dead-lettering
    """

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATIONS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    topic: str = Field(
        default="processor-results",
        min_length=1,
        description="Stream receiving notification events",
    )
    dlq_topic: str | None = Field(
        default="processor-results-dlq",
        description="Stream receiving events that failed to publish (empty disables)",
    )
    max_stream_length: int = Field(
        default=100_000,
        ge=1_000,
        description="Approximate MAXLEN for the event stream",
    )
    dlq_max_stream_length: int = Field(
        default=10_000,
        ge=100,
        description="Approximate MAXLEN for the dead-letter stream",
    )
    publish_enabled: bool = Field(
        default=True,
        description="Publish events after persisting notifications",
    )

    @property
    def dlq_enabled(self) -> bool:
        """Whether failed publishes are rerouted."""
        return bool(self.dlq_topic)

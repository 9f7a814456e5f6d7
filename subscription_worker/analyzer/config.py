"""
Analyzer gateway configuration.

Retry, backoff and timeout settings for calls to the external content
analyzer, plus request defaults.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from subscription_worker.queues.backoff import ExponentialBackoff


class AnalyzerConfig(BaseSettings):
    """
    Configuration for the analyzer gateway.

    Settings can be overridden via environment variables prefixed with ANALYZER_.

    Example:
        ANALYZER_API_KEY=secret
        ANALYZER_MAX_RETRIES=5
        ANALYZER_BASE_TIMEOUT_SECONDS=60
    """

    model_config = SettingsConfigDict(
        env_prefix="ANALYZER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Request
    api_key: str | None = Field(
        default=None,
        description="Bearer token sent to the analyzer",
    )
    endpoint_path: str = Field(
        default="/analyze-text",
        description="Path appended to the subscription type's parser_url",
    )
    result_limit: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Matches requested per prompt when the subscription sets no limit",
    )

    # Retry policy
    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Additional attempts after the first on transient failures",
    )
    base_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=60.0,
        description="Backoff before the first retry, doubled per retry",
    )
    max_delay_seconds: float = Field(
        default=20.0,
        ge=0.0,
        le=600.0,
        description="Backoff ceiling; must exceed the longest scheduled retry delay",
    )
    jitter_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=10.0,
        description="Upper bound of random delay added to each backoff",
    )

    # Adaptive timeout
    base_timeout_seconds: float = Field(
        default=120.0,
        gt=0.0,
        le=900.0,
        description="Request timeout of the first attempt",
    )
    timeout_multiplier: float = Field(
        default=1.5,
        ge=1.0,
        le=4.0,
        description="Factor applied to the timeout on each retry",
    )
    max_timeout_seconds: float = Field(
        default=240.0,
        gt=0.0,
        le=1800.0,
        description="Absolute request timeout ceiling",
    )

    @model_validator(mode="after")
    def _check_ceilings(self) -> "AnalyzerConfig":
        if self.max_timeout_seconds < self.base_timeout_seconds:
            raise ValueError("max_timeout_seconds must be >= base_timeout_seconds")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        schedule = ExponentialBackoff(
            base_delay=self.base_delay_seconds,
            max_delay=self.max_delay_seconds,
            jitter=self.jitter_seconds,
        )
        # Retry delays must keep growing, so the ceiling may not cut any of them
        if schedule.reaches_ceiling(self.max_retries):
            raise ValueError(
                f"max_delay_seconds={self.max_delay_seconds} caps the backoff before "
                f"retry {self.max_retries}; raise it or lower max_retries"
            )
        return self

"""
Processing ledger configuration.

Scheduling intervals for finalized records and the opt-in stuck-record
sweep.
"""

from datetime import timedelta

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerConfig(BaseSettings):
    """
    Configuration for ledger scheduling.

    Settings can be overridden via environment variables prefixed with LEDGER_.

    Example:
        LEDGER_FAILURE_COOLDOWN_MINUTES=10
        LEDGER_RECLAIM_ENABLED=true
    """

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Cadence
    daily_interval_hours: float = Field(
        default=24.0,
        gt=0.0,
        description="Delay before re-running a daily subscription",
    )
    immediate_interval_hours: float = Field(
        default=1.0,
        gt=0.0,
        description="Delay before re-running an immediate subscription",
    )

    # Failure handling
    failure_cooldown_minutes: float = Field(
        default=5.0,
        gt=0.0,
        le=1440.0,
        description="Delay before a failed record becomes due again",
    )
    max_consecutive_failures: int = Field(
        default=3,
        ge=1,
        le=50,
        description="Failures retried on the short cooldown before falling back to the regular cadence",
    )

    # Stuck-record sweep
    reclaim_enabled: bool = Field(
        default=False,
        description="Let workers move records stuck in sending/processing back to failed",
    )
    stuck_timeout_minutes: float = Field(
        default=30.0,
        ge=5.0,
        description="Age of last_run_at after which a claimed record counts as stuck",
    )
    reclaim_batch_size: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="Maximum records reclaimed per sweep",
    )

    def cadence_for(self, frequency: str) -> timedelta:
        """Regular re-run interval for a subscription frequency."""
        if frequency == "daily":
            return timedelta(hours=self.daily_interval_hours)
        return timedelta(hours=self.immediate_interval_hours)

    @property
    def failure_cooldown(self) -> timedelta:
        """Delay applied to a failed record while under the failure cap."""
        return timedelta(minutes=self.failure_cooldown_minutes)

    @property
    def stuck_timeout(self) -> timedelta:
        """Age after which a claimed record is considered abandoned."""
        return timedelta(minutes=self.stuck_timeout_minutes)

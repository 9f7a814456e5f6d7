"""Schema definitions for the processing ledger.

Maps 1:1 to the ``subscription_processing`` table. Each record tracks
the outstanding or most recent pipeline run for one subscription.
A record is due when it is pending or failed and its ``next_run_at``
has passed. Completed and skipped records are re-armed to pending by
the claim transaction once their ``next_run_at`` passes, so no status
is terminal.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

ProcessingStatus = Literal[
    "pending",
    "sending",
    "processing",
    "completed",
    "failed",
    "skipped",
]

VALID_STATUSES: frozenset[str] = frozenset({
    "pending",
    "sending",
    "processing",
    "completed",
    "failed",
    "skipped",
})

# Statuses the due scan may claim
DUE_STATUSES: frozenset[str] = frozenset({"pending", "failed"})

# Statuses that mean a worker currently holds the record
CLAIMED_STATUSES: frozenset[str] = frozenset({"sending", "processing"})


@dataclass
class ProcessingRecord:
    """A row of the processing ledger.

    Attributes:
        id: Ledger-internal UUID, immutable.
        subscription_id: Subscription this record schedules (unique).
        status: Lifecycle state.
        next_run_at: When the record becomes due again.
        last_run_at: When the record was last claimed.
        error: Last failure message, cleared on success.
        metadata: Diagnostic JSON bag (last_run_stats, last_error, ...).
        claim_token: Token written by the claim that currently holds the
            record; finalize writes must present it.
        created_at: Row creation time.
        updated_at: Last modification time.
    """

    id: str
    subscription_id: str
    status: str = "pending"
    next_run_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    last_run_at: datetime | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    claim_token: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.status not in VALID_STATUSES:
            raise ValueError(
                f"Invalid status {self.status!r}. "
                f"Must be one of: {sorted(VALID_STATUSES)}"
            )

    @property
    def is_claimed(self) -> bool:
        """True while a worker holds the record."""
        return self.status in CLAIMED_STATUSES

    @property
    def consecutive_failures(self) -> int:
        """Failures since the last successful or skipped run."""
        value = self.metadata.get("consecutive_failures", 0)
        return value if isinstance(value, int) else 0

    def is_due(self, now: datetime | None = None) -> bool:
        """Whether the due scan would pick this record up at ``now``."""
        now = now or datetime.now(timezone.utc)
        return self.status in DUE_STATUSES and self.next_run_at <= now

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "id": self.id,
            "subscription_id": self.subscription_id,
            "status": self.status,
            "next_run_at": self.next_run_at.isoformat(),
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "error": self.error,
            "metadata": self.metadata,
        }

    @classmethod
    def from_row(cls, row: Any) -> "ProcessingRecord":
        """Create a ProcessingRecord from an asyncpg Record or dict."""
        metadata = row.get("metadata") or {}
        if isinstance(metadata, str):
            metadata = json.loads(metadata)

        claim_token = row.get("claim_token")

        return cls(
            id=str(row["id"]),
            subscription_id=str(row["subscription_id"]),
            status=row["status"],
            next_run_at=row["next_run_at"],
            last_run_at=row.get("last_run_at"),
            error=row.get("error"),
            metadata=metadata,
            claim_token=str(claim_token) if claim_token else None,
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

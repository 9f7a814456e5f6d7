"""Result types returned by the pipeline orchestrator.

Callers (CLI, HTTP layer, trigger consumer) always receive one of
these, never an exception, for anything short of a programming error.
"""

from dataclasses import dataclass, field
from typing import Any, Literal

OutcomeStatus = Literal["success", "error", "skipped", "already_processing"]

AckStatus = Literal["accepted", "already_processing", "not_found", "error"]


@dataclass
class ProcessOutcome:
    """Result of running the pipeline for one subscription.

    Attributes:
        status: success, error, skipped, or already_processing.
        subscription_id: Subscription processed.
        trace_id: Run correlation id (None when no run started).
        processing_id: Ledger record used for the run.
        subscription_type: Type name, used for per-type summaries.
        matches_count: Matches returned by the analyzer after normalization.
        notifications_created: Notifications persisted.
        notification_errors: Notification inserts that failed.
        publish_errors: Events that failed to publish.
        reason: Machine-readable reason for skips and rejections.
        error: Failure message for error outcomes.
    """

    status: OutcomeStatus
    subscription_id: str
    trace_id: str | None = None
    processing_id: str | None = None
    subscription_type: str = "unknown"
    matches_count: int = 0
    notifications_created: int = 0
    notification_errors: int = 0
    publish_errors: int = 0
    reason: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary, omitting unset fields."""
        data: dict[str, Any] = {
            "status": self.status,
            "subscription_id": self.subscription_id,
            "trace_id": self.trace_id,
            "processing_id": self.processing_id,
            "matches_count": self.matches_count,
            "notifications_created": self.notifications_created,
            "notification_errors": self.notification_errors,
            "publish_errors": self.publish_errors,
        }
        if self.reason:
            data["reason"] = self.reason
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class BatchSummary:
    """Aggregate result of a process_due pass."""

    processed: int = 0
    success_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    by_type: dict[str, dict[str, int]] = field(default_factory=dict)
    claim_error: str | None = None

    def add(self, outcome: ProcessOutcome) -> None:
        """Fold one job outcome into the totals."""
        self.processed += 1
        bucket = self.by_type.setdefault(
            outcome.subscription_type, {"success": 0, "error": 0, "skipped": 0}
        )
        if outcome.status == "success":
            self.success_count += 1
            bucket["success"] += 1
        elif outcome.status == "skipped":
            self.skipped_count += 1
            bucket["skipped"] += 1
        else:
            self.error_count += 1
            bucket["error"] += 1

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        data: dict[str, Any] = {
            "processed": self.processed,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "skipped_count": self.skipped_count,
            "by_type": {name: dict(counts) for name, counts in self.by_type.items()},
        }
        if self.claim_error:
            data["claim_error"] = self.claim_error
        return data


@dataclass
class Acknowledgement:
    """Immediate answer to a fire-and-forget processing request."""

    status: AckStatus
    subscription_id: str
    processing_id: str | None = None
    message: str = ""

    @property
    def accepted(self) -> bool:
        """Whether a background run was started."""
        return self.status == "accepted"

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "status": self.status,
            "subscription_id": self.subscription_id,
            "processing_id": self.processing_id,
            "message": self.message,
        }

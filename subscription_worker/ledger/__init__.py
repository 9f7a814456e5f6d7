"""Processing ledger: the durable job table and the two components allowed to write it.

Components:
- ProcessingRecord: Dataclass mapping to the subscription_processing table
- LedgerRepository: Store operations run inside caller-owned transactions
- ClaimManager: Skip-locked claiming of due records (pending/failed -> sending)
- StatusFinalizer: Terminal status writes and next-run scheduling
- LedgerConfig: Cadence, failure cool-down and stuck-record sweep settings
- ProcessingStatus / VALID_STATUSES: Literal type and frozenset for validation
"""

from subscription_worker.ledger.claims import ClaimManager
from subscription_worker.ledger.config import LedgerConfig
from subscription_worker.ledger.finalizer import StatusFinalizer
from subscription_worker.ledger.repository import LedgerRepository
from subscription_worker.ledger.schemas import (
    CLAIMED_STATUSES,
    DUE_STATUSES,
    VALID_STATUSES,
    ProcessingRecord,
    ProcessingStatus,
)

__all__ = [
    "CLAIMED_STATUSES",
    "ClaimManager",
    "DUE_STATUSES",
    "LedgerConfig",
    "LedgerRepository",
    "ProcessingRecord",
    "ProcessingStatus",
    "StatusFinalizer",
    "VALID_STATUSES",
]

"""PostgreSQL storage layer shared by the ledger, subscription and notification repositories."""

from subscription_worker.storage.database import Database

__all__ = ["Database"]

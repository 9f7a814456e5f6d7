"""
Subscription dispatch pipeline.

Claim a ledger record, call the type's analyzer, normalize its matches,
persist and publish notifications, and finalize the ledger record with
its next run time.

Components:
- SubscriptionPipeline: Claim, analyze, fan-out, finalize orchestration
- PipelineWorker: Supervised polling worker with trigger consumption
- PipelineResources: Connected database, publisher and analyzer client
- TriggerQueue: Redis stream of on-demand processing requests
"""

from subscription_worker.pipeline.config import PipelineConfig
from subscription_worker.pipeline.factory import PipelineResources
from subscription_worker.pipeline.orchestrator import SubscriptionPipeline
from subscription_worker.pipeline.schemas import (
    Acknowledgement,
    BatchSummary,
    ProcessOutcome,
)
from subscription_worker.pipeline.triggers import ProcessTrigger, TriggerQueue
from subscription_worker.pipeline.worker import PipelineWorker

__all__ = [
    "Acknowledgement",
    "BatchSummary",
    "PipelineConfig",
    "PipelineResources",
    "PipelineWorker",
    "ProcessOutcome",
    "ProcessTrigger",
    "SubscriptionPipeline",
    "TriggerQueue",
]

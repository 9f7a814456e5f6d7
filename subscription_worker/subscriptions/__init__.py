"""Read-only access to subscriptions and their types.

Components:
- Subscription: Dataclass joining a subscription row with its type's analyzer endpoint
- SubscriptionRepository: Lookup by id and best-effort "last checked" bookkeeping
- normalize_prompts: Coerces stored prompts (list, JSON string, plain string) to a clean list
- DEFAULT_PROMPTS: Fallback prompts when none are usable
"""

from subscription_worker.subscriptions.repository import SubscriptionRepository
from subscription_worker.subscriptions.schemas import (
    DEFAULT_PROMPTS,
    VALID_FREQUENCIES,
    Subscription,
    SubscriptionFrequency,
    normalize_prompts,
)

__all__ = [
    "DEFAULT_PROMPTS",
    "Subscription",
    "SubscriptionFrequency",
    "SubscriptionRepository",
    "VALID_FREQUENCIES",
    "normalize_prompts",
]

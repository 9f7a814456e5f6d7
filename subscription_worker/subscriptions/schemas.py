"""Schema definitions for subscriptions.

A subscription is a user's standing set of search prompts against one
document feed (its *type*). The type row carries the analyzer endpoint
(``parser_url``); a type without one cannot be processed and its
subscriptions are skipped. Subscriptions are owned by an external
management service, so this package only reads them.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

logger = logging.getLogger(__name__)

SubscriptionFrequency = Literal["immediate", "daily"]

VALID_FREQUENCIES: frozenset[str] = frozenset({"immediate", "daily"})

DEFAULT_PROMPTS: tuple[str, ...] = ("Información general", "Noticias importantes")


def normalize_prompts(raw: Any) -> list[str]:
    """Coerce a stored prompts value into a non-empty list of strings.

    Accepts a list, a JSON-encoded array, or a single plain string.
    Blank entries are dropped. Falls back to DEFAULT_PROMPTS when nothing
    usable remains.

    Args:
        raw: Value read from the ``prompts`` column.

    Returns:
        List of stripped prompt strings.
    """
    items: list[Any]
    if isinstance(raw, str):
        text = raw.strip()
        if text.startswith("["):
            try:
                decoded = json.loads(text)
            except json.JSONDecodeError:
                logger.warning("Prompts look like JSON but failed to parse")
                decoded = [text]
            items = decoded if isinstance(decoded, list) else [decoded]
        else:
            items = [text]
    elif isinstance(raw, (list, tuple)):
        items = list(raw)
    else:
        items = []

    prompts = [str(p).strip() for p in items if isinstance(p, (str, int, float))]
    prompts = [p for p in prompts if p]
    return prompts or list(DEFAULT_PROMPTS)


@dataclass
class Subscription:
    """A subscription joined with its type.

    Attributes:
        id: Subscription UUID.
        user_id: Owning user.
        type_id: Subscription type identifier.
        type_name: Type name (e.g. ``boe``), used for metrics.
        type_slug: URL-safe type key, prefix of notification entity types.
            Falls back to the lowercased type name.
        name: Display name.
        prompts: Search prompts sent to the analyzer.
        frequency: Re-run cadence (``immediate`` checks hourly, ``daily`` daily).
        active: Whether the due scan should pick this subscription up.
        match_limit: Per-subscription cap on analyzer matches, if any.
        parser_url: Analyzer base URL for the type, None when unconfigured.
        metadata: Free-form JSON bag.
        last_check_at: Last time the pipeline touched this subscription.
    """

    id: str
    user_id: str
    type_id: str
    type_name: str
    prompts: list[str]
    type_slug: str = ""
    name: str = ""
    frequency: str = "daily"
    active: bool = True
    match_limit: int | None = None
    parser_url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    last_check_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.type_slug:
            self.type_slug = self.type_name.strip().lower()
        if self.frequency not in VALID_FREQUENCIES:
            raise ValueError(
                f"Invalid frequency {self.frequency!r}. "
                f"Must be one of: {sorted(VALID_FREQUENCIES)}"
            )
        if self.match_limit is not None and self.match_limit < 1:
            raise ValueError(f"match_limit must be positive, got {self.match_limit}")

    @property
    def has_analyzer(self) -> bool:
        """True when the subscription's type has an analyzer endpoint."""
        return bool(self.parser_url and self.parser_url.strip())

    @classmethod
    def from_row(cls, row: Any) -> "Subscription":
        """Build a Subscription from a joined subscriptions/subscription_types row."""
        metadata = row.get("metadata") or {}
        if isinstance(metadata, str):
            metadata = json.loads(metadata)

        frequency = row.get("frequency") or "daily"
        if frequency not in VALID_FREQUENCIES:
            logger.warning(
                "Unknown frequency %r on subscription %s, treating as daily",
                frequency,
                row["id"],
            )
            frequency = "daily"

        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            type_id=str(row["type_id"]),
            type_name=row.get("type_name") or str(row["type_id"]),
            type_slug=row.get("type_slug") or "",
            name=row.get("name") or "",
            prompts=normalize_prompts(row.get("prompts")),
            frequency=frequency,
            active=bool(row.get("active", True)),
            match_limit=row.get("match_limit"),
            parser_url=row.get("parser_url"),
            metadata=metadata,
            last_check_at=row.get("last_check_at"),
        )

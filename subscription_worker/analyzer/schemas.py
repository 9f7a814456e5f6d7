"""Schema definitions for analyzer requests and normalized matches.

``AnalyzerRequest`` is what the gateway sends; ``Match`` is what the
normalizer produces from whatever the analyzer sends back. Matches are
ephemeral: fan-out turns each one into a notification and drops it.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any


@dataclass
class AnalyzerRequest:
    """Payload for one analyzer call.

    Attributes:
        prompts: Search prompts, in the subscription's order.
        user_id: Owner of the subscription.
        subscription_id: Subscription being processed.
        type_id: Subscription type identifier.
        type_name: Subscription type name.
        trace_id: Pipeline run correlation id.
        query_date: Publication date the analyzer should search.
        limit: Maximum matches per prompt.
    """

    prompts: list[str]
    user_id: str
    subscription_id: str
    type_id: str
    type_name: str
    trace_id: str
    query_date: date = field(default_factory=date.today)
    limit: int = 5

    def __post_init__(self) -> None:
        if not self.prompts:
            raise ValueError("AnalyzerRequest needs at least one prompt")

    def to_payload(self) -> dict[str, Any]:
        """Wire format expected by the analyzer's text endpoint."""
        return {
            "texts": list(self.prompts),
            "metadata": {
                "user_id": self.user_id,
                "subscription_id": self.subscription_id,
                "type_id": self.type_id,
                "type_name": self.type_name,
                "trace_id": self.trace_id,
            },
            "limit": self.limit,
            "date": self.query_date.isoformat(),
        }


@dataclass
class Match:
    """A normalized analyzer match.

    Attributes:
        prompt: Prompt that produced the match.
        document_type: Kind of document (e.g. ``resolution``), ``generic`` if unknown.
        title: Original document title.
        notification_title: Title to show in the notification.
        summary: Short description, never empty.
        relevance_score: Analyzer relevance, 0.0 when missing.
        publication_date: ISO date the document was published.
        links: ``html`` / ``pdf`` URLs when present.
        issuing_body: Authority that issued the document.
        section: Bulletin section.
    """

    prompt: str
    document_type: str
    title: str
    notification_title: str
    summary: str
    relevance_score: float = 0.0
    publication_date: str = field(default_factory=lambda: date.today().isoformat())
    links: dict[str, str] = field(default_factory=dict)
    issuing_body: str = ""
    section: str = ""

    @property
    def source_url(self) -> str | None:
        """Primary link to the document."""
        return self.links.get("html") or self.links.get("pdf")

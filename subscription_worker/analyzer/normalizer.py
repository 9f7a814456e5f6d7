"""
Result normalizer - analyzer response to a flat list of Match.

Analyzer output is untrusted and loosely shaped: groups may lack a
prompt, matches may lack any field, and entries may not even be
objects. Everything is read with presence checks and defaulted; entries
that are not mappings are dropped with a log line. The mapping is pure
apart from logging and reading today's date for defaults.

Accepted shapes:
    {"results": [{"prompt": ..., "matches": [...]}, ...]}
    {"matches": [...]} or {"entries": [...]}
    [{"prompt": ..., "matches": [...]}, ...]
"""

from collections.abc import Mapping, Sequence
from datetime import date
from typing import Any

import structlog

from subscription_worker.analyzer.schemas import Match

logger = structlog.get_logger(__name__)

DEFAULT_DOCUMENT_TYPE = "generic"
UNTITLED_DOCUMENT = "Documento sin título"
SUMMARY_PLACEHOLDER = "Sin contenido disponible"
MAX_TITLE_LENGTH = 80


def _text(value: Any) -> str:
    """Stripped string for scalar values, empty string otherwise."""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _is_usable_title(title: str) -> bool:
    """Reject placeholder titles analyzers sometimes echo back from their schema."""
    return (
        len(title) > 3
        and title.lower() != "string"
        and "notification" not in title.lower()
    )


def _truncate(title: str, limit: int = MAX_TITLE_LENGTH) -> str:
    if len(title) <= limit:
        return title
    return title[: limit - 3].rstrip() + "..."


def build_notification_title(
    entry: Mapping[str, Any],
    document_type: str,
    issuing_body: str,
    publication_date: str,
) -> str:
    """
    Choose the title shown in a notification.

    Fallback order: the analyzer's notification_title, the document's own
    title (truncated to MAX_TITLE_LENGTH with an ellipsis), a title
    synthesized from type, issuer and date, and finally a generic alert
    title dated today.
    """
    explicit = _text(entry.get("notification_title"))
    if _is_usable_title(explicit):
        return _truncate(explicit)

    original = _text(entry.get("title"))
    if _is_usable_title(original):
        return _truncate(original)

    if document_type and issuing_body:
        return _truncate(f"{document_type} de {issuing_body} ({publication_date})")

    return f"Alerta de documento: {date.today().isoformat()}"


def _relevance(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return 0.0
    return 0.0


def _publication_date(entry: Mapping[str, Any]) -> str:
    value = _text(entry.get("publication_date"))
    if not value:
        dates = entry.get("dates")
        if isinstance(dates, Mapping):
            value = _text(dates.get("publication_date"))
    return value or date.today().isoformat()


def _links(value: Any) -> dict[str, str]:
    if isinstance(value, str) and value.strip():
        return {"html": value.strip()}
    if not isinstance(value, Mapping):
        return {}
    return {
        key: _text(value.get(key))
        for key in ("html", "pdf")
        if _text(value.get(key))
    }


def normalize_match(entry: Mapping[str, Any], prompt: str) -> Match:
    """Map one analyzer match object to a Match, defaulting missing fields."""
    document_type = _text(entry.get("document_type")) or DEFAULT_DOCUMENT_TYPE
    issuing_body = _text(entry.get("issuing_body")) or _text(entry.get("department"))
    publication_date = _publication_date(entry)
    summary = _text(entry.get("summary")) or _text(entry.get("content"))

    return Match(
        prompt=prompt,
        document_type=document_type,
        title=_text(entry.get("title")) or UNTITLED_DOCUMENT,
        notification_title=build_notification_title(
            entry, document_type, issuing_body, publication_date
        ),
        summary=summary or SUMMARY_PLACEHOLDER,
        relevance_score=_relevance(entry.get("relevance_score", entry.get("relevance"))),
        publication_date=publication_date,
        links=_links(entry.get("links")),
        issuing_body=issuing_body,
        section=_text(entry.get("section")),
    )


def _groups(response: Any) -> list[Any]:
    if isinstance(response, Mapping):
        for key in ("results", "matches", "entries"):
            value = response.get(key)
            if isinstance(value, Sequence) and not isinstance(value, str):
                if key == "results":
                    return list(value)
                # Flat match list: one anonymous group
                return [{"matches": list(value)}]
        return []
    if isinstance(response, Sequence) and not isinstance(response, str):
        return list(response)
    return []


def normalize_response(response: Any, prompts: Sequence[str]) -> list[Match]:
    """
    Flatten an analyzer response into matches, in group then match order.

    Args:
        response: Decoded analyzer body
        prompts: Prompts sent in the request; group i without its own
            prompt is attributed to prompts[i]

    Returns:
        Normalized matches
    """
    matches: list[Match] = []
    dropped = 0

    for index, group in enumerate(_groups(response)):
        if not isinstance(group, Mapping):
            dropped += 1
            continue

        prompt = _text(group.get("prompt"))
        if not prompt:
            prompt = prompts[index] if index < len(prompts) else (prompts[0] if prompts else "")

        entries = group.get("matches")
        if entries is None and ("title" in group or "document_type" in group):
            # Some analyzers return matches directly under "results"
            entries = [group]
            prompt = _text(group.get("prompt")) or (prompts[0] if prompts else "")
        if not isinstance(entries, Sequence) or isinstance(entries, str):
            continue

        for entry in entries:
            if not isinstance(entry, Mapping):
                dropped += 1
                continue
            matches.append(normalize_match(entry, prompt))

    if dropped:
        logger.warning("Dropped malformed analyzer entries", dropped=dropped)

    logger.debug("Normalized analyzer response", matches=len(matches))
    return matches

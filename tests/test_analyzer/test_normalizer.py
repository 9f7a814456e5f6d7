"""Tests for analyzer response normalization."""

from datetime import date

import pytest

from subscription_worker.analyzer.normalizer import (
    DEFAULT_DOCUMENT_TYPE,
    SUMMARY_PLACEHOLDER,
    UNTITLED_DOCUMENT,
    build_notification_title,
    normalize_match,
    normalize_response,
)


class TestNormalizeResponse:
    """Tests for flattening grouped analyzer results."""

    def test_groups_flattened_in_order(self, analyzer_match):
        response = {
            "results": [
                {"prompt": "ley", "matches": [analyzer_match("A doc"), analyzer_match("B doc")]},
                {"prompt": "decreto", "matches": [analyzer_match("C doc")]},
            ]
        }

        matches = normalize_response(response, ["ley", "decreto"])

        assert [m.title for m in matches] == ["A doc", "B doc", "C doc"]
        assert [m.prompt for m in matches] == ["ley", "ley", "decreto"]

    def test_group_without_prompt_uses_request_prompt(self, analyzer_match):
        response = {"results": [{"matches": []}, {"matches": [analyzer_match()]}]}

        matches = normalize_response(response, ["ley", "decreto"])

        assert matches[0].prompt == "decreto"

    def test_empty_and_unexpected_shapes(self):
        assert normalize_response({"results": []}, ["ley"]) == []
        assert normalize_response({}, ["ley"]) == []
        assert normalize_response("nonsense", ["ley"]) == []
        assert normalize_response(None, ["ley"]) == []

    def test_flat_match_list(self, analyzer_match):
        matches = normalize_response({"matches": [analyzer_match()]}, ["ley"])
        assert len(matches) == 1
        assert matches[0].prompt == "ley"

    def test_direct_matches_under_results(self, analyzer_match):
        matches = normalize_response({"results": [analyzer_match()]}, ["ley", "decreto"])
        assert len(matches) == 1
        assert matches[0].prompt == "ley"

    def test_malformed_entries_dropped(self, analyzer_match):
        response = {
            "results": [
                "not a group",
                {"prompt": "ley", "matches": [analyzer_match(), 42, None, "text"]},
            ]
        }

        matches = normalize_response(response, ["ley"])

        assert len(matches) == 1
        assert matches[0].title == "Ley 5/2026 de presupuestos"


class TestNormalizeMatch:
    """Tests for per-match defaults."""

    def test_all_fields_mapped(self, analyzer_match):
        match = normalize_match(analyzer_match(), "ley")

        assert match.document_type == "Ley"
        assert match.relevance_score == pytest.approx(0.92)
        assert match.publication_date == "2026-03-02"
        assert match.source_url == "https://boe.test/doc/1"
        assert match.issuing_body == "Jefatura del Estado"

    def test_empty_entry_gets_defaults(self):
        match = normalize_match({}, "ley")

        assert match.document_type == DEFAULT_DOCUMENT_TYPE
        assert match.title == UNTITLED_DOCUMENT
        assert match.summary == SUMMARY_PLACEHOLDER
        assert match.relevance_score == 0.0
        assert match.publication_date == date.today().isoformat()
        assert match.links == {}
        assert match.source_url is None

    def test_relevance_from_string_or_garbage(self):
        assert normalize_match({"relevance_score": "0.5"}, "p").relevance_score == 0.5
        assert normalize_match({"relevance_score": "high"}, "p").relevance_score == 0.0
        assert normalize_match({"relevance": 0.7}, "p").relevance_score == 0.7

    def test_pdf_link_used_when_no_html(self):
        match = normalize_match({"links": {"pdf": "https://boe.test/1.pdf"}}, "p")
        assert match.source_url == "https://boe.test/1.pdf"

    def test_nested_publication_date(self):
        match = normalize_match({"dates": {"publication_date": "2026-01-10"}}, "p")
        assert match.publication_date == "2026-01-10"


class TestBuildNotificationTitle:
    """Tests for the notification title fallback chain."""

    def test_explicit_title_preferred(self):
        title = build_notification_title(
            {"notification_title": "Nueva ley", "title": "Original"}, "Ley", "BOE", "2026-01-01"
        )
        assert title == "Nueva ley"

    def test_placeholder_titles_skipped(self):
        title = build_notification_title(
            {"notification_title": "string", "title": "Real document title"},
            "Ley",
            "BOE",
            "2026-01-01",
        )
        assert title == "Real document title"

    def test_long_title_truncated(self):
        title = build_notification_title({"title": "x" * 200}, "Ley", "BOE", "2026-01-01")
        assert len(title) == 80
        assert title.endswith("...")

    def test_synthesized_from_document_details(self):
        title = build_notification_title({"title": "abc"}, "Resolución", "BOE", "2026-01-01")
        assert title == "Resolución de BOE (2026-01-01)"

    def test_generic_fallback(self):
        title = build_notification_title({}, "generic", "", "2026-01-01")
        assert title == f"Alerta de documento: {date.today().isoformat()}"

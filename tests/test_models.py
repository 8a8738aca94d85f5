"""Unit tests for item and insight models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from models import Insight, InsightCategory, InsightDraft, Item, Priority, Sentiment, normalize_topics
from models.insight import normalize_category, normalize_priority, normalize_sentiment


# =============================================================================
# Enum Normalization
# =============================================================================


class TestNormalizeCategory:

    @pytest.mark.parametrize("raw, expected", [
        ("pain_point", InsightCategory.PAIN_POINT),
        ("Pain Point", InsightCategory.PAIN_POINT),
        ("pain-point", InsightCategory.PAIN_POINT),
        ("competitor_mention", InsightCategory.COMPETITOR_MENTION),
        ("competitor", InsightCategory.COMPETITOR_MENTION),
        ("FEATURE_REQUEST", InsightCategory.FEATURE_REQUEST),
        ("sentiment", InsightCategory.GENERAL_SENTIMENT),
    ])
    def test_known_values_and_aliases(self, raw: str, expected: InsightCategory) -> None:
        assert normalize_category(raw) == expected

    @pytest.mark.parametrize("raw", ["praise", "", None, 42])
    def test_unknown_defaults_to_general_sentiment(self, raw) -> None:
        assert normalize_category(raw) == InsightCategory.GENERAL_SENTIMENT


class TestNormalizePriorityAndSentiment:

    def test_priority_aliases(self) -> None:
        assert normalize_priority("urgent") == Priority.HIGH
        assert normalize_priority("critical") == Priority.HIGH
        assert normalize_priority("Low") == Priority.LOW

    def test_priority_unknown_defaults_to_medium(self) -> None:
        assert normalize_priority("asap!!") == Priority.MEDIUM

    def test_sentiment_values(self) -> None:
        assert normalize_sentiment("Positive") == Sentiment.POSITIVE
        assert normalize_sentiment("mixed") == Sentiment.NEUTRAL

    def test_sentiment_unknown_defaults_to_neutral(self) -> None:
        assert normalize_sentiment("furious") == Sentiment.NEUTRAL


# =============================================================================
# Topics
# =============================================================================


class TestNormalizeTopics:

    def test_strips_and_dedups_case_insensitively(self) -> None:
        assert normalize_topics(["  Sync ", "sync", "Export"]) == ("Sync", "Export")

    def test_cut_to_five(self) -> None:
        assert len(normalize_topics(["a", "b", "c", "d", "e", "f", "g"])) == 5

    def test_padded_from_fallbacks(self) -> None:
        assert normalize_topics(["sync"], fallbacks=("Journaling", "pain point")) == ("sync", "Journaling")

    def test_fallback_duplicates_skipped(self) -> None:
        assert normalize_topics(["journaling"], fallbacks=("Journaling", "pain point")) == ("journaling", "pain point")

    def test_comma_string_accepted(self) -> None:
        assert normalize_topics("sync, export ,") == ("sync", "export")

    def test_non_strings_dropped(self) -> None:
        assert normalize_topics([None, 3, "sync", ""]) == ("sync",)

    def test_long_tags_truncated(self) -> None:
        (tag,) = normalize_topics(["x" * 100])
        assert len(tag) == 40

    def test_garbage_gives_empty(self) -> None:
        assert normalize_topics({"a": 1}) == ()


# =============================================================================
# Models
# =============================================================================


class TestInsightDraft:

    def test_reads_insight_type_key(self) -> None:
        draft = InsightDraft.model_validate({"insight_type": "feature_request"})
        assert draft.category == InsightCategory.FEATURE_REQUEST

    def test_accepts_field_name(self) -> None:
        draft = InsightDraft(category="competitor")
        assert draft.category == InsightCategory.COMPETITOR_MENTION

    def test_malformed_output_normalized_not_rejected(self) -> None:
        draft = InsightDraft.model_validate({
            "insight_type": "rant",
            "priority": None,
            "sentiment": "angry",
            "topics": "a,b",
            "summary": None,
        })
        assert draft.category == InsightCategory.GENERAL_SENTIMENT
        assert draft.priority == Priority.MEDIUM
        assert draft.sentiment == Sentiment.NEUTRAL
        assert draft.topics == ["a", "b"]
        assert draft.summary == ""

    def test_defaults_when_empty(self) -> None:
        draft = InsightDraft.model_validate({})
        assert draft.category == InsightCategory.GENERAL_SENTIMENT
        assert draft.topics == []


class TestInsight:

    def test_generated_id_differs_from_item_id(self) -> None:
        insight = Insight(source_item_id="abc", topics=("a", "b"))
        assert insight.id != "abc"
        assert len(insight.id) == 32

    def test_topics_bounds_enforced(self) -> None:
        with pytest.raises(ValidationError):
            Insight(source_item_id="abc", topics=("only",))
        with pytest.raises(ValidationError):
            Insight(source_item_id="abc", topics=tuple("abcdef"))

    def test_frozen(self) -> None:
        insight = Insight(source_item_id="abc", topics=("a", "b"))
        with pytest.raises(ValidationError):
            insight.priority = Priority.LOW

    def test_round_trips_through_json_dump(self) -> None:
        insight = Insight(source_item_id="abc", topics=("a", "b"), priority=Priority.HIGH)
        restored = Insight.model_validate(insight.model_dump(mode="json"))
        assert restored == insight


class TestItem:

    def test_empty_id_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Item(id="", title="t", partition_key="alpha")

    def test_str(self) -> None:
        item = Item(id="abc", title="Looking for a journaling app", partition_key="Journaling")
        assert str(item) == "Item(Journaling/abc, 'Looking for a journaling app')"

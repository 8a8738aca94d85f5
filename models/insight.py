"""Insight models produced by analyzing one item.

Enumerations:
    InsightCategory: pain_point, competitor_mention, feature_request,
        general_sentiment
    Priority: high, medium, low
    Sentiment: positive, negative, neutral

Normalization Policy:
    Model output is treated as malformed-but-recoverable. Every enumerated
    field goes through a ``normalize_*`` function that maps known aliases and
    falls back to a conservative default instead of failing validation:

        category  -> general_sentiment
        priority  -> medium
        sentiment -> neutral

Model Hierarchy:
    InsightDraft: Structured output of the inference call, already normalized
    Insight: Published value carrying identity, provenance and timestamps
"""

import logging
import re
import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

MIN_TOPICS = 2
MAX_TOPICS = 5
MAX_TOPIC_CHARS = 40


class InsightCategory(str, Enum):
    """What kind of signal a post carries."""

    PAIN_POINT = "pain_point"                   # Frustration or unmet need
    COMPETITOR_MENTION = "competitor_mention"   # Names an alternative product
    FEATURE_REQUEST = "feature_request"         # Asks for a capability
    GENERAL_SENTIMENT = "general_sentiment"     # Anything else


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


DEFAULT_CATEGORY = InsightCategory.GENERAL_SENTIMENT
DEFAULT_PRIORITY = Priority.MEDIUM
DEFAULT_SENTIMENT = Sentiment.NEUTRAL

# Map common alias strings from model output to supported values.
_CATEGORY_ALIASES: dict[str, InsightCategory] = {
    "sentiment": InsightCategory.GENERAL_SENTIMENT,
    "general": InsightCategory.GENERAL_SENTIMENT,
    "pain": InsightCategory.PAIN_POINT,
    "problem": InsightCategory.PAIN_POINT,
    "complaint": InsightCategory.PAIN_POINT,
    "competitor": InsightCategory.COMPETITOR_MENTION,
    "competition": InsightCategory.COMPETITOR_MENTION,
    "feature": InsightCategory.FEATURE_REQUEST,
    "request": InsightCategory.FEATURE_REQUEST,
    "feature_requests": InsightCategory.FEATURE_REQUEST,
}

_PRIORITY_ALIASES: dict[str, Priority] = {
    "critical": Priority.HIGH,
    "urgent": Priority.HIGH,
    "med": Priority.MEDIUM,
    "normal": Priority.MEDIUM,
    "minor": Priority.LOW,
}

_SENTIMENT_ALIASES: dict[str, Sentiment] = {
    "pos": Sentiment.POSITIVE,
    "neg": Sentiment.NEGATIVE,
    "mixed": Sentiment.NEUTRAL,
}


def _enum_key(value: object) -> str:
    return str(value).strip().lower().replace(" ", "_").replace("-", "_")


def _normalize(value, enum_cls, aliases, default, field_name):
    if isinstance(value, enum_cls):
        return value
    if value is None:
        return default
    key = _enum_key(value)
    if not key:
        return default
    try:
        return enum_cls(key)
    except ValueError:
        mapped = aliases.get(key)
        if mapped is not None:
            return mapped
        logger.warning("Unknown insight %s; defaulting to %s | value=%s", field_name, default.value, value)
        return default


def normalize_category(value: str | InsightCategory | None) -> InsightCategory:
    """Normalize a raw category value into a supported InsightCategory."""
    return _normalize(value, InsightCategory, _CATEGORY_ALIASES, DEFAULT_CATEGORY, "category")


def normalize_priority(value: str | Priority | None) -> Priority:
    """Normalize a raw priority value into a supported Priority."""
    return _normalize(value, Priority, _PRIORITY_ALIASES, DEFAULT_PRIORITY, "priority")


def normalize_sentiment(value: str | Sentiment | None) -> Sentiment:
    """Normalize a raw sentiment value into a supported Sentiment."""
    return _normalize(value, Sentiment, _SENTIMENT_ALIASES, DEFAULT_SENTIMENT, "sentiment")


def normalize_topics(value, fallbacks: tuple[str, ...] = ()) -> tuple[str, ...]:
    """Clean a raw topic list into 2-5 short, unique tags.

    Non-string entries and blanks are dropped, whitespace is collapsed,
    duplicates (case-insensitive) are removed keeping the first occurrence,
    and the list is cut to MAX_TOPICS. Lists shorter than MIN_TOPICS are
    padded from ``fallbacks``.

    Args:
        value: Raw topics from model output (list, comma-separated string, or None)
        fallbacks: Tags used to pad short lists, in order

    Returns:
        Tuple of topic tags
    """
    if isinstance(value, str):
        raw = value.split(",")
    elif isinstance(value, (list, tuple)):
        raw = list(value)
    else:
        raw = []

    topics: list[str] = []
    seen: set[str] = set()

    def take(entries, limit: int) -> None:
        for entry in entries:
            if len(topics) >= limit:
                return
            if not isinstance(entry, str):
                continue
            tag = re.sub(r"\s+", " ", entry).strip()[:MAX_TOPIC_CHARS]
            if tag and tag.lower() not in seen:
                seen.add(tag.lower())
                topics.append(tag)

    take(raw, MAX_TOPICS)
    take(fallbacks, MIN_TOPICS)
    return tuple(topics)


class InsightDraft(BaseModel):
    """Structured result of one inference call.

    Enumerated fields are normalized on validation, so a draft built from
    any model output is always within its enumerations.
    """

    category: InsightCategory = Field(
        default=DEFAULT_CATEGORY,
        validation_alias="insight_type",
        description="One of pain_point, competitor_mention, feature_request, general_sentiment",
    )
    priority: Priority = Field(default=DEFAULT_PRIORITY, description="One of high, medium, low")
    sentiment: Sentiment = Field(default=DEFAULT_SENTIMENT, description="One of positive, negative, neutral")
    topics: list[str] = Field(default_factory=list, description="2-5 relevant keywords")
    summary: str = Field(default="", description="One sentence summary")
    narrative: str = Field(default="", description="2-3 sentence account of the key insight")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, value):
        return normalize_category(value)

    @field_validator("priority", mode="before")
    @classmethod
    def _normalize_priority(cls, value):
        return normalize_priority(value)

    @field_validator("sentiment", mode="before")
    @classmethod
    def _normalize_sentiment(cls, value):
        return normalize_sentiment(value)

    @field_validator("topics", mode="before")
    @classmethod
    def _coerce_topics(cls, value):
        return list(normalize_topics(value))

    @field_validator("summary", "narrative", mode="before")
    @classmethod
    def _coerce_text(cls, value):
        return "" if value is None else str(value).strip()


def _new_insight_id() -> str:
    return uuid.uuid4().hex


class Insight(BaseModel):
    """Published insight for one item.

    Attributes:
        id: Generated identifier (never the source item id)
        source_item_id: Item this insight was derived from
        category: Insight category
        priority: Priority for follow-up
        sentiment: Overall tone of the post
        topics: 2-5 ordered tags
        summary: One sentence summary
        narrative: Short account of the key insight
        source_title: Title of the source item
        partition_key: Partition of the source item
        source_url: Link to the source item
        created_at: When the insight was produced; consumers order by this
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_insight_id)
    source_item_id: str
    category: InsightCategory = DEFAULT_CATEGORY
    priority: Priority = DEFAULT_PRIORITY
    sentiment: Sentiment = DEFAULT_SENTIMENT
    topics: tuple[str, ...] = Field(min_length=MIN_TOPICS, max_length=MAX_TOPICS)
    summary: str = ""
    narrative: str = ""
    source_title: str = ""
    partition_key: str = ""
    source_url: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def __str__(self) -> str:
        return f"Insight({self.id[:8]}, {self.category.value}, {self.priority.value}, item={self.source_item_id})"

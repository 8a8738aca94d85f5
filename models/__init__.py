"""Pydantic models for the Sift insight pipeline.

Item:
    A post fetched from the content source, with engagement metrics.

InsightDraft:
    Normalized structured output of one inference call.

Insight:
    Published insight with identity, provenance and timestamp.

InsightCategory / Priority / Sentiment:
    Closed enumerations; out-of-enum values normalize to defaults.

Example:
    >>> from models import Item, InsightDraft
    >>> draft = InsightDraft.model_validate({"insight_type": "rant", "priority": "urgent"})
    >>> draft.category, draft.priority
    (<InsightCategory.GENERAL_SENTIMENT: 'general_sentiment'>, <Priority.HIGH: 'high'>)
"""

from models.item import Item, ItemMetrics
from models.insight import (
    Insight,
    InsightCategory,
    InsightDraft,
    Priority,
    Sentiment,
    normalize_topics,
)

__all__ = [
    "Item",
    "ItemMetrics",
    "Insight",
    "InsightCategory",
    "InsightDraft",
    "Priority",
    "Sentiment",
    "normalize_topics",
]

"""Insight generation for single items.

The generator sends one item through the inference throttled client and
turns the normalized draft into a published Insight. It never retries: an
item whose generation fails is dropped for this run, and because the item id
is already recorded by the deduplicator it is not attempted again until the
process restarts.

Failures of every kind surface as GenerationError with the underlying error
chained as ``__cause__``; callers inspect the cause when they care whether
the breaker was open (ThrottleRejected) or the service failed (UpstreamError).
"""

import asyncio
import logging

from errors import GenerationError, ThrottleRejected, UpstreamError
from models.insight import Insight, InsightDraft, normalize_topics
from models.item import Item
from observability.tracing import trace_operation
from throttle import ThrottledClient

logger = logging.getLogger(__name__)

MAX_SUMMARY_CHARS = 280
FALLBACK_TOPIC = "community feedback"


def build_insight(item: Item, draft: InsightDraft) -> Insight:
    """Combine an item and its draft into an Insight.

    Topics are re-normalized with the item's partition key, the category and
    a generic tag as padding, so every insight carries between two and five
    tags. An empty summary falls back to the item title, an empty narrative
    to the summary.
    """
    topics = normalize_topics(
        draft.topics,
        fallbacks=(item.partition_key, draft.category.value.replace("_", " "), FALLBACK_TOPIC),
    )
    summary = draft.summary or item.title[:MAX_SUMMARY_CHARS]
    return Insight(
        source_item_id=item.id,
        category=draft.category,
        priority=draft.priority,
        sentiment=draft.sentiment,
        topics=topics,
        summary=summary,
        narrative=draft.narrative or summary,
        source_title=item.title,
        partition_key=item.partition_key,
        source_url=item.source_url,
    )


class InsightGenerator:
    """Produces one Insight per item.

    Args:
        agent: Object with ``async infer(title, body, partition_key)``
            returning an InsightDraft (see agents.InsightAgent)
        client: Throttled client for the inference dependency

    Example:
        >>> generator = InsightGenerator(InsightAgent(model), inference_client)
        >>> insight = await generator.generate(item)
    """

    def __init__(self, agent, client: ThrottledClient):
        self.agent = agent
        self.client = client

    async def generate(self, item: Item) -> Insight:
        """Generate an insight for one item.

        Raises:
            GenerationError: For any failure; the cause is chained
        """
        with trace_operation("generate_insight", {"item_id": item.id, "partition": item.partition_key}) as attrs:
            try:
                draft = await self.client.call(
                    lambda: self.agent.infer(item.title, item.body, item.partition_key)
                )
            except ThrottleRejected as e:
                attrs["outcome"] = "rejected"
                raise GenerationError(item.id, f"inference unavailable, {e}") from e
            except UpstreamError as e:
                attrs["outcome"] = "upstream_error"
                raise GenerationError(item.id, str(e)) from e
            except asyncio.CancelledError:
                raise
            except Exception as e:
                attrs["outcome"] = "invalid_output"
                raise GenerationError(item.id, f"{type(e).__name__}: {e}") from e

            try:
                insight = build_insight(item, draft)
            except ValueError as e:
                # pydantic ValidationError is a ValueError
                attrs["outcome"] = "invalid_output"
                raise GenerationError(item.id, f"cannot build insight: {e}") from e
            attrs["outcome"] = "ok"
            attrs["category"] = insight.category.value
            attrs["priority"] = insight.priority.value

        logger.debug("Insight generated | item=%s category=%s priority=%s",
                     item.id, insight.category.value, insight.priority.value)
        return insight

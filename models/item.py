"""Item data model for content-source posts.

Each Item is one post fetched from a tracked partition (a subreddit). Items
are immutable once constructed; the deduplicator keys on ``Item.id``, which
the source guarantees to be stable and unique within a partition.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ItemMetrics(BaseModel):
    """Engagement signals reported by the source.

    Advisory only: nothing in the pipeline branches on these values.
    """

    model_config = ConfigDict(frozen=True)

    score: int = Field(default=0, description="Net votes")
    reply_count: int = Field(default=0, description="Number of comments")
    upvote_ratio: float = Field(default=0.0, description="Share of upvotes (0-1)")


class Item(BaseModel):
    """A post fetched from the content source.

    Attributes:
        id: Source identifier, stable and unique within a partition
        title: Post headline
        body: Post text (may be empty for link posts)
        partition_key: Partition the post was fetched from
        metrics: Engagement signals
        source_url: Canonical link back to the post
        author: Posting account name
        created_at: When the post was created at the source
        fetched_at: When the pipeline ingested it

    Example:
        >>> item = Item(
        ...     id="abc123",
        ...     title="Looking for a journaling app that syncs",
        ...     partition_key="Journaling",
        ...     source_url="https://www.reddit.com/r/Journaling/comments/abc123/",
        ... )
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Stable source identifier")
    title: str = Field(description="Post headline")
    body: str = Field(default="", description="Post text")
    partition_key: str = Field(description="Tracked partition that produced the item")
    metrics: ItemMetrics = Field(default_factory=ItemMetrics)
    source_url: str = Field(default="", description="Canonical link to the post")
    author: str = Field(default="", description="Posting account")
    created_at: datetime | None = Field(default=None, description="Creation time at the source (UTC)")
    fetched_at: datetime = Field(default_factory=_utcnow, description="Ingestion time (UTC)")

    def __str__(self) -> str:
        return f"Item({self.partition_key}/{self.id}, '{self.title[:50]}')"

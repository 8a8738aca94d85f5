"""Publishing of items and insights.

Publishing is optimistic. Each publish call first updates the in-process
Snapshot, which notifies its subscribers synchronously, and then schedules
the durable store write as a background task. The local view can therefore
run ahead of the store: a failed write is logged as PersistenceError and the
snapshot keeps the record. Nothing is retried.

Snapshot Rules:
    - Items and insights are kept newest-first
    - Re-publishing an id that is already present is ignored
    - Each list is capped at max_entries; the oldest entries fall off

Subscribers are called as ``callback(event, value)`` with one of the events
below. A failing subscriber is logged and does not affect publishing or the
other subscribers.
"""

import asyncio
import logging
from typing import Any, Callable

from database import INSIGHTS, ITEMS
from errors import PersistenceError
from models.insight import Insight
from models.item import Item

logger = logging.getLogger(__name__)

# Snapshot events
ITEM_ADDED = "item"
INSIGHT_ADDED = "insight"
INSIGHTS_LOADED = "insights_loaded"
ITEMS_CLEARED = "items_cleared"
INSIGHTS_CLEARED = "insights_cleared"

Subscriber = Callable[[str, Any], None]


class Snapshot:
    """Observable in-memory view of everything published.

    Args:
        max_entries: Cap applied to items and insights separately
    """

    def __init__(self, max_entries: int = 500):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._items: list[Item] = []
        self._insights: list[Insight] = []
        self._item_ids: set[str] = set()
        self._insight_ids: set[str] = set()
        self._subscribers: list[Subscriber] = []

    @property
    def items(self) -> list[Item]:
        """Published items, newest first."""
        return list(self._items)

    @property
    def insights(self) -> list[Insight]:
        """Published insights, newest first."""
        return list(self._insights)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber.

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def add_item(self, item: Item) -> bool:
        """Add an item; returns False if its id is already present."""
        if item.id in self._item_ids:
            return False
        self._items.insert(0, item)
        self._item_ids.add(item.id)
        while len(self._items) > self.max_entries:
            self._item_ids.discard(self._items.pop().id)
        self._notify(ITEM_ADDED, item)
        return True

    def add_insight(self, insight: Insight) -> bool:
        """Add an insight; returns False if its id is already present."""
        if insight.id in self._insight_ids:
            return False
        self._insights.insert(0, insight)
        self._insight_ids.add(insight.id)
        self._trim_insights()
        self._notify(INSIGHT_ADDED, insight)
        return True

    def load_insights(self, insights: list[Insight]) -> int:
        """Merge previously stored insights into the view.

        Unknown ids are added and the list is re-sorted by created_at.
        Subscribers get one INSIGHTS_LOADED event with the added insights.

        Returns:
            Number of insights added
        """
        added = [i for i in insights if i.id not in self._insight_ids]
        if not added:
            return 0
        self._insights.extend(added)
        self._insight_ids.update(i.id for i in added)
        self._insights.sort(key=lambda i: i.created_at, reverse=True)
        self._trim_insights()
        self._notify(INSIGHTS_LOADED, added)
        return len(added)

    def clear_items(self) -> None:
        self._items.clear()
        self._item_ids.clear()
        self._notify(ITEMS_CLEARED, None)

    def clear_insights(self) -> None:
        self._insights.clear()
        self._insight_ids.clear()
        self._notify(INSIGHTS_CLEARED, None)

    def _trim_insights(self) -> None:
        while len(self._insights) > self.max_entries:
            self._insight_ids.discard(self._insights.pop().id)

    def _notify(self, event: str, value: Any) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event, value)
            except Exception as e:
                logger.error("Snapshot subscriber failed | event=%s error=%s", event, e, exc_info=True)


class Publisher:
    """Optimistic publisher: snapshot first, store write in the background.

    Args:
        store: Object with ``insert(collection, record) -> id`` (see Database)
        snapshot: Local observable view

    Example:
        >>> publisher = Publisher(Database("sift.db"), Snapshot())
        >>> publisher.publish_insight(insight)   # visible to subscribers now
        >>> await publisher.drain()              # store write finished
    """

    def __init__(self, store, snapshot: Snapshot):
        self.store = store
        self.snapshot = snapshot
        self.write_failures = 0
        self._pending: set[asyncio.Task] = set()

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    def publish_item(self, item: Item) -> bool:
        """Publish a raw item. Must be called from a running event loop.

        Returns:
            False if the item id was already in the snapshot (nothing written)
        """
        if not self.snapshot.add_item(item):
            return False
        self._schedule_write(ITEMS, item.id, item.model_dump(mode="json"))
        return True

    def publish_insight(self, insight: Insight) -> bool:
        """Publish an insight. Must be called from a running event loop.

        Returns:
            False if the insight id was already in the snapshot (nothing written)
        """
        if not self.snapshot.add_insight(insight):
            return False
        self._schedule_write(INSIGHTS, insight.id, insight.model_dump(mode="json"))
        return True

    def _schedule_write(self, collection: str, record_id: str, record: dict[str, Any]) -> None:
        task = asyncio.get_running_loop().create_task(self._persist(collection, record_id, record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(self, collection: str, record_id: str, record: dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(self.store.insert, collection, record)
        except Exception as e:
            self.write_failures += 1
            error = PersistenceError(collection, record_id, e)
            logger.error("Store write failed | %s", error)

    async def drain(self) -> None:
        """Wait for every scheduled store write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def hydrate(self, hours: int = 24) -> int:
        """Load recent insights from the store into the snapshot.

        Stored records that no longer validate are skipped with a warning.

        Returns:
            Number of insights added to the snapshot
        """
        records = await asyncio.to_thread(
            self.store.recent_insights, hours, self.snapshot.max_entries
        )
        insights = []
        for record in records:
            try:
                insights.append(Insight.model_validate(record))
            except ValueError as e:
                logger.warning("Skipping stored insight | id=%s error=%s", record.get("id"), e)

        added = self.snapshot.load_insights(insights)
        logger.info("Snapshot hydrated | stored=%d added=%d hours=%d", len(records), added, hours)
        return added

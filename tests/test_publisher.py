"""Unit tests for the snapshot and the optimistic publisher."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from database import Database
from generator import build_insight
from models import Insight
from publisher import (
    INSIGHT_ADDED,
    INSIGHTS_CLEARED,
    INSIGHTS_LOADED,
    ITEM_ADDED,
    ITEMS_CLEARED,
    Publisher,
    Snapshot,
)
from tests.conftest import FakeStore, make_draft, make_item


def make_insight(item_id: str = "abc", **overrides) -> Insight:
    insight = build_insight(make_item(item_id), make_draft())
    return insight.model_copy(update=overrides) if overrides else insight


# =============================================================================
# Snapshot
# =============================================================================


class TestSnapshot:

    def test_newest_first(self) -> None:
        snapshot = Snapshot()
        for item_id in ("a", "b", "c"):
            snapshot.add_item(make_item(item_id))
        assert [i.id for i in snapshot.items] == ["c", "b", "a"]

    def test_duplicate_id_ignored(self) -> None:
        snapshot = Snapshot()
        assert snapshot.add_item(make_item("a")) is True
        assert snapshot.add_item(make_item("a")) is False
        assert len(snapshot.items) == 1

    def test_cap_drops_oldest(self) -> None:
        snapshot = Snapshot(max_entries=2)
        for item_id in ("a", "b", "c"):
            snapshot.add_item(make_item(item_id))
        assert [i.id for i in snapshot.items] == ["c", "b"]

    def test_invalid_cap_rejected(self) -> None:
        with pytest.raises(ValueError):
            Snapshot(max_entries=0)

    def test_subscribers_notified(self) -> None:
        snapshot = Snapshot()
        events = []
        snapshot.subscribe(lambda event, value: events.append(event))

        snapshot.add_item(make_item("a"))
        snapshot.add_insight(make_insight())
        snapshot.clear_items()
        snapshot.clear_insights()

        assert events == [ITEM_ADDED, INSIGHT_ADDED, ITEMS_CLEARED, INSIGHTS_CLEARED]

    def test_unsubscribe(self) -> None:
        snapshot = Snapshot()
        events = []
        unsubscribe = snapshot.subscribe(lambda event, value: events.append(event))
        unsubscribe()
        snapshot.add_item(make_item("a"))
        assert events == []

    def test_failing_subscriber_isolated(self) -> None:
        snapshot = Snapshot()
        events = []

        def broken(event, value):
            raise RuntimeError("subscriber bug")

        snapshot.subscribe(broken)
        snapshot.subscribe(lambda event, value: events.append(event))

        assert snapshot.add_item(make_item("a")) is True
        assert events == [ITEM_ADDED]

    def test_clear_allows_re_adding(self) -> None:
        snapshot = Snapshot()
        snapshot.add_item(make_item("a"))
        snapshot.clear_items()
        assert snapshot.items == []
        assert snapshot.add_item(make_item("a")) is True

    def test_load_insights_merges_sorted(self) -> None:
        snapshot = Snapshot()
        now = datetime.now(timezone.utc)
        live = make_insight("live", created_at=now)
        snapshot.add_insight(live)
        older = make_insight("old", created_at=now - timedelta(hours=2))
        newer = make_insight("new", created_at=now + timedelta(seconds=1))
        events = []
        snapshot.subscribe(lambda event, value: events.append((event, len(value))))

        added = snapshot.load_insights([older, newer, live])

        assert added == 2
        assert [i.source_item_id for i in snapshot.insights] == ["new", "live", "old"]
        assert events == [(INSIGHTS_LOADED, 2)]


# =============================================================================
# Publisher
# =============================================================================


class TestPublisher:

    async def test_snapshot_updated_before_store_write(self) -> None:
        store = FakeStore()
        publisher = Publisher(store, Snapshot())

        assert publisher.publish_item(make_item("a")) is True

        assert [i.id for i in publisher.snapshot.items] == ["a"]
        assert store.records["items"] == []
        assert publisher.pending_writes == 1

        await publisher.drain()

        assert [r["id"] for r in store.records["items"]] == ["a"]
        assert publisher.pending_writes == 0

    async def test_insight_written_as_json_document(self) -> None:
        store = FakeStore()
        publisher = Publisher(store, Snapshot())
        insight = make_insight()

        publisher.publish_insight(insight)
        await publisher.drain()

        (record,) = store.records["insights"]
        assert record["id"] == insight.id
        assert record["category"] == "pain_point"
        assert record["topics"] == list(insight.topics)

    async def test_failed_write_keeps_snapshot(self) -> None:
        publisher = Publisher(FakeStore(fail=True), Snapshot())
        insight = make_insight()

        publisher.publish_insight(insight)
        await publisher.drain()

        assert publisher.snapshot.insights == [insight]
        assert publisher.write_failures == 1

    async def test_republished_id_not_written_twice(self) -> None:
        store = FakeStore()
        publisher = Publisher(store, Snapshot())
        insight = make_insight()

        assert publisher.publish_insight(insight) is True
        assert publisher.publish_insight(insight) is False
        await publisher.drain()

        assert len(store.records["insights"]) == 1

    async def test_hydrate_from_database(self, tmp_path) -> None:
        with Database(tmp_path / "sift.db") as db:
            stored = [make_insight(f"item{i}") for i in range(3)]
            for insight in stored:
                db.insert("insights", insight.model_dump(mode="json"))
            db.insert("insights", {"id": "broken", "topics": []})

            publisher = Publisher(db, Snapshot())
            added = await publisher.hydrate(hours=24)

        assert added == 3
        assert {i.id for i in publisher.snapshot.insights} == {i.id for i in stored}

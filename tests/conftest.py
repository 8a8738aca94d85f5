"""Shared fakes for the pipeline tests.

Nothing here touches the network: the content source, the inference agent
and the store are in-memory stand-ins, and throttling runs on a fake clock
whose sleep advances time instantly.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from config import Config, ThrottleSettings
from errors import UpstreamError
from models.insight import InsightDraft
from models.item import Item
from source import FetchResult


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Monotonic clock in seconds; sleep() advances it without waiting."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Builders
# =============================================================================


def make_item(item_id: str, partition: str = "alpha", title: str | None = None, body: str = "") -> Item:
    return Item(
        id=item_id,
        title=title or f"Post {item_id}",
        body=body,
        partition_key=partition,
        source_url=f"https://www.reddit.com/r/{partition}/comments/{item_id}/",
    )


def make_draft(**overrides: Any) -> InsightDraft:
    data = {
        "insight_type": "pain_point",
        "priority": "high",
        "sentiment": "negative",
        "topics": ["sync", "mobile app"],
        "summary": "User lost entries after a sync failure.",
        "narrative": "The author lost a week of entries. They are considering switching apps.",
    }
    data.update(overrides)
    return InsightDraft.model_validate(data)


# =============================================================================
# Dependencies
# =============================================================================


class FakeSource:
    """Scripted listing source.

    ``pages[partition]`` is a list of responses returned on successive
    fetches; each response is a list of item ids or an exception to raise.
    The last response repeats once the script runs out.
    """

    name = "reddit"

    def __init__(self, pages: dict[str, list[Any]] | None = None) -> None:
        self.pages = pages or {}
        self.calls: list[str] = []
        self.first_fetch = asyncio.Event()
        self.gate: asyncio.Event | None = None
        self.closed = False

    async def fetch(self, partition_key: str, sort_mode: str = "hot", limit: int = 25, after: str | None = None) -> FetchResult:
        self.calls.append(partition_key)
        self.first_fetch.set()
        if self.gate is not None:
            await self.gate.wait()

        script = self.pages.get(partition_key, [[]])
        index = min(self.calls.count(partition_key) - 1, len(script) - 1)
        response = script[index]
        if isinstance(response, Exception):
            raise response
        return FetchResult(items=[make_item(i, partition_key) for i in response])

    async def close(self) -> None:
        self.closed = True


class FakeAgent:
    """Inference stand-in returning a fixed draft, or raising ``error``."""

    name = "inference"

    def __init__(self, draft: InsightDraft | None = None, error: Exception | None = None) -> None:
        self.draft = draft or make_draft()
        self.error = error
        self.calls: list[str] = []
        self.entered = asyncio.Event()
        self.gate: asyncio.Event | None = None

    async def infer(self, title: str, body: str, partition_key: str) -> InsightDraft:
        self.calls.append(title)
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.draft


class FakeStore:
    """In-memory store; fails every insert when ``fail`` is set."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.records: dict[str, list[dict[str, Any]]] = {"items": [], "insights": []}
        self.closed = False

    def insert(self, collection: str, record: dict[str, Any]) -> str:
        if self.fail:
            raise OSError("disk full")
        self.records[collection].append(record)
        return record["id"]

    def recent_insights(self, hours: int = 24, limit: int = 100) -> list[dict[str, Any]]:
        return list(reversed(self.records["insights"]))[:limit]

    def close(self) -> None:
        self.closed = True


def rate_limited(dependency: str = "reddit") -> UpstreamError:
    return UpstreamError(dependency, "rate limited", status=429)


@pytest.fixture
def fast_config(tmp_path) -> Config:
    """Config with no pacing delay, one partition and a long poll interval."""
    return Config(
        subreddits=["alpha"],
        source_throttle=ThrottleSettings(base_interval_ms=0),
        inference_throttle=ThrottleSettings(base_interval_ms=0),
        poll_interval_ms=60000,
        max_workers=2,
        db_path=tmp_path / "sift.db",
    )

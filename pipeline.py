"""Poll loop orchestration.

The Pipeline owns every stateful component and is the only object callers
talk to:

Pipeline Flow (per cycle):
    1. FETCH: One listing request per tracked partition, concurrently, all
       paced by the source throttled client
    2. DEDUP: Items checked in source order; unseen ids are recorded
    3. PUBLISH: Each new item goes to the snapshot and the store
    4. GENERATE: Each new item gets an insight generation task, bounded by
       MAX_WORKERS and paced by the inference throttled client. These tasks
       outlive the cycle that spawned them.
    5. PUBLISH: Each generated insight goes to the snapshot and the store

Lifecycle:
    Stopped --start()--> Running --stop()--> Stopped

    start() runs the first cycle immediately, then one cycle every
    poll_interval_ms. stop() prevents further cycles but never cancels a
    dependency call in flight. Every start() opens a new run; results that
    come back after their run has stopped are discarded.

Failure Isolation:
    A partition whose fetch is rejected (breaker open) or fails is skipped for
    the cycle. An item whose generation fails is dropped for this process
    lifetime. Neither stops the loop.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable

from agents.insight import InsightAgent
from config import Config
from database import Database
from dedup import Deduplicator
from errors import GenerationError, RunStopped, ThrottleRejected, UpstreamError
from generator import InsightGenerator
from models.item import Item
from notifications import AlertNotifier
from observability.logging import clear_context, set_cycle_context, set_partition_context
from observability.tracing import setup_tracing, trace_operation
from publisher import Publisher, Snapshot
from source import RedditSource
from throttle import ThrottledClient

logger = logging.getLogger(__name__)


@dataclass
class PipelineRunState:
    """Control state, mutated only through the Pipeline's control surface.

    Attributes:
        is_running: Whether cycles are being scheduled
        tracked_partitions: Partitions polled each cycle
        poll_interval_ms: Delay between the end of one cycle and the next
        run_id: Incremented on every start(); identifies the active run
    """

    is_running: bool = False
    tracked_partitions: frozenset[str] = field(default_factory=frozenset)
    poll_interval_ms: int = 30000
    run_id: int = 0


@dataclass
class CycleStats:
    """Counts from one poll cycle.

    Attributes:
        partitions: Partitions polled
        fetched: Items returned by the source
        new: Items forwarded for insight generation
        duplicates: Items dropped as already seen
        rejected: Partitions skipped because the source breaker was open
        failed: Partitions whose fetch failed
        discarded: Items ignored because the run stopped mid-fetch
        stopped: Partitions not fetched because the run stopped first
        duration: Cycle time in seconds
    """

    partitions: int = 0
    fetched: int = 0
    new: int = 0
    duplicates: int = 0
    rejected: int = 0
    failed: int = 0
    discarded: int = 0
    stopped: int = 0
    duration: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["duration"] = round(d["duration"], 2)
        return d


@dataclass
class PipelineTotals:
    """Process-lifetime counters."""

    cycles: int = 0
    cycle_errors: int = 0
    insights: int = 0
    generation_errors: int = 0
    discarded_insights: int = 0


class Pipeline:
    """Resilient poller feeding the insight generator and publisher.

    Components:
        - Deduplicator: item ids seen this process lifetime
        - Two ThrottledClients: content source and inference service
        - RedditSource: listing fetches
        - InsightGenerator: one inference call per new item
        - Publisher: snapshot plus background store writes

    Dependencies can be injected for testing; by default they are built from
    the config.

    Example:
        >>> pipeline = Pipeline(Config.load())
        >>> pipeline.start()
        >>> pipeline.set_tracked_partitions({"Journaling", "Notion"})
        >>> ...
        >>> await pipeline.aclose()
    """

    def __init__(
        self,
        config: Config,
        source=None,
        agent=None,
        store=None,
        clock=time.monotonic,
        sleep=asyncio.sleep,
    ):
        self.config = config
        self.state = PipelineRunState(
            tracked_partitions=frozenset(config.subreddits),
            poll_interval_ms=config.poll_interval_ms,
        )
        self.totals = PipelineTotals()

        self.source = source or RedditSource(
            base_url=config.source_base_url,
            user_agent=config.source_user_agent,
            timeout=config.request_timeout,
        )
        self.source_client = ThrottledClient(
            getattr(self.source, "name", "source"), config.source_throttle, clock=clock, sleep=sleep,
        )

        agent = agent or InsightAgent(config.insight_model, config.anthropic_api_key)
        self.inference_client = ThrottledClient(
            getattr(agent, "name", "inference"), config.inference_throttle, clock=clock, sleep=sleep,
        )
        self.generator = InsightGenerator(agent, self.inference_client)

        self.dedup = Deduplicator(config.dedup_max_entries)
        self.store = store if store is not None else Database(config.db_path)
        self.snapshot = Snapshot(config.snapshot_max_entries)
        self.publisher = Publisher(self.store, self.snapshot)

        self.notifier = AlertNotifier(config.webhook_url, config.alerts_file)
        if self.notifier.enabled:
            self.snapshot.subscribe(self.notifier)

        self._workers = asyncio.Semaphore(config.max_workers)
        self._generation_tasks: set[asyncio.Task] = set()
        self._loop_task: asyncio.Task | None = None
        self._wake: asyncio.Event | None = None

        # Optional: Distributed tracing
        if config.enable_logfire:
            setup_tracing(enabled=True, service_name="sift", token=config.logfire_token)

    # === Control surface ===

    def start(self) -> None:
        """Start polling. No-op if already running.

        Must be called from a running event loop. The first cycle begins
        immediately.
        """
        if self.state.is_running:
            return
        self.state.is_running = True
        self.state.run_id += 1
        self._wake = asyncio.Event()
        self._loop_task = asyncio.get_running_loop().create_task(
            self._run_loop(self.state.run_id, self._wake)
        )
        logger.info(
            "Pipeline started | run=%d partitions=%d interval_ms=%d",
            self.state.run_id, len(self.state.tracked_partitions), self.state.poll_interval_ms,
        )

    def stop(self) -> None:
        """Stop polling. Idempotent.

        In-flight fetches and generations are left to finish; their results
        are discarded.
        """
        if not self.state.is_running:
            return
        self.state.is_running = False
        if self._wake is not None:
            self._wake.set()
        logger.info("Pipeline stopping | run=%d in_flight=%d", self.state.run_id, len(self._generation_tasks))

    def set_tracked_partitions(self, partitions: Iterable[str]) -> None:
        """Replace the tracked partitions. Takes effect from the next cycle."""
        cleaned = frozenset(p.strip() for p in partitions if p and p.strip())
        self.state.tracked_partitions = cleaned
        logger.info("Tracked partitions updated | partitions=%s", ",".join(sorted(cleaned)) or "-")

    def set_poll_interval_ms(self, interval_ms: int) -> None:
        """Change the delay between cycles. Takes effect from the next wait.

        Raises:
            ValueError: If interval_ms is not positive
        """
        if interval_ms <= 0:
            raise ValueError("poll interval must be positive")
        self.state.poll_interval_ms = interval_ms
        logger.info("Poll interval updated | interval_ms=%d", interval_ms)

    @property
    def is_running(self) -> bool:
        return self.state.is_running

    # === Cycles ===

    def _is_active(self, run_id: int | None) -> bool:
        # run_id None: a standalone cycle outside start()/stop()
        if run_id is None:
            return True
        return self.state.is_running and self.state.run_id == run_id

    async def _run_loop(self, run_id: int, wake: asyncio.Event) -> None:
        while self._is_active(run_id):
            self.totals.cycles += 1
            try:
                stats = await self._run_cycle(run_id)
                logger.info(
                    "Cycle done | duration=%.1fs fetched=%d new=%d duplicates=%d rejected=%d failed=%d",
                    stats.duration, stats.fetched, stats.new, stats.duplicates, stats.rejected, stats.failed,
                )
            except Exception as e:
                self.totals.cycle_errors += 1
                logger.error("Cycle failed | error=%s", e, exc_info=True)
            finally:
                clear_context()

            if not self._is_active(run_id):
                break
            try:
                await asyncio.wait_for(wake.wait(), timeout=self.state.poll_interval_ms / 1000)
            except asyncio.TimeoutError:
                pass

        logger.info("Pipeline stopped | run=%d cycles=%d", run_id, self.totals.cycles)

    async def run_cycle(self) -> CycleStats:
        """Run one cycle now.

        Generation tasks spawned by the cycle keep running after it returns;
        use wait_idle() to wait for them.
        """
        run_id = self.state.run_id if self.state.is_running else None
        try:
            return await self._run_cycle(run_id)
        finally:
            clear_context()

    async def _run_cycle(self, run_id: int | None) -> CycleStats:
        cycle_id = uuid.uuid4().hex[:8]
        set_cycle_context(cycle_id)
        start = time.monotonic()
        stats = CycleStats()

        partitions = sorted(self.state.tracked_partitions)
        stats.partitions = len(partitions)
        if not partitions:
            logger.debug("No tracked partitions, nothing to poll")
            return stats

        with trace_operation("poll_cycle", {"cycle_id": cycle_id, "partitions": len(partitions)}) as attrs:
            await asyncio.gather(*(self._poll_partition(p, run_id, stats) for p in partitions))
            attrs.update(stats.to_dict())

        stats.duration = time.monotonic() - start
        return stats

    async def _poll_partition(self, partition: str, run_id: int | None, stats: CycleStats) -> None:
        set_partition_context(partition)

        async def fetch():
            # Partitions queued behind the pacing slot must not fetch for a stopped run
            if not self._is_active(run_id):
                raise RunStopped(f"run {run_id} stopped before r/{partition} was fetched")
            return await self.source.fetch(partition, self.config.sort_mode, self.config.fetch_limit)

        try:
            result = await self.source_client.call(fetch)
        except RunStopped:
            stats.stopped += 1
            logger.debug("Partition not fetched, run stopped | partition=%s", partition)
            return
        except ThrottleRejected as e:
            stats.rejected += 1
            logger.warning("Partition skipped, breaker open | partition=%s retry_after_ms=%d", partition, e.retry_after_ms)
            return
        except UpstreamError as e:
            stats.failed += 1
            logger.warning("Partition fetch failed | partition=%s status=%s error=%s", partition, e.status, e)
            return
        except Exception as e:
            stats.failed += 1
            logger.error("Partition fetch error | partition=%s error=%s", partition, e, exc_info=True)
            return

        if not self._is_active(run_id):
            stats.discarded += len(result.items)
            logger.debug("Listing discarded, run stopped | partition=%s items=%d", partition, len(result.items))
            return

        stats.fetched += len(result.items)
        for item in result.items:
            if not self.dedup.check_and_record(item.id):
                stats.duplicates += 1
                continue
            stats.new += 1
            self.publisher.publish_item(item)
            self._spawn_generation(item, run_id)

    def _spawn_generation(self, item: Item, run_id: int | None) -> None:
        task = asyncio.get_running_loop().create_task(self._generate(item, run_id))
        self._generation_tasks.add(task)
        task.add_done_callback(self._generation_tasks.discard)

    async def _generate(self, item: Item, run_id: int | None) -> None:
        async with self._workers:
            try:
                insight = await self.generator.generate(item)
            except GenerationError as e:
                self.totals.generation_errors += 1
                if isinstance(e.__cause__, ThrottleRejected):
                    logger.warning("Item dropped, inference breaker open | item=%s", item.id)
                else:
                    logger.error("Insight generation failed | %s", e)
                return

        if not self._is_active(run_id):
            self.totals.discarded_insights += 1
            logger.info("Insight discarded, run stopped | item=%s", item.id)
            return

        self.publisher.publish_insight(insight)
        self.totals.insights += 1
        logger.info(
            "Insight published | item=%s category=%s priority=%s",
            item.id, insight.category.value, insight.priority.value,
        )

    # === Operator view and shutdown ===

    def status(self) -> dict[str, Any]:
        """Snapshot of run state, counters and both dependencies' throttling."""
        return {
            "running": self.state.is_running,
            "run_id": self.state.run_id,
            "partitions": sorted(self.state.tracked_partitions),
            "poll_interval_ms": self.state.poll_interval_ms,
            "seen_items": len(self.dedup),
            "in_flight": len(self._generation_tasks),
            "snapshot": {
                "items": len(self.snapshot.items),
                "insights": len(self.snapshot.insights),
            },
            "pending_writes": self.publisher.pending_writes,
            "write_failures": self.publisher.write_failures,
            "totals": asdict(self.totals),
            "throttle": {
                "source": self.source_client.snapshot(),
                "inference": self.inference_client.snapshot(),
            },
        }

    async def wait_stopped(self) -> None:
        """Wait until the poll loop of the current run has exited."""
        if self._loop_task is not None:
            await self._loop_task

    async def wait_idle(self) -> None:
        """Wait for in-flight generations and store writes to finish."""
        while self._generation_tasks:
            await asyncio.gather(*list(self._generation_tasks), return_exceptions=True)
        await self.publisher.drain()
        await self.notifier.drain()

    async def aclose(self) -> None:
        """Stop, let in-flight work finish, and release resources."""
        self.stop()
        if self._loop_task is not None:
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None
        await self.wait_idle()
        close = getattr(self.source, "close", None)
        if close is not None:
            await close()
        store_close = getattr(self.store, "close", None)
        if store_close is not None:
            store_close()


async def run_once(config: Config) -> dict[str, Any]:
    """Run a single cycle, wait for its insights, and return stats."""
    pipeline = Pipeline(config)
    try:
        stats = await pipeline.run_cycle()
        await pipeline.wait_idle()
        result = stats.to_dict()
        result["insights"] = pipeline.totals.insights
        result["generation_errors"] = pipeline.totals.generation_errors
        return result
    finally:
        await pipeline.aclose()


async def run_continuous(config: Config, hydrate_hours: int = 24) -> None:
    """Poll until cancelled.

    Args:
        config: Application configuration
        hydrate_hours: Stored insights from this window are loaded into the
            snapshot before the first cycle (0 = skip)
    """
    pipeline = Pipeline(config)
    try:
        if hydrate_hours > 0:
            await pipeline.publisher.hydrate(hours=hydrate_hours)
        pipeline.start()
        await pipeline.wait_stopped()
    finally:
        await pipeline.aclose()

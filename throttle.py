"""Throttled client: pacing, additive backoff and a circuit breaker.

One ThrottledClient wraps every outbound call to one rate-limited dependency.
The pipeline builds two of them (content source, inference service) with
independent settings and state, so trouble on one dependency never slows the
other.

Per-call algorithm:
    1. Breaker check. While the breaker is open and the reset window has not
       elapsed, the call is refused with ThrottleRejected and the operation is
       never invoked. Once the window has elapsed the breaker closes and the
       backoff is halved (a half-open probe).
    2. Pacing. The call waits until base_interval_ms + backoff_ms has passed
       since the previous attempt started. Waiting happens under a lock, so
       concurrent callers are serialized through the dependency.
    3. last_request_at is stamped for every attempt, whatever the outcome.
    4. Outcome:
       - success: backoff_ms -= recovery_step_ms (floor 0)
       - 429 / 5xx / transport failure: backoff_ms += backoff_step_ms
         (capped); at or above breaker_threshold_ms the breaker opens
       - any other UpstreamError: state untouched, error propagated

The gradual recovery means one success never wipes out accumulated backoff,
which keeps a borderline dependency from flapping between open and closed.

Example:
    >>> client = ThrottledClient("reddit", ThrottleSettings())
    >>> listing = await client.call(lambda: source.fetch("Journaling", "hot", 10))
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from config import ThrottleSettings
from errors import ThrottleRejected, UpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ThrottleState:
    """Mutable pacing state for one dependency.

    Times come from the client's clock (seconds); backoff is milliseconds.
    Never persisted: a restart begins with zero backoff and a closed breaker.
    """

    last_request_at: float | None = None
    backoff_ms: int = 0
    breaker_open: bool = False
    breaker_opened_at: float | None = None


class ThrottledClient:
    """Serializes and paces calls to one dependency.

    Args:
        name: Dependency name used in logs and errors
        settings: Pacing and breaker parameters
        clock: Monotonic clock returning seconds
        sleep: Coroutine function used for pacing waits
    """

    def __init__(
        self,
        name: str,
        settings: ThrottleSettings,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.name = name
        self.settings = settings
        self.state = ThrottleState()
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run one operation against the dependency.

        Args:
            operation: Zero-argument coroutine function performing the request.
                It must raise UpstreamError for dependency failures.

        Returns:
            Whatever the operation returns

        Raises:
            ThrottleRejected: Breaker open; the operation was not invoked
            UpstreamError: The operation failed
        """
        await self._acquire_slot()
        try:
            result = await operation()
        except UpstreamError as e:
            self._record_failure(e)
            raise
        self._record_success()
        return result

    async def _acquire_slot(self) -> None:
        async with self._lock:
            while True:
                now = self._clock()
                self._check_breaker(now)
                wait_ms = self._pacing_delay_ms(now)
                if wait_ms <= 0:
                    break
                logger.debug("Pacing wait | dependency=%s wait_ms=%d", self.name, wait_ms)
                await self._sleep(wait_ms / 1000)
            self.state.last_request_at = self._clock()

    def _check_breaker(self, now: float) -> None:
        state = self.state
        if not state.breaker_open:
            return
        elapsed_ms = (now - state.breaker_opened_at) * 1000
        remaining_ms = self.settings.breaker_reset_ms - elapsed_ms
        if remaining_ms > 0:
            raise ThrottleRejected(self.name, math.ceil(remaining_ms))
        state.breaker_open = False
        state.breaker_opened_at = None
        state.backoff_ms //= 2
        logger.info("Circuit breaker half-open | dependency=%s backoff_ms=%d", self.name, state.backoff_ms)

    def _pacing_delay_ms(self, now: float) -> float:
        if self.state.last_request_at is None:
            return 0
        elapsed_ms = (now - self.state.last_request_at) * 1000
        return self.settings.base_interval_ms + self.state.backoff_ms - elapsed_ms

    def _record_success(self) -> None:
        state = self.state
        if state.backoff_ms > 0:
            state.backoff_ms = max(0, state.backoff_ms - self.settings.recovery_step_ms)
            logger.debug("Backoff decreased | dependency=%s backoff_ms=%d", self.name, state.backoff_ms)

    def _record_failure(self, error: UpstreamError) -> None:
        if not error.is_throttling:
            logger.debug("Upstream error without throttling signal | dependency=%s status=%s", self.name, error.status)
            return

        state = self.state
        state.backoff_ms = min(state.backoff_ms + self.settings.backoff_step_ms, self.settings.max_backoff_ms)
        logger.warning(
            "Throttling signal | dependency=%s status=%s backoff_ms=%d",
            self.name, error.status, state.backoff_ms,
        )

        if state.backoff_ms >= self.settings.breaker_threshold_ms and not state.breaker_open:
            state.breaker_open = True
            state.breaker_opened_at = self._clock()
            logger.warning(
                "Circuit breaker opened | dependency=%s backoff_ms=%d reset_s=%d",
                self.name, state.backoff_ms, self.settings.breaker_reset_ms // 1000,
            )

    def snapshot(self) -> dict[str, Any]:
        """Operator view of the current state."""
        retry_after_ms = 0
        if self.state.breaker_open:
            elapsed_ms = (self._clock() - self.state.breaker_opened_at) * 1000
            retry_after_ms = max(0, math.ceil(self.settings.breaker_reset_ms - elapsed_ms))
        return {
            "dependency": self.name,
            "backoff_ms": self.state.backoff_ms,
            "breaker_open": self.state.breaker_open,
            "retry_after_ms": retry_after_ms,
        }

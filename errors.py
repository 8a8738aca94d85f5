"""Error taxonomy for the Sift pipeline.

Every failure the pipeline reasons about is one of four kinds:

ThrottleRejected:
    A dependency's circuit breaker is open. Expected and non-fatal; the
    partition or item is picked up again on the next scheduled cycle.

UpstreamError:
    The dependency answered with a failure. The status code decides whether
    the throttled client treats it as a throttling signal (429, 5xx,
    transport failure) or as a plain per-request error.

GenerationError:
    An insight could not be produced for an item. The item is dropped for
    this run.

PersistenceError:
    A store write failed. Logged only; the local snapshot stays as published.

RunStopped is not a failure: it marks a queued fetch skipped after stop().
"""


class SiftError(Exception):
    """Base class for all pipeline errors."""


class ThrottleRejected(SiftError):
    """Call refused without touching the network because the breaker is open.

    Attributes:
        dependency: Name of the throttled dependency
        retry_after_ms: Time left until the breaker allows a probe
    """

    def __init__(self, dependency: str, retry_after_ms: int):
        self.dependency = dependency
        self.retry_after_ms = retry_after_ms
        super().__init__(
            f"{dependency}: circuit breaker open, retry in {retry_after_ms / 1000:.0f}s"
        )


class UpstreamError(SiftError):
    """Failure reported by a dependency.

    Attributes:
        dependency: Name of the dependency that failed
        status: HTTP status code, or None for transport failures
            (timeouts, refused connections)
    """

    def __init__(self, dependency: str, message: str, status: int | None = None):
        self.dependency = dependency
        self.status = status
        super().__init__(f"{dependency}: {message}")

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429

    @property
    def is_throttling(self) -> bool:
        """Whether this failure should grow the dependency's backoff."""
        if self.status is None:
            return True
        return self.status == 429 or self.status >= 500


class RunStopped(SiftError):
    """A queued call whose run was stopped before it reached the network.

    Raised from inside a throttled operation, so it leaves backoff untouched.
    """


class GenerationError(SiftError):
    """Insight generation failed for one item."""

    def __init__(self, item_id: str, message: str):
        self.item_id = item_id
        super().__init__(f"item {item_id}: {message}")


class PersistenceError(SiftError):
    """A store write failed."""

    def __init__(self, collection: str, record_id: str, cause: Exception):
        self.collection = collection
        self.record_id = record_id
        self.cause = cause
        super().__init__(f"{collection}/{record_id}: {type(cause).__name__}: {cause}")

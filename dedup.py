"""In-memory deduplication of source item ids.

The deduplicator remembers which item ids have already been forwarded for
insight generation during this process lifetime. It is never persisted: a
restarted pipeline may analyze an item again.

Unbounded by default. Long-running deployments can set DEDUP_MAX_ENTRIES to
keep only the most recently seen ids (least-recently-seen ids are evicted
first, and an evicted id counts as new if the source returns it again).
"""

import logging
import threading
from collections import OrderedDict

logger = logging.getLogger(__name__)


class Deduplicator:
    """Set of previously seen item ids.

    All operations take an internal lock, so ``check_and_record`` is atomic:
    of several callers racing on the same id, exactly one gets True.

    Args:
        max_entries: Maximum ids remembered (0 = unbounded)

    Example:
        >>> dedup = Deduplicator()
        >>> dedup.check_and_record("abc")
        True
        >>> dedup.check_and_record("abc")
        False
    """

    def __init__(self, max_entries: int = 0):
        if max_entries < 0:
            raise ValueError("max_entries must be non-negative")
        self.max_entries = max_entries
        self._ids: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()
        self.evicted = 0

    def seen(self, item_id: str) -> bool:
        with self._lock:
            return item_id in self._ids

    def record(self, item_id: str) -> None:
        with self._lock:
            self._record(item_id)

    def check_and_record(self, item_id: str) -> bool:
        """Record an id and report whether it was new.

        Returns:
            True if the id had not been seen before (caller should process it)
        """
        with self._lock:
            if item_id in self._ids:
                self._ids.move_to_end(item_id)
                return False
            self._record(item_id)
            return True

    def _record(self, item_id: str) -> None:
        self._ids[item_id] = None
        self._ids.move_to_end(item_id)
        if self.max_entries and len(self._ids) > self.max_entries:
            evicted, _ = self._ids.popitem(last=False)
            self.evicted += 1
            logger.debug("Dedup evicted | id=%s size=%d", evicted, len(self._ids))

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    def __contains__(self, item_id: str) -> bool:
        return self.seen(item_id)

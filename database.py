"""SQLite store for published items and insights.

The store is the durable half of publishing: the Publisher writes every item
and insight here in the background after updating the in-memory snapshot.
Records are kept as JSON documents with a few indexed columns pulled out for
querying.

Database Schema:
    items table:
        - id (TEXT, PK): Source item id
        - partition_key (TEXT): Partition the item came from
        - stored_at (INTEGER): Insert time (Unix epoch)
        - payload (TEXT): JSON document

    insights table:
        - id (TEXT, PK): Insight id
        - source_item_id (TEXT): Item the insight was derived from
        - category (TEXT), priority (TEXT): Enumerated fields
        - stored_at (INTEGER): Insert time (Unix epoch)
        - payload (TEXT): JSON document

Features:
    - WAL mode for concurrent read/write access
    - Safe to call from worker threads (writes run via asyncio.to_thread)
    - Context manager support for auto-cleanup
"""

import json
import logging
import sqlite3
import threading
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

ITEMS = "items"
INSIGHTS = "insights"
COLLECTIONS = (ITEMS, INSIGHTS)

# Indexed columns per collection, besides id / stored_at / payload
_COLUMNS = {
    ITEMS: ("partition_key",),
    INSIGHTS: ("source_item_id", "category", "priority"),
}


class Database:
    """Document store for the two published collections.

    Example:
        >>> with Database("sift.db") as db:
        ...     db.insert("insights", insight.model_dump(mode="json"))
        ...     db.recent_insights(hours=24)
    """

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS items (
        id TEXT PRIMARY KEY,
        partition_key TEXT NOT NULL DEFAULT '',
        stored_at INTEGER NOT NULL,
        payload TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_items_stored ON items(stored_at);

    CREATE TABLE IF NOT EXISTS insights (
        id TEXT PRIMARY KEY,
        source_item_id TEXT NOT NULL DEFAULT '',
        category TEXT NOT NULL DEFAULT '',
        priority TEXT NOT NULL DEFAULT '',
        stored_at INTEGER NOT NULL,
        payload TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_insights_stored ON insights(stored_at);
    CREATE INDEX IF NOT EXISTS idx_insights_priority ON insights(priority, stored_at);
    """

    path: Path
    conn: sqlite3.Connection

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self.conn = sqlite3.connect(str(self.path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()

        # WAL mode allows concurrent readers during writes
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.executescript(self.SCHEMA)
        self.conn.commit()
        logger.debug("Database initialized | path=%s", self.path)

    def insert(self, collection: str, record: dict[str, Any]) -> str:
        """Store one record, replacing any record with the same id.

        Args:
            collection: 'items' or 'insights'
            record: JSON-serializable document with an 'id' key

        Returns:
            The record id

        Raises:
            ValueError: Unknown collection or record without id
            sqlite3.Error: On storage failure
        """
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection}")
        record_id = record.get("id")
        if not record_id:
            raise ValueError(f"{collection} record has no id")

        columns = _COLUMNS[collection]
        names = ", ".join(("id", *columns, "stored_at", "payload"))
        placeholders = ", ".join("?" * (len(columns) + 3))
        values = (
            str(record_id),
            *(str(record.get(col) or "") for col in columns),
            int(time.time()),
            json.dumps(record, ensure_ascii=False, default=str),
        )

        with self._lock:
            self.conn.execute(
                f"INSERT OR REPLACE INTO {collection} ({names}) VALUES ({placeholders})",
                values,
            )
            self.conn.commit()
        logger.debug("Record stored | collection=%s id=%s", collection, record_id)
        return str(record_id)

    def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection}")
        with self._lock:
            row = self.conn.execute(
                f"SELECT payload FROM {collection} WHERE id = ?", (record_id,)
            ).fetchone()
        return json.loads(row["payload"]) if row else None

    def recent_insights(
        self,
        hours: int = 24,
        limit: int = 100,
        priority: str | None = None,
    ) -> list[dict[str, Any]]:
        """Get insights stored in the last N hours, newest first.

        Args:
            hours: Number of hours to look back
            limit: Maximum records returned
            priority: Only return this priority ('high', 'medium', 'low')
        """
        cutoff = int((datetime.now() - timedelta(hours=hours)).timestamp())
        query = "SELECT payload FROM insights WHERE stored_at >= ?"
        params: list[Any] = [cutoff]
        if priority:
            query += " AND priority = ?"
            params.append(priority)
        query += " ORDER BY stored_at DESC, rowid DESC LIMIT ?"
        params.append(limit)

        with self._lock:
            rows = self.conn.execute(query, params).fetchall()
        return [json.loads(row["payload"]) for row in rows]

    def prune(self, days: int) -> int:
        """Delete records older than the given number of days.

        Returns:
            Number of records deleted across both collections
        """
        cutoff = int((datetime.now() - timedelta(days=days)).timestamp())
        deleted = 0
        with self._lock:
            for collection in COLLECTIONS:
                cursor = self.conn.execute(f"DELETE FROM {collection} WHERE stored_at < ?", (cutoff,))
                deleted += cursor.rowcount
            self.conn.commit()
        if deleted > 0:
            logger.info("Database pruned | deleted=%d days=%d", deleted, days)
        return deleted

    def stats(self) -> dict[str, int]:
        """Get record counts per collection and high-priority insight count."""
        with self._lock:
            items = self.conn.execute("SELECT COUNT(*) AS n FROM items").fetchone()["n"]
            insights = self.conn.execute("SELECT COUNT(*) AS n FROM insights").fetchone()["n"]
            high = self.conn.execute(
                "SELECT COUNT(*) AS n FROM insights WHERE priority = 'high'"
            ).fetchone()["n"]
        return {"items": items, "insights": insights, "high_priority": high}

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

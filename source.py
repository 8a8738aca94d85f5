"""Async client for the content source's listing API.

The source exposes one JSON listing per partition:

    GET {base_url}/r/{partition}/{sort}.json?limit=N&raw_json=1[&after=CURSOR][&t=day]

Each listing carries up to 100 posts under ``data.children[].data`` and an
opaque ``data.after`` cursor for the next page.

Error Handling Strategy:
    Every failure is raised as UpstreamError so the throttled client can
    decide whether it is a throttling signal:
    - HTTP 429 and 5xx keep their status code
    - Timeouts and connection failures carry status None
    - Other non-200 statuses and malformed payloads carry their status
    SSL certificate errors trigger one retry without verification.
"""

import asyncio
import logging
import ssl
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import aiohttp
import certifi

from errors import UpstreamError
from models.item import Item, ItemMetrics

logger = logging.getLogger(__name__)

MAX_LIMIT = 100


def _ssl_context(verify: bool = True) -> ssl.SSLContext:
    """Create SSL context with optional certificate verification.

    Args:
        verify: If True, verify SSL certificates using certifi bundle.
                If False, disable verification (for problematic servers).
    """
    if verify:
        return ssl.create_default_context(cafile=certifi.where())
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


@dataclass
class FetchResult:
    """One page of a partition listing.

    Attributes:
        items: Posts in source order (typically recency or rank)
        cursor: Opaque token for the next page, or None on the last page
    """

    items: list[Item] = field(default_factory=list)
    cursor: str | None = None


def _parse_created(value: Any) -> datetime | None:
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def parse_listing(
    payload: dict[str, Any],
    partition_key: str,
    base_url: str = "https://www.reddit.com",
    fetched_at: datetime | None = None,
) -> FetchResult:
    """Convert a listing payload into Items.

    Entries without an id or a title are skipped.

    Args:
        payload: Decoded listing JSON
        partition_key: Partition the listing was requested for
        base_url: Used to turn relative permalinks into absolute links
        fetched_at: Ingestion timestamp (default: now)

    Returns:
        FetchResult with items in listing order

    Raises:
        ValueError: If the payload is not a listing
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
        raise ValueError("payload is not a listing")

    data = payload["data"]
    fetched_at = fetched_at or datetime.now(timezone.utc)
    items = []

    for child in data.get("children") or []:
        post = child.get("data") if isinstance(child, dict) else None
        if not isinstance(post, dict):
            continue
        post_id = str(post.get("id") or "").strip()
        title = str(post.get("title") or "").strip()
        if not post_id or not title:
            continue

        permalink = post.get("permalink") or ""
        source_url = f"{base_url}{permalink}" if permalink else (post.get("url") or "")

        items.append(Item(
            id=post_id,
            title=title,
            body=post.get("selftext") or "",
            partition_key=post.get("subreddit") or partition_key,
            metrics=ItemMetrics(
                score=int(post.get("score") or 0),
                reply_count=int(post.get("num_comments") or 0),
                upvote_ratio=float(post.get("upvote_ratio") or 0.0),
            ),
            source_url=source_url,
            author=post.get("author") or "",
            created_at=_parse_created(post.get("created_utc")),
            fetched_at=fetched_at,
        ))

    return FetchResult(items=items, cursor=data.get("after"))


class RedditSource:
    """Listing client with a pooled aiohttp session.

    The session is created on first use and closed by close() or by leaving
    an ``async with`` block.

    Example:
        >>> async with RedditSource() as source:
        ...     page = await source.fetch("Journaling", "hot", 10)
        >>> len(page.items)
        10
    """

    name = "reddit"

    def __init__(
        self,
        base_url: str = "https://www.reddit.com",
        user_agent: str = "sift-insights/1.0",
        timeout: int = 30,
        max_concurrent: int = 10,
    ):
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.timeout = timeout
        self.max_concurrent = max_concurrent
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=self.max_concurrent)
            self._session = aiohttp.ClientSession(connector=connector)
        return self._session

    async def fetch(
        self,
        partition_key: str,
        sort_mode: str = "hot",
        limit: int = 25,
        after: str | None = None,
        time_filter: str = "day",
    ) -> FetchResult:
        """Fetch one listing page for a partition.

        Args:
            partition_key: Partition (subreddit) name
            sort_mode: 'hot', 'new', 'rising' or 'top'
            limit: Posts requested (capped at 100)
            after: Cursor from a previous FetchResult
            time_filter: Window for 'top' listings (ignored otherwise)

        Raises:
            UpstreamError: On any failure
        """
        url = f"{self.base_url}/r/{partition_key}/{sort_mode}.json"
        params = {"limit": str(min(max(limit, 1), MAX_LIMIT)), "raw_json": "1"}
        if after:
            params["after"] = after
        if sort_mode == "top" and time_filter:
            params["t"] = time_filter

        payload = await self._get_json(url, params)
        try:
            result = parse_listing(payload, partition_key, base_url=self.base_url)
        except ValueError as e:
            raise UpstreamError(self.name, f"r/{partition_key}: {e}", status=200)

        logger.debug("Listing fetched | partition=%s items=%d", partition_key, len(result.items))
        return result

    async def _get_json(self, url: str, params: dict[str, str], verify_ssl: bool = True) -> Any:
        session = self._get_session()
        try:
            async with session.get(
                url,
                params=params,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"User-Agent": self.user_agent},
                ssl=_ssl_context(verify_ssl),
            ) as resp:
                if resp.status == 429:
                    raise UpstreamError(self.name, f"rate limited: {url}", status=429)
                if resp.status != 200:
                    raise UpstreamError(self.name, f"HTTP {resp.status}: {url}", status=resp.status)
                try:
                    return await resp.json(content_type=None)
                except ValueError as e:
                    raise UpstreamError(self.name, f"invalid JSON from {url}: {e}", status=resp.status)
        except aiohttp.ClientSSLError as e:
            # Retry without SSL verification on certificate errors
            if verify_ssl:
                logger.warning(
                    "SSL verification failed, retrying UNVERIFIED | url=%s error=%s", url, type(e).__name__
                )
                return await self._get_json(url, params, verify_ssl=False)
            raise UpstreamError(self.name, f"SSL verification failed after retry: {e}")
        except asyncio.TimeoutError:
            raise UpstreamError(self.name, f"request timed out after {self.timeout}s: {url}")
        except aiohttp.ClientError as e:
            raise UpstreamError(self.name, f"{type(e).__name__}: {e}")

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "RedditSource":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

"""Alerts for high-priority insights.

The AlertNotifier subscribes to the publisher's Snapshot. Whenever a
high-priority insight is published it fans out to the configured channels:

    Webhook: JSON POST for integration with external systems
    JSONL: One JSON object per line, appended to ALERTS_FILE

Delivery runs in background tasks and fails gracefully: errors are logged
and counted, never raised into the publisher or the poll loop.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiohttp

from models.insight import Insight, Priority
from publisher import INSIGHT_ADDED

logger = logging.getLogger(__name__)


def build_alert(insight: Insight) -> dict[str, Any]:
    """JSON payload shared by every alert channel."""
    return {
        "type": "insight_alert",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "insight_id": insight.id,
        "source_item_id": insight.source_item_id,
        "category": insight.category.value,
        "priority": insight.priority.value,
        "sentiment": insight.sentiment.value,
        "topics": list(insight.topics),
        "summary": insight.summary,
        "narrative": insight.narrative,
        "title": insight.source_title,
        "partition": insight.partition_key,
        "source_url": insight.source_url,
    }


async def send_webhook(alert: dict[str, Any], url: str) -> bool:
    """POST an alert to the webhook URL."""
    if not url:
        return True

    try:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                url, json=alert, timeout=aiohttp.ClientTimeout(total=10)
            ) as resp:
                if resp.status < 300:
                    logger.debug("Webhook sent | insight=%s", alert["insight_id"])
                    return True
                logger.warning("Webhook failed | status=%d insight=%s", resp.status, alert["insight_id"])
                return False
    except asyncio.TimeoutError:
        logger.warning("Webhook timeout | url=%s insight=%s", url[:50], alert["insight_id"])
        return False
    except aiohttp.ClientError as e:
        logger.error("Webhook error: %s (%s)", e, type(e).__name__)
        return False


def append_alerts_file(alert: dict[str, Any], filepath: str) -> bool:
    """Append an alert to a JSONL file."""
    if not filepath:
        return True

    try:
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(alert, ensure_ascii=False) + "\n")
        return True
    except OSError as e:
        logger.error("Alerts file error: %s (%s)", e, type(e).__name__)
        return False


class AlertNotifier:
    """Snapshot subscriber that alerts on important insights.

    Args:
        webhook_url: Webhook endpoint ('' = disabled)
        alerts_file: JSONL path ('' = disabled)
        priorities: Priorities that trigger an alert

    Example:
        >>> notifier = AlertNotifier(config.webhook_url, config.alerts_file)
        >>> snapshot.subscribe(notifier)
    """

    def __init__(
        self,
        webhook_url: str = "",
        alerts_file: str = "",
        priorities: tuple[Priority, ...] = (Priority.HIGH,),
    ):
        self.webhook_url = webhook_url
        self.alerts_file = alerts_file
        self.priorities = priorities
        self.sent = 0
        self.failed = 0
        self._pending: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url or self.alerts_file)

    def __call__(self, event: str, value: Any) -> None:
        if event != INSIGHT_ADDED or not self.enabled:
            return
        if value.priority not in self.priorities:
            return
        task = asyncio.get_running_loop().create_task(self.notify(value))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def notify(self, insight: Insight) -> bool:
        """Send one alert to every configured channel."""
        alert = build_alert(insight)
        webhook_ok = await send_webhook(alert, self.webhook_url)
        file_ok = await asyncio.to_thread(append_alerts_file, alert, self.alerts_file)

        ok = webhook_ok and file_ok
        if ok:
            self.sent += 1
            logger.info("Alert sent | insight=%s category=%s", insight.id, insight.category.value)
        else:
            self.failed += 1
        return ok

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

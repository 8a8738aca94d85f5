"""Logging setup with cycle context.

Every record carries the id of the poll cycle that produced it and, inside
per-partition work, the partition key. Both live in context variables, so
tasks spawned during a cycle (listing fetches, insight generation, store
writes) inherit them without passing anything around.

Usage:
    >>> setup_logging(config)
    >>> set_cycle_context("3f9c2a1b")
    >>> logger.info("Cycle started")  # [3f9c2a1b] prefix added
"""

import contextvars
import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from typing import Any

cycle_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("cycle_id", default="-")
partition_var: contextvars.ContextVar[str] = contextvars.ContextVar("partition", default="-")

LOG_FILE_NAME = "sift.log"

# Attributes every LogRecord has; anything else was passed via ``extra``
_RESERVED_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {
    "message", "asctime", "cycle_id", "partition",
}


def set_cycle_context(cycle_id: str) -> None:
    cycle_id_var.set(cycle_id)


def set_partition_context(partition_key: str) -> None:
    partition_var.set(partition_key)


def clear_context() -> None:
    cycle_id_var.set("-")
    partition_var.set("-")


class ContextFilter(logging.Filter):
    """Copy the context variables onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.cycle_id = cycle_id_var.get()
        record.partition = partition_var.get()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shippers.

    Output format:
        {"timestamp": "...", "level": "INFO", "logger": "...", "message": "...", "cycle_id": "..."}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "cycle_id": getattr(record, "cycle_id", "-"),
        }

        partition = getattr(record, "partition", "-")
        if partition != "-":
            log_data["partition"] = partition

        if record.levelno >= logging.WARNING:
            log_data["source"] = f"{record.filename}:{record.lineno}"

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = str(value)

        return json.dumps(log_data, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """Format: TIMESTAMP [LEVEL] [cycle_id] logger: message"""

    def __init__(self, include_date: bool = False):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] [%(cycle_id)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S" if include_date else "%H:%M:%S",
        )


def setup_logging(config: Any, verbose: bool = False) -> bool:
    """Configure console and rotating file logging.

    Falls back to console-only logging if the log directory is not writable.

    Args:
        config: Configuration with log_* settings
        verbose: Force DEBUG on the console

    Returns:
        True if file logging is enabled
    """
    console_level = logging.DEBUG if verbose else getattr(logging, config.log_level, logging.INFO)
    context_filter = ContextFilter()

    if config.log_format == "json":
        console_fmt, file_fmt = JsonFormatter(), JsonFormatter()
    else:
        console_fmt, file_fmt = TextFormatter(include_date=False), TextFormatter(include_date=True)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(console_level)
    console.setFormatter(console_fmt)
    console.addFilter(context_filter)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    root.addHandler(console)

    file_logging_enabled = False
    try:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        log_file = config.log_dir / LOG_FILE_NAME

        if config.log_max_bytes > 0:
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=config.log_max_bytes,
                backupCount=config.log_backup_count,
                encoding="utf-8",
            )
        else:
            file_handler = TimedRotatingFileHandler(
                log_file,
                when="midnight",
                backupCount=config.log_backup_count,
                encoding="utf-8",
            )

        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(file_fmt)
        file_handler.addFilter(context_filter)
        root.addHandler(file_handler)
        file_logging_enabled = True

    except OSError as e:
        print(
            f"Warning: Cannot write to log directory '{config.log_dir}': {e}. "
            "Falling back to console-only logging.",
            file=sys.stderr,
        )

    # Reduce noise from third-party libraries
    for lib in ("aiohttp", "httpx", "httpcore", "openai", "anthropic", "asyncio"):
        logging.getLogger(lib).setLevel(logging.WARNING)

    return file_logging_enabled

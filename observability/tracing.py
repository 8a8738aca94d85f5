"""Optional Logfire tracing.

Tracing is off unless ENABLE_LOGFIRE=true. When enabled, Logfire is
configured once and PydanticAI calls are instrumented, so each inference
request shows up as a child span of the ``generate_insight`` span that wraps
it. Without Logfire installed the pipeline runs unchanged and spans become
timing-only debug log lines.

Requirements:
    pip install 'sift[logfire]'

Usage:
    >>> setup_tracing(enabled=True, service_name="sift")
    >>> with trace_operation("poll_partition", {"partition": "Journaling"}) as attrs:
    ...     attrs["items"] = 10
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Generator

logger = logging.getLogger(__name__)


@dataclass
class TracingContext:
    """Process-wide tracing state."""
    enabled: bool = False
    service_name: str = "sift"
    token: str = ""
    _logfire_configured: bool = field(default=False, init=False)


_context = TracingContext()


def setup_tracing(
    enabled: bool = False,
    service_name: str = "sift",
    token: str = "",
) -> TracingContext:
    """Configure Logfire if enabled and installed.

    Args:
        enabled: Whether to enable tracing
        service_name: Service name reported with every span
        token: Logfire write token (empty = local console only)

    Returns:
        The process-wide TracingContext
    """
    _context.enabled = enabled
    _context.service_name = service_name
    _context.token = token

    if not enabled:
        logger.debug("Tracing disabled")
        return _context

    try:
        import logfire

        logfire.configure(service_name=service_name, token=token or None)
        logfire.instrument_pydantic_ai()
        _context._logfire_configured = True
        logger.info("Logfire tracing enabled | service=%s", service_name)
    except ImportError:
        logger.warning("Logfire not installed. Tracing disabled.")
        _context.enabled = False
    except Exception as e:
        logger.error("Failed to configure Logfire: %s", e)
        _context.enabled = False

    return _context


def tracing_enabled() -> bool:
    return _context.enabled and _context._logfire_configured


@contextmanager
def trace_operation(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[dict[str, Any], None, None]:
    """Wrap a block in a span.

    Args:
        name: Span name
        attributes: Attributes known up front

    Yields:
        Dict for attributes discovered during the block; they are attached
        to the span when the block exits (also on error)
    """
    result_attrs: dict[str, Any] = {}
    start = time.monotonic()

    try:
        if tracing_enabled():
            import logfire

            with logfire.span(name, **(attributes or {})) as span:
                try:
                    yield result_attrs
                finally:
                    for key, value in result_attrs.items():
                        span.set_attribute(key, value)
        else:
            yield result_attrs
    finally:
        logger.debug("Span %s finished in %.2fs | %s", name, time.monotonic() - start, result_attrs)

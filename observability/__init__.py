"""Logging and tracing setup.

setup_logging:
    Console plus rotating file handlers, text or JSON, with cycle context.

setup_tracing / trace_operation:
    Optional Logfire spans around polls and inference calls.

Enable tracing via configuration:
    ENABLE_LOGFIRE=true
    LOGFIRE_TOKEN=your-token  # Optional
"""

from observability.logging import (
    clear_context,
    set_cycle_context,
    set_partition_context,
    setup_logging,
)
from observability.tracing import TracingContext, setup_tracing, trace_operation

__all__ = [
    "clear_context",
    "set_cycle_context",
    "set_partition_context",
    "setup_logging",
    "setup_tracing",
    "trace_operation",
    "TracingContext",
]

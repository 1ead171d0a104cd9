"""
Observability for flow runs: trace context propagation and structured logging.

- Run and node identifiers propagate via ContextVar, no manual passing
- JSON log lines for production, coloured human-readable lines for development
"""

from flowengine.observability.logging import (
    clear_trace_context,
    configure_logging,
    get_trace_context,
    set_trace_context,
)

__all__ = [
    "configure_logging",
    "get_trace_context",
    "set_trace_context",
    "clear_trace_context",
]

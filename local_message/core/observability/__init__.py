"""
Observability Module

Tracing, metrics and structured logging for the outbox engine.
"""

from .logging import configure_logging
from .metrics import (
    get_meter,
    init_metrics,
    record_counter,
    record_histogram,
)
from .tracing import (
    create_span,
    get_current_span,
    get_trace_id,
    get_tracer,
    init_tracing,
    inject_trace_context,
)

__all__ = [
    # Tracing
    "init_tracing",
    "get_tracer",
    "get_current_span",
    "get_trace_id",
    "create_span",
    "inject_trace_context",
    # Metrics
    "init_metrics",
    "get_meter",
    "record_counter",
    "record_histogram",
    # Logging
    "configure_logging",
]

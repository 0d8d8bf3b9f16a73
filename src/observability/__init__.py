"""
Observability module: Prometheus metrics and OpenTelemetry tracing.
"""

from .tracing import setup_tracing, create_span, get_tracer, shutdown_tracing
from .metrics import (
    MetricsContext,
    track_time,
    record_bid_outcome,
    render_latest,
)

__all__ = [
    "setup_tracing",
    "create_span",
    "get_tracer",
    "shutdown_tracing",
    "MetricsContext",
    "track_time",
    "record_bid_outcome",
    "render_latest",
]

"""
Distributed tracing with OpenTelemetry.

Spans wrap bid placement and lock acquisition so a slow bid can be split
into queueing time and ledger time. Before `setup_tracing` is called, spans
come from OpenTelemetry's no-op tracer, so library code never has to check.
"""

import logging
from typing import Dict, Any, Optional, ContextManager
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.trace import Status, StatusCode, Span

logger = logging.getLogger(__name__)

_tracer: Optional[trace.Tracer] = None
_tracer_provider: Optional[TracerProvider] = None


def setup_tracing(service_name: str, console_export: bool = False) -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing for this process.

    Args:
        service_name: Name of the service (e.g., "auction-frontend-1")
        console_export: If True, export finished spans to stdout

    Returns:
        Configured tracer instance
    """
    global _tracer, _tracer_provider

    resource = Resource(attributes={SERVICE_NAME: service_name})
    _tracer_provider = TracerProvider(resource=resource)

    if console_export:
        _tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.info("Configured console span exporter")

    _tracer = _tracer_provider.get_tracer(__name__)
    logger.info(f"Initialized tracing for service: {service_name}")
    return _tracer


def get_tracer() -> trace.Tracer:
    """Return the configured tracer, or the global (no-op by default) one."""
    if _tracer is None:
        return trace.get_tracer(__name__)
    return _tracer


@contextmanager
def create_span(
    name: str,
    attributes: Optional[Dict[str, Any]] = None,
    kind: trace.SpanKind = trace.SpanKind.INTERNAL,
) -> ContextManager[Span]:
    """
    Create a trace span with optional attributes.

    Usage:
        with create_span("place_bid", {"auction_id": "abc"}):
            ...

    Exceptions raised inside the block are recorded on the span and re-raised.
    """
    tracer = get_tracer()

    with tracer.start_as_current_span(name, kind=kind) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, str(value))

        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise


def shutdown_tracing():
    """Flush pending spans and drop the configured tracer."""
    global _tracer, _tracer_provider

    if _tracer_provider:
        _tracer_provider.shutdown()
        logger.info("Tracing shutdown complete")
    _tracer = None
    _tracer_provider = None

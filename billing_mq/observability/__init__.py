"""
Observability for the queue processes.

Structured logs with per-delivery context, Prometheus counters for every
envelope transition, and OpenTelemetry spans around publish, promotion and
handler calls.
"""

from billing_mq.observability.logging import ProcessIdentity, delivery_context, setup_logging
from billing_mq.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from billing_mq.observability.tracing import get_tracer, instrument_fastapi, setup_tracing

__all__ = [
    "ProcessIdentity",
    "delivery_context",
    "setup_logging",
    "MetricsCollector",
    "get_metrics",
    "setup_metrics",
    "get_tracer",
    "instrument_fastapi",
    "setup_tracing",
]

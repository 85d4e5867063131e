"""
Structured logging setup using structlog.

Every queue process (worker, promoter, API) logs through stdlib loggers; this
module renders their ``extra`` fields with structlog and stamps each record
with the process identity and, inside a handler call, the delivery being
processed.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from opentelemetry import trace

from billing_mq.config import get_settings

# Loggers of libraries that are too chatty at INFO
_QUIET_LOGGERS = ("uvicorn.access", "redis", "httpx")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Add OpenTelemetry trace and span ids to log records."""
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


class ProcessIdentity:
    """
    Processor tagging records with the service and the queue component.

    Components are ``worker``, ``promoter`` and ``api``; a library user
    embedding the queue leaves the component unset.
    """

    def __init__(self, service: str, component: str | None = None):
        self.service = service
        self.component = component

    def __call__(self, logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", self.service)
        if self.component:
            event_dict.setdefault("component", self.component)
        return event_dict


def setup_logging(component: str | None = None, level: str | None = None) -> None:
    """
    Configure structured logging for a queue process.

    Args:
        component: Queue component this process runs, added to every record.
        level: Overrides the configured log level.
    """
    settings = get_settings()

    log_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_trace_context,
        ProcessIdentity(settings.otel_service_name, component),
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    if settings.log_format == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def delivery_context(topic: str, message_id: str, retry_count: int) -> Iterator[None]:
    """
    Bind the delivery being handled to every record logged inside the block.

    Handler code logging through any stdlib logger gets ``topic``,
    ``message_id`` and ``attempt`` without passing them around. The previous
    bindings are restored on exit, so nested or concurrent deliveries in other
    tasks are unaffected.
    """
    with structlog.contextvars.bound_contextvars(
        topic=topic,
        message_id=message_id,
        attempt=retry_count + 1,
    ):
        yield

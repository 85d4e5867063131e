"""
Message handler registry.

Consumer services register their handlers per topic; the worker process
subscribes every registration on startup.

Handlers must be idempotent - the same logical message may be delivered more
than once after a worker crash or a store outage.
"""

import importlib
import logging
from collections.abc import Callable
from dataclasses import dataclass

from billing_mq.worker.dispatcher import MessageHandler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HandlerRegistration:
    """A handler bound to a topic with its subscription options."""

    topic: str
    handler: MessageHandler
    concurrency: int | None = None
    max_retries: int | None = None


# Handler registry
_handlers: dict[str, HandlerRegistration] = {}


def register_handler(
    topic: str,
    concurrency: int | None = None,
    max_retries: int | None = None,
) -> Callable[[MessageHandler], MessageHandler]:
    """
    Decorator to register a message handler for a topic.

    Args:
        topic: The topic this handler consumes.
        concurrency: Worker loops for the topic; defaults to settings.
        max_retries: Failed deliveries before dead-lettering; defaults to settings.

    Returns:
        Decorator function.

    Example:
        @register_handler(Queue.INVOICE_GENERATION, concurrency=4)
        async def generate_invoice(payload, envelope):
            ...
    """
    def decorator(handler: MessageHandler) -> MessageHandler:
        _handlers[topic] = HandlerRegistration(
            topic=topic,
            handler=handler,
            concurrency=concurrency,
            max_retries=max_retries,
        )
        logger.info(f"Registered handler for topic: {topic}")
        return handler
    return decorator


def get_handler(topic: str) -> HandlerRegistration | None:
    """Get the registration for a topic, or None if not found."""
    return _handlers.get(topic)


def list_handlers() -> list[str]:
    """List all topics with a registered handler."""
    return list(_handlers.keys())


def unregister_handler(topic: str) -> None:
    _handlers.pop(topic, None)


def load_handler_modules(module_names: list[str]) -> None:
    """Import modules so their ``register_handler`` decorators run."""
    for name in module_names:
        importlib.import_module(name)
        logger.info(f"Loaded handler module: {name}")

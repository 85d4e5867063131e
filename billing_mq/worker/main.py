"""
Worker process for consuming topics.

The worker connects to the store, subscribes every registered handler, and
runs until SIGTERM/SIGINT. On shutdown, in-flight handler calls finish before
the store sessions are closed.
"""

import asyncio
import logging
import signal

from billing_mq.config import get_settings
from billing_mq.constants import ConnectionEvent
from billing_mq.observability.logging import setup_logging
from billing_mq.observability.metrics import setup_metrics
from billing_mq.queue import MessageQueue, get_queue
from billing_mq.worker.dispatcher import Subscription
from billing_mq.worker.handlers import get_handler, list_handlers, load_handler_modules

logger = logging.getLogger(__name__)


class Worker:
    """
    Runs subscriptions for every registered handler.

    Features:
    - One subscription per registered topic with its own concurrency
    - Connectivity events logged as they happen
    - Graceful shutdown on SIGTERM/SIGINT
    """

    def __init__(self, queue: MessageQueue | None = None, topics: list[str] | None = None):
        """
        Initialize the worker.

        Args:
            queue: Queue to consume from. Defaults to the process-wide queue.
            topics: Restrict to these topics. Defaults to every registered handler.
        """
        self.queue = queue or get_queue()
        self.topics = topics

        self._stopped = asyncio.Event()
        self._subscriptions: list[Subscription] = []

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions)

    async def start(self) -> None:
        """Subscribe all handlers, then block until ``stop`` is called."""
        self.queue.add_connection_observer(self._on_connection_event)
        if not self.queue.is_connected():
            await self.queue.connect()

        topics = self.topics if self.topics is not None else list_handlers()
        for topic in topics:
            registration = get_handler(topic)
            if registration is None:
                logger.warning(f"No handler registered for topic: {topic}")
                continue
            subscription = await self.queue.subscribe(
                topic,
                registration.handler,
                concurrency=registration.concurrency,
                max_retries=registration.max_retries,
            )
            self._subscriptions.append(subscription)

        logger.info("Worker started", extra={"topics": [s.topic for s in self._subscriptions]})

        await self._stopped.wait()

        await self.queue.disconnect()
        logger.info("Worker stopped")

    async def stop(self) -> None:
        """Stop the worker gracefully."""
        logger.info("Worker stopping")
        self._stopped.set()

    def _on_connection_event(self, event: ConnectionEvent, error: Exception | None) -> None:
        if event == ConnectionEvent.CONNECTED:
            logger.info("Connected to message store")
        elif event == ConnectionEvent.DISCONNECTED:
            logger.warning("Message store connection closed")
        else:
            logger.error("Message store connection error", extra={"error": str(error)})


async def run_async() -> None:
    """Run the worker asynchronously."""
    setup_logging("worker")
    setup_metrics()
    load_handler_modules(get_settings().worker_handler_modules)

    worker = Worker()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(worker.stop())
        )

    await worker.start()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()

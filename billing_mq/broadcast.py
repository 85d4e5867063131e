"""
Best-effort broadcast channel.

Broadcasts are fire-and-forget: nothing is persisted or retried, delivery is
at most once per live subscriber, and a message published while nobody
listens is dropped. Use them for transient signals such as cache
invalidation, never for business events that need the retry and dead-letter
guarantees of the durable queue.
"""

import asyncio
import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from billing_mq.constants import SessionRole
from billing_mq.errors import QueueConnectionError
from billing_mq.observability.metrics import MetricsCollector, get_metrics
from billing_mq.store.base import BroadcastListener
from billing_mq.store.connection import ConnectionManager
from billing_mq.types.envelope import BroadcastContext

logger = logging.getLogger(__name__)

BroadcastHandler = Callable[[Any, BroadcastContext], Awaitable[None] | None]


class BroadcastSubscription:
    """A pattern subscription feeding a handler from a listener task."""

    def __init__(
        self,
        pattern: str,
        handler: BroadcastHandler,
        listener: BroadcastListener,
        on_stop: Callable[["BroadcastSubscription"], None] | None = None,
    ):
        self.pattern = pattern
        self._handler = handler
        self._listener = listener
        self._on_stop = on_stop
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        self._task = asyncio.create_task(self._listen(), name=f"broadcast-{self.pattern}")

    async def stop(self) -> None:
        """Stop the listener task, then unsubscribe."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        try:
            await self._listener.close()
        except QueueConnectionError as e:
            logger.warning("Error closing broadcast listener", extra={"pattern": self.pattern, "error": str(e)})
        if self._on_stop is not None:
            self._on_stop(self)
        logger.info("Unsubscribed from broadcast pattern", extra={"pattern": self.pattern})

    async def _listen(self) -> None:
        try:
            async for channel, pattern, message in self._listener:
                await self._deliver(channel, pattern, message)
        except QueueConnectionError as e:
            logger.error(
                "Broadcast subscription lost",
                extra={"pattern": self.pattern, "error": str(e)},
            )

    async def _deliver(self, channel: str, pattern: str, message: str) -> None:
        try:
            data = json.loads(message)
        except ValueError:
            logger.warning("Dropping undecodable broadcast", extra={"channel": channel})
            return

        try:
            result = self._handler(data, BroadcastContext(channel=channel, pattern=pattern))
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Error handling broadcast message", extra={"channel": channel})


class Broadcaster:
    """Publishes and subscribes on the broadcast primitive of the store."""

    def __init__(self, connection: ConnectionManager, metrics: MetricsCollector | None = None):
        self._connection = connection
        self._metrics = metrics or get_metrics()
        self._subscriptions: list[BroadcastSubscription] = []

    @property
    def subscriptions(self) -> list[BroadcastSubscription]:
        return list(self._subscriptions)

    async def publish(self, channel: str, payload: Any) -> int:
        """
        Publish a payload to a channel.

        Returns:
            The number of subscribers that received it.

        Raises:
            QueueConnectionError: If the store is unreachable.
            ShutdownError: If the queue was disconnected.
        """
        store = self._connection.session(SessionRole.PUBLISHER)
        if not self._connection.is_connected():
            raise QueueConnectionError("Message queue not connected")

        receivers = await store.publish(channel, json.dumps(payload, default=str))
        self._metrics.record_broadcast(channel)
        logger.debug("Published broadcast", extra={"channel": channel, "receivers": receivers})
        return receivers

    async def subscribe(self, pattern: str, handler: BroadcastHandler) -> BroadcastSubscription:
        """
        Subscribe a handler to every channel matching a glob pattern.

        The handler is called as ``handler(data, BroadcastContext)``.

        Raises:
            QueueConnectionError: If the store is unreachable.
            ShutdownError: If the queue was disconnected.
        """
        store = self._connection.session(SessionRole.SUBSCRIBER)
        if not self._connection.is_connected():
            raise QueueConnectionError("Message queue not connected")
        listener = await store.psubscribe(pattern)

        subscription = BroadcastSubscription(pattern, handler, listener, on_stop=self._forget)
        subscription.start()
        self._subscriptions.append(subscription)

        logger.info("Subscribed to broadcast pattern", extra={"pattern": pattern})
        return subscription

    def _forget(self, subscription: BroadcastSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    async def stop_all(self) -> None:
        for subscription in list(self._subscriptions):
            await subscription.stop()

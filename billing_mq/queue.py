"""
Message queue facade.

``MessageQueue`` is the object billing services use: it owns the connection
manager and wires the publisher, promoter, dispatcher and broadcaster to it.

Example:
    queue = MessageQueue()
    await queue.connect()

    await queue.publish(Queue.INVOICE_GENERATION, {"subscription_id": "sub_1"})
    await queue.subscribe(Queue.INVOICE_GENERATION, generate_invoice, concurrency=4)
"""

import asyncio
import logging
from typing import Any

from billing_mq.broadcast import BroadcastHandler, Broadcaster, BroadcastSubscription
from billing_mq.config import Settings, get_settings
from billing_mq.constants import SessionRole
from billing_mq.errors import QueueError, SerializationError
from billing_mq.observability.metrics import MetricsCollector, get_metrics
from billing_mq.promoter.main import Promoter
from billing_mq.publisher import Publisher
from billing_mq.store.base import StoreFactory
from billing_mq.store.connection import ConnectionManager, ConnectionObserver
from billing_mq.store.redis_store import RedisStore
from billing_mq.types.envelope import Envelope, PublishOptions, QueueStats, TopicKeys
from billing_mq.worker.dispatcher import Dispatcher, MessageHandler, Subscription

logger = logging.getLogger(__name__)

# Process-wide queue instance
_queue: "MessageQueue | None" = None


class MessageQueue:
    """
    Durable topic queue with delayed delivery, retries and dead-lettering,
    plus a best-effort broadcast channel.
    """

    def __init__(
        self,
        store_factory: StoreFactory | None = None,
        settings: Settings | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the queue.

        Args:
            store_factory: Builds store sessions. Defaults to Redis from settings.
            settings: Overrides the cached environment settings.
            metrics: Overrides the global metrics collector.
        """
        self.settings = settings or get_settings()
        self._metrics = metrics or get_metrics()

        self.connection = ConnectionManager(
            store_factory or RedisStore.factory(self.settings),
            health_check_interval=self.settings.health_check_interval_seconds,
        )
        self.publisher = Publisher(self.connection, self._metrics)
        self.promoter = Promoter(
            self.connection,
            interval_seconds=self.settings.promoter_interval_seconds,
            batch_size=self.settings.promoter_batch_size,
            metrics=self._metrics,
        )
        self.dispatcher = Dispatcher(
            self.connection,
            self.publisher,
            metrics=self._metrics,
            base_delay_ms=self.settings.retry_base_delay_ms,
            pop_timeout=self.settings.pop_timeout_seconds,
            error_pause=self.settings.pop_error_pause_seconds,
            dedup_ttl=self.settings.dedup_ttl_seconds,
            settings=self.settings,
        )
        self.broadcaster = Broadcaster(self.connection, self._metrics)

        self._promoter_task: asyncio.Task | None = None

    async def __aenter__(self) -> "MessageQueue":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.disconnect()

    # Lifecycle

    async def connect(self) -> "MessageQueue":
        """Open store sessions and start the delay promoter."""
        await self.connection.connect()
        if self._promoter_task is None:
            self._promoter_task = asyncio.create_task(self.promoter.start(), name="delay-promoter")
        logger.info("Message queue initialized")
        return self

    async def disconnect(self) -> None:
        """
        Stop every consumer and close the store sessions.

        Subscriptions finish their in-flight handler calls before the sessions
        are released.
        """
        if self.connection.is_closed:
            return

        await self.broadcaster.stop_all()
        await self.dispatcher.stop_all()

        if self._promoter_task is not None:
            await self.promoter.stop()
            await asyncio.gather(self._promoter_task, return_exceptions=True)
            self._promoter_task = None

        await self.connection.disconnect()
        logger.info("Message queue disconnected")

    def is_connected(self) -> bool:
        return self.connection.is_connected()

    def add_connection_observer(self, observer: ConnectionObserver) -> None:
        """Register for connected / disconnected / error notifications."""
        self.connection.add_observer(observer)

    def remove_connection_observer(self, observer: ConnectionObserver) -> None:
        self.connection.remove_observer(observer)

    # Durable path

    async def publish(
        self,
        topic: str,
        payload: Any,
        options: PublishOptions | None = None,
        *,
        delay: int | None = None,
    ) -> str:
        """
        Publish a message to a topic.

        Args:
            topic: Topic name.
            payload: JSON-serializable message data.
            options: Publish options.
            delay: Shortcut for ``PublishOptions(delay=...)``, in milliseconds.

        Returns:
            The message id.

        Raises:
            pydantic.ValidationError: If ``delay`` is negative.
        """
        if delay is not None:
            fields = options.model_dump() if options is not None else {}
            options = PublishOptions.model_validate({**fields, "delay": delay})
        message_id = await self.publisher.publish(topic, payload, options)
        if options is not None and options.delay:
            # Delayed messages need promotion even when this process does not consume the topic
            self.promoter.watch(topic)
        return message_id

    async def subscribe(
        self,
        topic: str,
        handler: MessageHandler,
        *,
        concurrency: int | None = None,
        max_retries: int | None = None,
    ) -> Subscription:
        """
        Consume a topic with ``concurrency`` workers.

        The topic is also registered with the delay promoter so retries and
        delayed publishes become visible.
        """
        subscription = self.dispatcher.subscribe(
            topic,
            handler,
            concurrency=concurrency,
            max_retries=max_retries,
        )
        self.promoter.watch(topic)
        return subscription

    async def get_queue_stats(self, topic: str) -> QueueStats:
        """Current container lengths for a topic."""
        store = self.connection.session(SessionRole.GENERAL)
        keys = TopicKeys(topic)

        pending, delayed, failed = await asyncio.gather(
            store.length(keys.ready),
            store.count(keys.delayed),
            store.length(keys.dead_letter),
        )
        self._metrics.update_queue_depth(topic, pending, delayed, failed)
        return QueueStats.from_counts(pending, delayed, failed)

    async def consume_dead_letters(self, topic: str, limit: int = 10) -> list[Envelope]:
        """
        Remove and return up to ``limit`` dead-lettered envelopes, oldest first.

        For operators draining a dead-letter queue; nothing calls this
        automatically.
        """
        store = self.connection.session(SessionRole.GENERAL)
        key = TopicKeys(topic).dead_letter

        envelopes: list[Envelope] = []
        for _ in range(limit):
            raw = await store.pop(key)
            if raw is None:
                break
            try:
                envelopes.append(Envelope.from_json(raw))
            except SerializationError as e:
                envelopes.append(Envelope.from_malformed(raw, e))
        return envelopes

    async def replay_dead_letters(self, topic: str, limit: int = 10) -> list[str]:
        """
        Re-publish up to ``limit`` dead-lettered payloads as new messages.

        Each replayed message gets a fresh id and retry budget; its
        ``original_id`` points at the dead-lettered envelope. Envelopes move
        one at a time: if a publish fails, the envelope being replayed goes
        back onto the newest end of the dead-letter queue and the error is
        raised.

        Returns:
            The new message ids.
        """
        store = self.connection.session(SessionRole.GENERAL)
        key = TopicKeys(topic).dead_letter

        replayed: list[str] = []
        for _ in range(limit):
            raw = await store.pop(key)
            if raw is None:
                break
            try:
                envelope = Envelope.from_json(raw)
            except SerializationError as e:
                envelope = Envelope.from_malformed(raw, e)
            try:
                message_id = await self.publisher.publish(
                    topic,
                    envelope.payload,
                    PublishOptions(original_id=envelope.options.original_id or envelope.id),
                )
            except Exception:
                await self._restore_dead_letter(key, raw)
                raise
            replayed.append(message_id)

        if replayed:
            logger.info("Replayed dead-lettered messages", extra={"topic": topic, "count": len(replayed)})
        return replayed

    async def _restore_dead_letter(self, key: str, raw: str | bytes) -> None:
        try:
            await self.connection.session(SessionRole.GENERAL).push(key, raw)
        except QueueError:
            logger.critical(
                "Could not return dead letter after failed replay",
                extra={"key": key, "item": raw},
            )
            raise

    # Broadcast path

    async def publish_broadcast(self, channel: str, payload: Any) -> int:
        """Fire-and-forget publish; returns the number of live receivers."""
        return await self.broadcaster.publish(channel, payload)

    async def subscribe_broadcast(self, pattern: str, handler: BroadcastHandler) -> BroadcastSubscription:
        """Subscribe to every broadcast channel matching a glob pattern."""
        return await self.broadcaster.subscribe(pattern, handler)


def get_queue() -> MessageQueue:
    """
    Get the process-wide message queue.

    Returns:
        MessageQueue: The queue instance, built from environment settings.
    """
    global _queue
    if _queue is None:
        _queue = MessageQueue()
    return _queue

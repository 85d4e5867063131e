"""
Dispatcher: the worker pool behind ``subscribe``.

Each subscription runs ``concurrency`` independent worker loops. A loop pops
the oldest ready envelope with a bounded blocking wait, runs the handler, and
on failure either re-delays the envelope with exponential backoff or moves it
to the dead-letter queue.

Handlers must be idempotent or order-tolerant: several workers on the same
topic process envelopes concurrently, and a crash between a failed handler
call and the requeue loses that retry attempt.
"""

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from billing_mq.config import Settings, get_settings
from billing_mq.constants import SPAN_HANDLE, SessionRole
from billing_mq.errors import (
    HandlerError,
    QueueConnectionError,
    SerializationError,
    ShutdownError,
)
from billing_mq.observability.logging import delivery_context
from billing_mq.observability.metrics import MetricsCollector, get_metrics
from billing_mq.observability.tracing import get_tracer
from billing_mq.publisher import Publisher
from billing_mq.store.connection import ConnectionManager
from billing_mq.types.envelope import Envelope, TopicKeys
from billing_mq.worker.retry import RetryPolicy

logger = logging.getLogger(__name__)

# Handlers receive the payload and the full envelope
MessageHandler = Callable[[Any, Envelope], Awaitable[None] | None]


class Subscription:
    """
    Handle for a running subscription.

    Features:
    - Bounded blocking pops so ``stop`` is observed every iteration
    - In-flight handler calls finish before workers exit
    - Duplicate deliveries of the same attempt are discarded
    - Store outages during pop are retried after a fixed pause
    """

    def __init__(
        self,
        topic: str,
        handler: MessageHandler,
        connection: ConnectionManager,
        publisher: Publisher,
        policy: RetryPolicy,
        concurrency: int,
        pop_timeout: float,
        error_pause: float,
        dedup_ttl: int,
        metrics: MetricsCollector,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")

        self.topic = topic
        self.keys = TopicKeys(topic)
        self.concurrency = concurrency
        self.policy = policy

        self._handler = handler
        self._connection = connection
        self._publisher = publisher
        self._pop_timeout = pop_timeout
        self._error_pause = error_pause
        self._dedup_ttl = dedup_ttl
        self._metrics = metrics

        self._running = False
        self._workers: list[asyncio.Task] = []

    @property
    def max_retries(self) -> int:
        return self.policy.max_retries

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the worker loops."""
        if self._running:
            return
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker_loop(index), name=f"{self.topic}-worker-{index}")
            for index in range(self.concurrency)
        ]
        logger.info(
            "Subscribed to topic",
            extra={"topic": self.topic, "concurrency": self.concurrency, "max_retries": self.max_retries},
        )

    async def stop(self) -> None:
        """Stop the subscription, letting in-flight handler calls finish."""
        if not self._running:
            await self.wait()
            return
        logger.info("Subscription stopping", extra={"topic": self.topic})
        self._running = False
        await self.wait()
        logger.info("Subscription stopped", extra={"topic": self.topic})

    async def wait(self) -> None:
        """Wait for every worker loop to exit."""
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)

    async def _worker_loop(self, index: int) -> None:
        while self._running:
            try:
                store = self._connection.session(SessionRole.SUBSCRIBER)
                raw = await store.pop(self.keys.ready, self._pop_timeout)
                if raw is None:
                    continue
                await self.process(raw)
            except ShutdownError:
                break
            except QueueConnectionError as e:
                logger.warning(
                    "Store unavailable, pausing worker",
                    extra={"topic": self.topic, "worker": index, "error": str(e)},
                )
                await asyncio.sleep(self._error_pause)
            except Exception as e:
                logger.exception(
                    f"Error processing messages: {e}",
                    extra={"topic": self.topic, "worker": index},
                )
                await asyncio.sleep(self._error_pause)

    async def process(self, raw: str | bytes) -> None:
        """
        Handle one popped item.

        Runs the handler, then discards the envelope on success, or
        re-delays / dead-letters it on failure.
        """
        try:
            envelope = Envelope.from_json(raw)
        except SerializationError as e:
            logger.error(
                "Malformed envelope, moving to DLQ",
                extra={"topic": self.topic, "error": str(e)},
            )
            await self._publisher.dead_letter(self.topic, Envelope.from_malformed(raw, e), reason="malformed")
            return

        if not await self._claim(envelope):
            logger.info(
                "Discarding duplicate delivery",
                extra={"topic": self.topic, "message_id": envelope.id, "retry_count": envelope.retry_count},
            )
            self._metrics.record_duplicate(self.topic)
            return

        start_time = time.monotonic()
        with delivery_context(self.topic, envelope.id, envelope.retry_count):
            logger.info("Processing message")
            try:
                await self._invoke(envelope)
            except Exception as exc:
                error = HandlerError.from_exception(self.topic, envelope.id, exc)
                self._metrics.record_processed(self.topic, "failed", time.monotonic() - start_time)
                await self._handle_failure(envelope, error)
                return

            self._metrics.record_processed(self.topic, "succeeded", time.monotonic() - start_time)
            logger.info("Successfully processed message")

    async def _invoke(self, envelope: Envelope) -> None:
        with get_tracer().start_as_current_span(SPAN_HANDLE) as span:
            span.set_attribute("topic", self.topic)
            span.set_attribute("message_id", envelope.id)
            span.set_attribute("retry_count", envelope.retry_count)

            result = self._handler(envelope.payload, envelope)
            if inspect.isawaitable(result):
                await result

    async def _claim(self, envelope: Envelope) -> bool:
        """
        Claim this attempt of the envelope.

        Returns False if the same (id, retry_count) was already delivered. If
        the marker cannot be written the delivery goes ahead.
        """
        try:
            store = self._connection.session(SessionRole.SUBSCRIBER)
            return await store.incr(self.keys.seen(envelope), self._dedup_ttl) == 1
        except QueueConnectionError as e:
            logger.warning(
                "Could not record delivery marker, processing anyway",
                extra={"topic": self.topic, "message_id": envelope.id, "error": str(e)},
            )
            return True

    async def _handle_failure(self, envelope: Envelope, error: HandlerError) -> None:
        failed = envelope.record_failure(str(error))
        decision = self.policy.decide(failed.retry_count)

        if decision.should_retry:
            logger.warning(
                "Handler failed, scheduling retry",
                extra={
                    "topic": self.topic,
                    "message_id": envelope.id,
                    "error": str(error),
                    "attempt": failed.retry_count,
                    "max_retries": self.max_retries,
                    "delay_ms": decision.delay_ms,
                },
            )
            await self._publisher.schedule_retry(self.topic, failed, decision.delay_ms)
        else:
            logger.error(
                "Message failed after max retries, moving to DLQ",
                extra={
                    "topic": self.topic,
                    "message_id": envelope.id,
                    "error": str(error),
                    "retry_count": failed.retry_count,
                },
            )
            await self._publisher.dead_letter(self.topic, failed)


class Dispatcher:
    """Creates and tracks subscriptions."""

    def __init__(
        self,
        connection: ConnectionManager,
        publisher: Publisher,
        metrics: MetricsCollector | None = None,
        base_delay_ms: int | None = None,
        pop_timeout: float | None = None,
        error_pause: float | None = None,
        dedup_ttl: int | None = None,
        settings: Settings | None = None,
    ):
        settings = self._settings = settings or get_settings()

        self._connection = connection
        self._publisher = publisher
        self._metrics = metrics or get_metrics()
        self.base_delay_ms = base_delay_ms if base_delay_ms is not None else settings.retry_base_delay_ms
        self.pop_timeout = pop_timeout or settings.pop_timeout_seconds
        self.error_pause = error_pause if error_pause is not None else settings.pop_error_pause_seconds
        self.dedup_ttl = dedup_ttl or settings.dedup_ttl_seconds

        self._subscriptions: list[Subscription] = []

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions)

    def subscribe(
        self,
        topic: str,
        handler: MessageHandler,
        concurrency: int | None = None,
        max_retries: int | None = None,
    ) -> Subscription:
        """
        Start consuming a topic.

        Args:
            topic: Topic name.
            handler: Called as ``handler(payload, envelope)``; may be async.
            concurrency: Number of worker loops.
            max_retries: Failed deliveries allowed before dead-lettering.

        Returns:
            The running subscription.

        Raises:
            QueueConnectionError: If the queue is not connected.
            ShutdownError: If the queue was disconnected.
        """
        settings = self._settings

        self._connection.session(SessionRole.SUBSCRIBER)
        if not self._connection.is_connected():
            raise QueueConnectionError("Message queue not connected")

        subscription = Subscription(
            topic=topic,
            handler=handler,
            connection=self._connection,
            publisher=self._publisher,
            policy=RetryPolicy(
                max_retries=max_retries if max_retries is not None else settings.default_max_retries,
                base_delay_ms=self.base_delay_ms,
            ),
            concurrency=concurrency if concurrency is not None else settings.default_concurrency,
            pop_timeout=self.pop_timeout,
            error_pause=self.error_pause,
            dedup_ttl=self.dedup_ttl,
            metrics=self._metrics,
        )
        subscription.start()
        self._subscriptions.append(subscription)
        return subscription

    async def stop_all(self) -> None:
        """Stop every subscription; in-flight handlers finish first."""
        subscriptions, self._subscriptions = self._subscriptions, []
        await asyncio.gather(*(subscription.stop() for subscription in subscriptions))

"""
Publisher for the durable queue path.

New messages go to the tail of a topic's ready list, or into its delayed set
when a delay is given. The dispatcher also writes through the publisher when
it re-delays a failed envelope or moves it to the dead-letter queue.
"""

import logging
from typing import Any

from billing_mq.constants import SPAN_PUBLISH, SessionRole
from billing_mq.errors import QueueConnectionError
from billing_mq.observability.metrics import MetricsCollector, get_metrics
from billing_mq.observability.tracing import get_tracer
from billing_mq.store.base import QueueStore
from billing_mq.store.connection import ConnectionManager
from billing_mq.types.envelope import Envelope, PublishOptions, TopicKeys, now_ms

logger = logging.getLogger(__name__)


class Publisher:
    """Writes envelopes through the publisher session."""

    def __init__(
        self,
        connection: ConnectionManager,
        metrics: MetricsCollector | None = None,
    ):
        self._connection = connection
        self._metrics = metrics or get_metrics()

    def _store(self) -> QueueStore:
        store = self._connection.session(SessionRole.PUBLISHER)
        if not self._connection.is_connected():
            raise QueueConnectionError("Message queue not connected")
        return store

    async def publish(
        self,
        topic: str,
        payload: Any,
        options: PublishOptions | None = None,
    ) -> str:
        """
        Publish a message to a topic.

        Args:
            topic: Topic name.
            payload: JSON-serializable message data.
            options: Publish options; ``delay`` is in milliseconds.

        Returns:
            The new envelope id, once the store acknowledged the write.

        Raises:
            QueueConnectionError: If the store is unreachable.
            ShutdownError: If the queue was disconnected.
        """
        store = self._store()
        options = options or PublishOptions()
        envelope = Envelope.create(payload, options)
        keys = TopicKeys(topic)
        delayed = bool(options.delay)

        with get_tracer().start_as_current_span(SPAN_PUBLISH) as span:
            span.set_attribute("topic", topic)
            span.set_attribute("message_id", envelope.id)

            if delayed:
                await store.schedule(keys.delayed, envelope.to_json(), now_ms() + options.delay)
            else:
                await store.push(keys.ready, envelope.to_json())

        self._metrics.record_published(topic, delayed)
        logger.info(
            "Published message",
            extra={"topic": topic, "message_id": envelope.id, "delay_ms": options.delay},
        )
        return envelope.id

    async def schedule_retry(self, topic: str, envelope: Envelope, delay_ms: int) -> None:
        """Put a failed envelope back into the delayed set, keeping its id."""
        store = self._store()
        await store.schedule(TopicKeys(topic).delayed, envelope.to_json(), now_ms() + delay_ms)
        self._metrics.record_retried(topic)

    async def dead_letter(self, topic: str, envelope: Envelope, reason: str = "retries_exhausted") -> None:
        """Append an envelope to the topic's dead-letter queue."""
        store = self._store()
        await store.push(TopicKeys(topic).dead_letter, envelope.to_json())
        self._metrics.record_dead_lettered(topic, reason)

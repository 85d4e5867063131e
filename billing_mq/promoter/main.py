"""
Delay promoter for moving due delayed envelopes into the ready queue.

The promoter runs on a fixed tick. Each tick it range-removes up to a batch of
due entries from every watched topic's delayed set and appends them to the
ready list in due order. The move is a single atomic store operation, so an
envelope is never lost between the two containers and running several
promoters against the same topic never promotes it twice.
"""

import asyncio
import logging
import signal
from collections.abc import Iterable

from billing_mq.config import get_settings
from billing_mq.constants import SPAN_PROMOTE, SessionRole
from billing_mq.errors import QueueConnectionError, ShutdownError
from billing_mq.observability.logging import setup_logging
from billing_mq.observability.metrics import MetricsCollector, get_metrics
from billing_mq.observability.tracing import get_tracer
from billing_mq.store.connection import ConnectionManager
from billing_mq.store.redis_store import RedisStore
from billing_mq.types.envelope import TopicKeys, now_ms

logger = logging.getLogger(__name__)


class Promoter:
    """
    Background task promoting due delayed envelopes.

    Runs periodically to:
    1. Fetch up to ``batch_size`` delayed entries per topic whose due time has passed
    2. Append them to the tail of the topic's ready list
    3. Record metrics for monitoring
    """

    def __init__(
        self,
        connection: ConnectionManager,
        topics: Iterable[str] = (),
        interval_seconds: float | None = None,
        batch_size: int | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the promoter.

        Args:
            connection: Connection manager owning the general session.
            topics: Topics to watch from the start.
            interval_seconds: Seconds between ticks.
            batch_size: Maximum envelopes promoted per topic per tick.
        """
        settings = get_settings()
        self.interval = interval_seconds or settings.promoter_interval_seconds
        self.batch_size = batch_size or settings.promoter_batch_size

        self._connection = connection
        self._metrics = metrics or get_metrics()
        self._topics: set[str] = set(topics)
        self._running = False
        self._stopped = asyncio.Event()

    @property
    def topics(self) -> frozenset[str]:
        return frozenset(self._topics)

    @property
    def is_running(self) -> bool:
        return self._running

    def watch(self, topic: str) -> None:
        """Add a topic to the scan set."""
        if topic not in self._topics:
            self._topics.add(topic)
            logger.debug("Promoter watching topic", extra={"topic": topic})

    def unwatch(self, topic: str) -> None:
        self._topics.discard(topic)

    async def start(self) -> None:
        """
        Run the promoter loop until ``stop`` is called.

        ``stop`` is final: called before the loop got its first step, the loop
        never runs, and a stopped promoter does not start again.
        """
        if self._stopped.is_set():
            return
        logger.info(f"Promoter starting with interval {self.interval}s")
        self._running = True

        while not self._stopped.is_set():
            try:
                promoted = await self.run_once()

                if promoted > 0:
                    logger.debug(f"Promoted {promoted} delayed messages")

            except ShutdownError:
                break
            except QueueConnectionError as e:
                logger.warning("Store unavailable, skipping promotion tick", extra={"error": str(e)})
            except Exception as e:
                logger.exception(f"Error in promoter loop: {e}")

            try:
                await asyncio.wait_for(self._stopped.wait(), self.interval)
            except TimeoutError:
                pass

        self._running = False
        logger.info("Promoter stopped")

    async def stop(self) -> None:
        """Stop the promoter."""
        logger.info("Promoter stopping")
        self._stopped.set()

    async def run_once(self) -> int:
        """
        Run a single promotion tick over every watched topic.

        Returns:
            Number of envelopes promoted.
        """
        total = 0
        for topic in sorted(self._topics):
            total += await self.promote_topic(topic)
        return total

    async def promote_topic(self, topic: str) -> int:
        """
        Promote due envelopes of one topic.

        Returns:
            Number of envelopes promoted.
        """
        store = self._connection.session(SessionRole.GENERAL)
        keys = TopicKeys(topic)

        with get_tracer().start_as_current_span(SPAN_PROMOTE) as span:
            span.set_attribute("topic", topic)

            moved = await store.promote_due(keys.delayed, keys.ready, now_ms(), self.batch_size)
            span.set_attribute("promoted", len(moved))

        if moved:
            self._metrics.record_promoted(topic, len(moved))
        return len(moved)


async def run_async() -> None:
    """Run a standalone promoter for the configured topics."""
    setup_logging("promoter")
    settings = get_settings()

    connection = ConnectionManager(RedisStore.factory(settings))
    await connection.connect()

    promoter = Promoter(connection, topics=settings.promoter_topics)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(promoter.stop())
        )

    try:
        await promoter.start()
    finally:
        await connection.disconnect()


def run() -> None:
    """Run the promoter."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()

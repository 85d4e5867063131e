"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from billing_mq.constants import (
    METRIC_BROADCASTS_PUBLISHED,
    METRIC_DUPLICATES_DISCARDED,
    METRIC_HANDLER_DURATION,
    METRIC_MESSAGES_DEAD_LETTERED,
    METRIC_MESSAGES_PROCESSED,
    METRIC_MESSAGES_PROMOTED,
    METRIC_MESSAGES_PUBLISHED,
    METRIC_MESSAGES_RETRIED,
    METRIC_QUEUE_DEPTH,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the message queue.

    Collects metrics for:
    - Queue depth per container
    - Publishes, deliveries, retries and dead-letters
    - Delayed promotions and discarded duplicates
    - Handler duration
    - Broadcast publishes
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of envelopes in a topic container",
            ["topic", "container"],
            registry=self._registry,
        )

        self.messages_published = Counter(
            METRIC_MESSAGES_PUBLISHED,
            "Total number of messages published",
            ["topic", "delayed"],
            registry=self._registry,
        )

        self.messages_processed = Counter(
            METRIC_MESSAGES_PROCESSED,
            "Total number of delivery attempts by outcome",
            ["topic", "status"],
            registry=self._registry,
        )

        self.messages_retried = Counter(
            METRIC_MESSAGES_RETRIED,
            "Total number of failed deliveries scheduled for retry",
            ["topic"],
            registry=self._registry,
        )

        self.messages_dead_lettered = Counter(
            METRIC_MESSAGES_DEAD_LETTERED,
            "Total number of envelopes moved to the dead-letter queue",
            ["topic", "reason"],
            registry=self._registry,
        )

        self.messages_promoted = Counter(
            METRIC_MESSAGES_PROMOTED,
            "Total number of delayed envelopes promoted to the ready queue",
            ["topic"],
            registry=self._registry,
        )

        self.duplicates_discarded = Counter(
            METRIC_DUPLICATES_DISCARDED,
            "Total number of duplicate deliveries discarded at pop time",
            ["topic"],
            registry=self._registry,
        )

        self.broadcasts_published = Counter(
            METRIC_BROADCASTS_PUBLISHED,
            "Total number of broadcast messages published",
            ["channel"],
            registry=self._registry,
        )

        self.handler_duration = Histogram(
            METRIC_HANDLER_DURATION,
            "Handler execution duration in seconds",
            ["topic", "status"],
            buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=self._registry,
        )

    def record_published(self, topic: str, delayed: bool) -> None:
        """Record a publish."""
        self.messages_published.labels(topic=topic, delayed=str(delayed).lower()).inc()

    def record_processed(self, topic: str, status: str, duration_seconds: float) -> None:
        """Record a delivery attempt and how long the handler ran."""
        self.messages_processed.labels(topic=topic, status=status).inc()
        self.handler_duration.labels(topic=topic, status=status).observe(duration_seconds)

    def record_retried(self, topic: str) -> None:
        self.messages_retried.labels(topic=topic).inc()

    def record_dead_lettered(self, topic: str, reason: str) -> None:
        self.messages_dead_lettered.labels(topic=topic, reason=reason).inc()

    def record_promoted(self, topic: str, count: int = 1) -> None:
        self.messages_promoted.labels(topic=topic).inc(count)

    def record_duplicate(self, topic: str) -> None:
        self.duplicates_discarded.labels(topic=topic).inc()

    def record_broadcast(self, channel: str) -> None:
        self.broadcasts_published.labels(channel=channel).inc()

    def update_queue_depth(self, topic: str, pending: int, delayed: int, failed: int) -> None:
        """Update container depths for a topic."""
        self.queue_depth.labels(topic=topic, container="ready").set(pending)
        self.queue_depth.labels(topic=topic, container="delayed").set(delayed)
        self.queue_depth.labels(topic=topic, container="dead_letter").set(failed)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics(registry: CollectorRegistry | None = None) -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector(registry)
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics

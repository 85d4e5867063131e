"""
Type definitions for the message queue.
Contains envelope, topic and API types, grouped by module.
"""

from billing_mq.types.api import (
    ErrorResponse,
    HealthResponse,
    QueueStatsResponse,
    ReplayDeadLettersRequest,
    ReplayDeadLettersResponse,
)
from billing_mq.types.envelope import (
    BroadcastContext,
    Envelope,
    PublishOptions,
    QueueStats,
    TopicKeys,
    generate_message_id,
    now_ms,
)

__all__ = [
    # API types
    "QueueStatsResponse",
    "ReplayDeadLettersRequest",
    "ReplayDeadLettersResponse",
    "HealthResponse",
    "ErrorResponse",
    # Envelope types
    "Envelope",
    "PublishOptions",
    "QueueStats",
    "TopicKeys",
    "BroadcastContext",
    "generate_message_id",
    "now_ms",
]

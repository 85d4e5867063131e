"""
Application constants.
Centralized location for all constant values used across the queue.
"""

from enum import StrEnum


class ConnectionEvent(StrEnum):
    """Connectivity notifications delivered to connection observers."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class SessionRole(StrEnum):
    """Independent store sessions held by the connection manager."""

    GENERAL = "general"
    PUBLISHER = "publisher"
    SUBSCRIBER = "subscriber"


class MessageType(StrEnum):
    """Billing event types carried in envelope payloads."""

    # Invoice-related events
    INVOICE_GENERATION_REQUESTED = "invoice.generation.requested"
    INVOICE_GENERATED = "invoice.generated"
    INVOICE_PAYMENT_RECEIVED = "invoice.payment.received"
    INVOICE_OVERDUE = "invoice.overdue"

    # Subscription events
    SUBSCRIPTION_CREATED = "subscription.created"
    SUBSCRIPTION_UPGRADED = "subscription.upgraded"
    SUBSCRIPTION_DOWNGRADED = "subscription.downgraded"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    SUBSCRIPTION_EXPIRED = "subscription.expired"

    # Customer events
    CUSTOMER_CREATED = "customer.created"
    CUSTOMER_UPDATED = "customer.updated"
    CUSTOMER_DEACTIVATED = "customer.deactivated"

    # Billing events
    BILLING_CYCLE_STARTED = "billing.cycle.started"
    BILLING_CYCLE_COMPLETED = "billing.cycle.completed"
    PAYMENT_FAILED = "payment.failed"
    PAYMENT_RETRY_SCHEDULED = "payment.retry.scheduled"


class Queue(StrEnum):
    """Well-known topic names shared by the billing services."""

    INVOICE_GENERATION = "invoice-generation"
    BILLING_EVENTS = "billing-events"
    NOTIFICATIONS = "notifications"
    WEBHOOKS = "webhooks"


# Store key layout
DELAYED_KEY_PREFIX = "delayed:"
DEAD_LETTER_KEY_PREFIX = "dlq:"
SEEN_KEY_PREFIX = "seen:"

# Message ids
MESSAGE_ID_PREFIX = "msg"
MESSAGE_ID_SUFFIX_LENGTH = 9

# Default values
DEFAULT_CONCURRENCY = 1
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY_MS = 1000
DEFAULT_PROMOTER_BATCH_SIZE = 10

# Metrics names
METRIC_QUEUE_DEPTH = "queue_depth"
METRIC_MESSAGES_PUBLISHED = "messages_published_total"
METRIC_MESSAGES_PROCESSED = "messages_processed_total"
METRIC_MESSAGES_RETRIED = "messages_retried_total"
METRIC_MESSAGES_DEAD_LETTERED = "messages_dead_lettered_total"
METRIC_MESSAGES_PROMOTED = "messages_promoted_total"
METRIC_DUPLICATES_DISCARDED = "duplicate_deliveries_discarded_total"
METRIC_BROADCASTS_PUBLISHED = "broadcasts_published_total"
METRIC_HANDLER_DURATION = "handler_duration_seconds"

# Trace span names
SPAN_PUBLISH = "publish_message"
SPAN_HANDLE = "handle_message"
SPAN_PROMOTE = "promote_delayed"

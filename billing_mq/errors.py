"""
Exception hierarchy for the message queue.
"""


class QueueError(Exception):
    """Base class for all message queue errors."""


class QueueConnectionError(QueueError, ConnectionError):
    """
    The backing store is unreachable or the queue is not connected.

    Publish and subscribe fail fast with this error; the caller decides
    whether to retry or buffer externally.
    """


class ShutdownError(QueueError):
    """An operation was attempted after the queue was disconnected."""


class SerializationError(QueueError):
    """A stored item could not be decoded into an envelope."""

    def __init__(self, message: str, raw: str | bytes | None = None):
        super().__init__(message)
        self.raw = raw


class HandlerError(QueueError):
    """
    A consumer handler failed while processing an envelope.

    The original exception is chained as ``__cause__``. These errors feed the
    retry pipeline and never reach the publisher.
    """

    def __init__(self, topic: str, envelope_id: str, message: str):
        super().__init__(message)
        self.topic = topic
        self.envelope_id = envelope_id

    @classmethod
    def from_exception(cls, topic: str, envelope_id: str, exc: BaseException) -> "HandlerError":
        """Wrap a handler exception, keeping its message as the error text."""
        error = cls(topic, envelope_id, str(exc) or exc.__class__.__name__)
        error.__cause__ = exc
        return error

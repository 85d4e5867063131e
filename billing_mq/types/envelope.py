"""
Envelope and topic type definitions.

Envelopes are stored as JSON using the field names the Node.js billing
services write (``timestamp``, ``data``, ``retryCount``, ...), so both sides
can read each other's queues.
"""

import secrets
import string
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from billing_mq.constants import (
    DEAD_LETTER_KEY_PREFIX,
    DELAYED_KEY_PREFIX,
    MESSAGE_ID_PREFIX,
    MESSAGE_ID_SUFFIX_LENGTH,
    SEEN_KEY_PREFIX,
)
from billing_mq.errors import SerializationError

_ID_ALPHABET = string.digits + string.ascii_lowercase


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def generate_message_id() -> str:
    """
    Generate a unique message id.

    Format: ``msg_<epoch-ms>_<9 random base36 chars>``.
    """
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(MESSAGE_ID_SUFFIX_LENGTH))
    return f"{MESSAGE_ID_PREFIX}_{now_ms()}_{suffix}"


class PublishOptions(BaseModel):
    """Options supplied on publish and carried inside the envelope."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    delay: int | None = Field(default=None, ge=0, description="Delivery delay in milliseconds")
    is_retry: bool = Field(default=False, alias="isRetry")
    original_id: str | None = Field(default=None, alias="originalId")


class Envelope(BaseModel):
    """
    A message plus its delivery metadata.

    The ``id`` never changes once created; failed deliveries produce a copy
    with an incremented ``retry_count`` and fresh error fields.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    created_at: datetime = Field(alias="timestamp")
    payload: Any = Field(default=None, alias="data")
    options: PublishOptions = Field(default_factory=PublishOptions)
    retry_count: int = Field(default=0, ge=0, alias="retryCount")
    last_error: str | None = Field(default=None, alias="lastError")
    last_error_at: datetime | None = Field(default=None, alias="lastErrorAt")

    @classmethod
    def create(cls, payload: Any, options: PublishOptions | None = None) -> "Envelope":
        """Create a fresh envelope for a new publish."""
        return cls(
            id=generate_message_id(),
            created_at=datetime.now(UTC),
            payload=payload,
            options=options or PublishOptions(),
            retry_count=0,
        )

    @classmethod
    def from_malformed(cls, raw: str | bytes, error: SerializationError) -> "Envelope":
        """Wrap an undecodable stored item so it can be dead-lettered."""
        text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        now = datetime.now(UTC)
        return cls(
            id=generate_message_id(),
            created_at=now,
            payload=text,
            last_error=str(error),
            last_error_at=now,
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "Envelope":
        """
        Decode an envelope from its stored JSON form.

        Raises:
            SerializationError: If the item is not UTF-8 JSON or not an envelope.
        """
        try:
            text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        except UnicodeDecodeError as e:
            raise SerializationError(f"Malformed envelope: not UTF-8 ({e.reason})", raw) from e
        try:
            return cls.model_validate_json(text)
        except ValidationError as e:
            raise SerializationError(f"Malformed envelope: {e.error_count()} validation error(s)", raw) from e

    def to_json(self) -> str:
        """Encode the envelope in its stored JSON form."""
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def record_failure(self, error: str) -> "Envelope":
        """Return a copy reflecting one more failed delivery."""
        return self.model_copy(
            update={
                "retry_count": self.retry_count + 1,
                "last_error": error,
                "last_error_at": datetime.now(UTC),
                "options": self.options.model_copy(
                    update={"is_retry": True, "original_id": self.options.original_id or self.id}
                ),
            }
        )


class QueueStats(BaseModel):
    """Container lengths for one topic."""

    pending: int
    delayed: int
    failed: int
    total: int

    @classmethod
    def from_counts(cls, pending: int, delayed: int, failed: int) -> "QueueStats":
        return cls(pending=pending, delayed=delayed, failed=failed, total=pending + delayed + failed)


@dataclass(frozen=True)
class TopicKeys:
    """Store keys for a topic's ready, delayed and dead-letter containers."""

    name: str

    @property
    def ready(self) -> str:
        return self.name

    @property
    def delayed(self) -> str:
        return f"{DELAYED_KEY_PREFIX}{self.name}"

    @property
    def dead_letter(self) -> str:
        return f"{DEAD_LETTER_KEY_PREFIX}{self.name}"

    def seen(self, envelope: Envelope) -> str:
        """Dedup marker for one delivery attempt of an envelope."""
        return f"{SEEN_KEY_PREFIX}{self.name}:{envelope.id}:{envelope.retry_count}"


@dataclass(frozen=True)
class BroadcastContext:
    """Delivery details passed to broadcast handlers."""

    channel: str
    pattern: str

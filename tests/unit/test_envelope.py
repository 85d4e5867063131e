"""
Unit tests for envelope and topic types.
"""

import json
import re

import pytest

from billing_mq.errors import SerializationError
from billing_mq.types.envelope import (
    Envelope,
    PublishOptions,
    QueueStats,
    TopicKeys,
    generate_message_id,
)


class TestMessageId:
    """Tests for message id generation."""

    def test_format(self):
        """Test ids look like msg_<epoch-ms>_<base36 suffix>."""
        assert re.fullmatch(r"msg_\d{13}_[0-9a-z]{9}", generate_message_id())

    def test_unique(self):
        """Test ids do not repeat."""
        ids = {generate_message_id() for _ in range(1000)}
        assert len(ids) == 1000


class TestEnvelope:
    """Tests for Envelope."""

    def test_create(self):
        """Test a fresh envelope starts with no retries or errors."""
        envelope = Envelope.create({"invoice_id": "inv_1"})

        assert envelope.retry_count == 0
        assert envelope.payload == {"invoice_id": "inv_1"}
        assert envelope.last_error is None
        assert envelope.options == PublishOptions()
        assert envelope.created_at.tzinfo is not None

    def test_wire_format_uses_camel_case(self):
        """Test the stored JSON uses the field names the billing services write."""
        envelope = Envelope.create({"a": 1}, PublishOptions(delay=500)).record_failure("boom")

        data = json.loads(envelope.to_json())

        assert data["id"] == envelope.id
        assert data["data"] == {"a": 1}
        assert data["retryCount"] == 1
        assert data["lastError"] == "boom"
        assert "timestamp" in data
        assert "lastErrorAt" in data
        assert data["options"] == {"delay": 500, "isRetry": True, "originalId": envelope.id}

    def test_from_json_round_trip(self):
        """Test decoding what was encoded gives the same envelope."""
        envelope = Envelope.create({"customer_id": "cus_1"})

        assert Envelope.from_json(envelope.to_json()) == envelope

    def test_from_json_accepts_node_messages(self):
        """Test decoding an envelope written by a Node.js service."""
        raw = json.dumps(
            {
                "id": "msg_1700000000000_abcdefghi",
                "timestamp": "2024-01-01T00:00:00.000Z",
                "data": {"event": "customer.created"},
                "options": {},
                "retryCount": 2,
            }
        )

        envelope = Envelope.from_json(raw)

        assert envelope.id == "msg_1700000000000_abcdefghi"
        assert envelope.retry_count == 2
        assert envelope.payload == {"event": "customer.created"}

    def test_from_json_invalid_json(self):
        """Test malformed JSON raises SerializationError."""
        with pytest.raises(SerializationError) as exc_info:
            Envelope.from_json("{not json")

        assert exc_info.value.raw == "{not json"

    def test_from_json_accepts_bytes(self):
        envelope = Envelope.create({"amount": 10})

        assert Envelope.from_json(envelope.to_json().encode()) == envelope

    def test_from_json_not_utf8(self):
        """Test undecodable bytes raise SerializationError carrying the raw item."""
        raw = b"\xff\xfe{}"

        with pytest.raises(SerializationError) as exc_info:
            Envelope.from_json(raw)

        assert exc_info.value.raw == raw
        assert "not UTF-8" in str(exc_info.value)

    def test_from_json_missing_fields(self):
        """Test a JSON object that is not an envelope raises SerializationError."""
        with pytest.raises(SerializationError):
            Envelope.from_json(json.dumps({"data": 1}))

    def test_record_failure(self):
        """Test a failure increments retry_count and keeps the id."""
        envelope = Envelope.create({"a": 1})

        failed = envelope.record_failure("first").record_failure("second")

        assert failed.id == envelope.id
        assert failed.retry_count == 2
        assert failed.last_error == "second"
        assert failed.last_error_at is not None
        assert failed.options.is_retry is True
        assert failed.options.original_id == envelope.id
        # The original is unchanged
        assert envelope.retry_count == 0

    def test_from_malformed(self):
        """Test wrapping an undecodable item for the dead-letter queue."""
        error = SerializationError("Malformed envelope", "garbage")

        envelope = Envelope.from_malformed(b"garbage", error)

        assert envelope.payload == "garbage"
        assert envelope.last_error == "Malformed envelope"


class TestTopicKeys:
    """Tests for TopicKeys."""

    def test_key_layout(self):
        keys = TopicKeys("billing-events")

        assert keys.ready == "billing-events"
        assert keys.delayed == "delayed:billing-events"
        assert keys.dead_letter == "dlq:billing-events"

    def test_seen_key_includes_attempt(self):
        """Test each retry of an envelope has its own dedup marker."""
        keys = TopicKeys("orders")
        envelope = Envelope.create({})

        assert keys.seen(envelope) != keys.seen(envelope.record_failure("x"))
        assert keys.seen(envelope) == f"seen:orders:{envelope.id}:0"


def test_queue_stats_total():
    """Test total is the sum of the three containers."""
    stats = QueueStats.from_counts(pending=3, delayed=2, failed=1)

    assert stats.total == 6

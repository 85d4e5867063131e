"""
Unit tests for the in-memory backing store.
"""

import asyncio
import time

import pytest

from billing_mq.errors import QueueConnectionError
from billing_mq.store.memory import InMemoryStore, MemoryBackend


@pytest.fixture
def store(backend: MemoryBackend) -> InMemoryStore:
    return InMemoryStore(backend)


class TestLists:
    """Tests for FIFO list operations."""

    @pytest.mark.asyncio
    async def test_fifo_order(self, store: InMemoryStore):
        """Test items pop in push order."""
        for item in ("a", "b", "c"):
            await store.push("topic", item)

        assert [await store.pop("topic") for _ in range(3)] == ["a", "b", "c"]
        assert await store.pop("topic") is None

    @pytest.mark.asyncio
    async def test_length(self, store: InMemoryStore):
        assert await store.length("topic") == 0

        await store.push("topic", "a")
        await store.push("topic", "b")

        assert await store.length("topic") == 2

    @pytest.mark.asyncio
    async def test_pop_timeout(self, store: InMemoryStore):
        """Test a blocking pop on an empty list gives up after the timeout."""
        start = time.monotonic()

        assert await store.pop("topic", timeout=0.1) is None
        assert time.monotonic() - start >= 0.09

    @pytest.mark.asyncio
    async def test_blocking_pop_wakes_on_push(self, store: InMemoryStore):
        """Test a waiting pop returns as soon as an item arrives."""
        waiter = asyncio.create_task(store.pop("topic", timeout=2.0))
        await asyncio.sleep(0.05)

        await store.push("topic", "hello")

        assert await asyncio.wait_for(waiter, 1.0) == "hello"

    @pytest.mark.asyncio
    @pytest.mark.asyncio
    async def test_bytes_items_returned_as_is(self, store: InMemoryStore):
        await store.push("topic", b"\xff\xfe")

        assert await store.pop("topic") == b"\xff\xfe"

    @pytest.mark.asyncio
    async def test_sessions_share_backend(self, backend: MemoryBackend):
        """Test sessions built from one backend see the same data."""
        first = InMemoryStore(backend)
        second = InMemoryStore(backend)

        await first.push("topic", "a")

        assert await second.pop("topic") == "a"


class TestScoredSet:
    """Tests for scored set operations."""

    @pytest.mark.asyncio
    async def test_promote_due_respects_score(self, store: InMemoryStore):
        """Test only items with score <= max_score move to the list."""
        await store.schedule("delayed", "early", 100)
        await store.schedule("delayed", "late", 300)

        assert await store.promote_due("delayed", "ready", 200, 10) == ["early"]
        assert await store.count("delayed") == 1
        assert await store.pop("ready") == "early"

    @pytest.mark.asyncio
    async def test_promote_due_orders_by_score_and_limits(self, store: InMemoryStore):
        await store.schedule("delayed", "c", 30)
        await store.schedule("delayed", "a", 10)
        await store.schedule("delayed", "b", 20)

        assert await store.promote_due("delayed", "ready", 100, 2) == ["a", "b"]
        assert await store.promote_due("delayed", "ready", 100, 2) == ["c"]
        assert [await store.pop("ready") for _ in range(3)] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_promote_due_appends_after_existing_items(self, store: InMemoryStore):
        await store.push("ready", "fresh")
        await store.schedule("delayed", "promoted", 10)

        await store.promote_due("delayed", "ready", 100, 10)

        assert [await store.pop("ready") for _ in range(2)] == ["fresh", "promoted"]

    @pytest.mark.asyncio
    async def test_promote_due_wakes_blocked_pop(self, store: InMemoryStore):
        waiter = asyncio.create_task(store.pop("ready", timeout=2.0))
        await asyncio.sleep(0.05)
        await store.schedule("delayed", "item", 10)

        await store.promote_due("delayed", "ready", 100, 10)

        assert await asyncio.wait_for(waiter, 1.0) == "item"

    @pytest.mark.asyncio
    async def test_promote_due_unavailable_keeps_items(self, store: InMemoryStore, backend: MemoryBackend):
        """Test a failed promotion leaves the delayed set untouched."""
        await store.schedule("delayed", "item", 10)
        backend.available = False

        with pytest.raises(QueueConnectionError):
            await store.promote_due("delayed", "ready", 100, 10)

        backend.available = True
        assert await store.count("delayed") == 1
        assert await store.length("ready") == 0

    @pytest.mark.asyncio
    async def test_reschedule_moves_score(self, store: InMemoryStore):
        """Test re-adding a member updates its score instead of duplicating it."""
        await store.schedule("delayed", "item", 100)
        await store.schedule("delayed", "item", 500)

        assert await store.count("delayed") == 1
        assert await store.promote_due("delayed", "ready", 200, 10) == []

    @pytest.mark.asyncio
    async def test_concurrent_promotion_never_duplicates(self, store: InMemoryStore):
        """Test concurrent promoters move each member once."""
        for i in range(50):
            await store.schedule("delayed", f"item-{i}", i)

        results = await asyncio.gather(*(store.promote_due("delayed", "ready", 100, 10) for _ in range(10)))

        moved = [item for batch in results for item in batch]
        assert len(moved) == 50
        assert len(set(moved)) == 50
        assert await store.length("ready") == 50


class TestCounters:
    """Tests for counters."""

    @pytest.mark.asyncio
    async def test_incr(self, store: InMemoryStore):
        assert await store.incr("seen:x") == 1
        assert await store.incr("seen:x") == 2

    @pytest.mark.asyncio
    async def test_incr_expiry(self, store: InMemoryStore):
        """Test an expired counter starts again from 1."""
        assert await store.incr("seen:x", ttl_seconds=0) == 1
        assert await store.incr("seen:x", ttl_seconds=0) == 1

    @pytest.mark.asyncio
    async def test_expired_counters_are_dropped(self, store: InMemoryStore, backend: MemoryBackend):
        """Test delivery markers do not accumulate once expired."""
        for i in range(200):
            await store.incr(f"seen:orders:msg_{i}:0", ttl_seconds=0)

        assert len(backend.counters) <= 1
        assert not any(key.startswith("seen:") for key in backend._conditions)

    @pytest.mark.asyncio
    async def test_refreshed_expiry_survives_sweep(self, store: InMemoryStore, backend: MemoryBackend):
        """Test a counter whose expiry was pushed back is not dropped at its old expiry."""
        await store.incr("seen:x", ttl_seconds=0.05)
        assert await store.incr("seen:x", ttl_seconds=3600) == 2

        await asyncio.sleep(0.1)
        await store.incr("seen:y", ttl_seconds=0)

        assert "seen:x" in backend.counters
        assert await store.incr("seen:x", ttl_seconds=3600) == 3


class TestBroadcast:
    """Tests for pub/sub."""

    @pytest.mark.asyncio
    async def test_pattern_delivery(self, store: InMemoryStore):
        listener = await store.psubscribe("cache.*")

        assert await store.publish("cache.plans", "m1") == 1
        assert await store.publish("billing.plans", "m2") == 0

        iterator = listener.__aiter__()
        assert await asyncio.wait_for(iterator.__anext__(), 1.0) == ("cache.plans", "cache.*", "m1")

        await listener.close()

    @pytest.mark.asyncio
    async def test_closed_listener_stops_iteration(self, store: InMemoryStore):
        listener = await store.psubscribe("*")
        await listener.close()

        received = [message async for message in listener]

        assert received == []
        assert await store.publish("anything", "m") == 0


class TestAvailability:
    """Tests for simulated outages."""

    @pytest.mark.asyncio
    async def test_unavailable_store_raises(self, store: InMemoryStore, backend: MemoryBackend):
        backend.available = False

        with pytest.raises(QueueConnectionError):
            await store.push("topic", "a")
        with pytest.raises(QueueConnectionError):
            await store.pop("topic")
        with pytest.raises(QueueConnectionError):
            await store.ping()

    @pytest.mark.asyncio
    async def test_closed_session_raises(self, store: InMemoryStore):
        await store.close()

        with pytest.raises(QueueConnectionError):
            await store.length("topic")

"""
Backing store contract.

Every store exposes the same small capability set: FIFO lists, a time-scored
set, counters and a pattern-based broadcast primitive. The queue core never
talks to a concrete store directly, so the in-memory store can back tests and
Redis can back production with no change to publisher, promoter or workers.

All store failures surface as ``QueueConnectionError``.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable

from billing_mq.constants import SessionRole


class BroadcastListener(ABC):
    """
    A live pattern subscription.

    Iterating yields ``(channel, pattern, message)`` tuples until ``close()``
    is called.
    """

    pattern: str

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[tuple[str, str, str]]:
        ...

    @abstractmethod
    async def close(self) -> None:
        """Stop receiving messages and release the subscription."""


class QueueStore(ABC):
    """A single session against the backing store."""

    # FIFO lists

    @abstractmethod
    async def push(self, key: str, item: str | bytes) -> int:
        """Append an item to the tail of a list. Returns the new length."""

    @abstractmethod
    async def pop(self, key: str, timeout: float | None = None) -> str | bytes | None:
        """
        Pop the oldest item of a list.

        Args:
            key: List key.
            timeout: Seconds to block waiting for an item. ``None`` or ``0``
                returns immediately.

        Returns:
            The item, or None if the list stayed empty. Stores that keep raw
            bytes return them undecoded.
        """

    @abstractmethod
    async def length(self, key: str) -> int:
        """Number of items in a list."""

    # Scored set

    @abstractmethod
    async def schedule(self, key: str, item: str, score: float) -> None:
        """Insert an item into a scored set."""

    @abstractmethod
    async def promote_due(self, source: str, target: str, max_score: float, limit: int) -> list[str | bytes]:
        """
        Move up to ``limit`` items with score <= max_score from a scored set to a list tail.

        The move is one atomic step: an item is always in exactly one of the
        two containers, and is moved by at most one caller even when several
        run concurrently. Items are appended in ascending score order.

        Returns:
            The moved items.
        """

    @abstractmethod
    async def count(self, key: str) -> int:
        """Number of items in a scored set."""

    # Counters

    @abstractmethod
    async def incr(self, key: str, ttl_seconds: int | None = None) -> int:
        """Increment a counter, optionally (re)setting its expiry. Returns the new value."""

    # Broadcast

    @abstractmethod
    async def publish(self, channel: str, message: str) -> int:
        """Publish to a channel. Returns the number of live receivers."""

    @abstractmethod
    async def psubscribe(self, pattern: str) -> BroadcastListener:
        """Subscribe to every channel matching a glob pattern."""

    # Session

    @abstractmethod
    async def ping(self) -> None:
        """Check the store is reachable."""

    @abstractmethod
    async def close(self) -> None:
        """Release the session."""


# Builds one session per role
StoreFactory = Callable[[SessionRole], QueueStore]

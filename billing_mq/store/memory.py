"""
In-memory backing store.

Used by tests and single-process deployments. All sessions created from the
same ``MemoryBackend`` share its state, the way several Redis clients share a
server. List and scored-set keys are each guarded by their own lock; counters
expire lazily, swept in expiry order on every increment.
"""

import asyncio
import heapq
import itertools
import time
from collections import defaultdict, deque
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from fnmatch import fnmatchcase

from billing_mq.constants import SessionRole
from billing_mq.errors import QueueConnectionError
from billing_mq.store.base import BroadcastListener, QueueStore, StoreFactory

_CLOSED = object()


@dataclass
class _Counter:
    value: int = 0
    expires_at: float | None = None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@dataclass
class MemoryBackend:
    """
    Shared state behind in-memory sessions.

    Set ``available`` to False to simulate an unreachable store: every
    operation then raises ``QueueConnectionError``.
    """

    available: bool = True
    lists: dict[str, deque[str | bytes]] = field(default_factory=lambda: defaultdict(deque))
    scored: dict[str, dict[str, tuple[float, int]]] = field(default_factory=lambda: defaultdict(dict))
    counters: dict[str, _Counter] = field(default_factory=dict)
    _expiries: list[tuple[float, str]] = field(default_factory=list)
    listeners: list["MemoryBroadcastListener"] = field(default_factory=list)
    _conditions: dict[str, asyncio.Condition] = field(default_factory=dict)
    _sequence: itertools.count = field(default_factory=itertools.count)

    def condition(self, key: str) -> asyncio.Condition:
        """Lock (with wait/notify) for a single key."""
        cond = self._conditions.get(key)
        if cond is None:
            cond = self._conditions[key] = asyncio.Condition()
        return cond

    def check_available(self) -> None:
        if not self.available:
            raise QueueConnectionError("Store unavailable")

    def next_sequence(self) -> int:
        return next(self._sequence)

    def expire_counters(self, now: float) -> None:
        """Drop every counter whose expiry has passed."""
        while self._expiries and self._expiries[0][0] <= now:
            expires_at, key = heapq.heappop(self._expiries)
            counter = self.counters.get(key)
            # A later incr may have pushed the expiry back
            if counter is not None and counter.expires_at == expires_at:
                del self.counters[key]

    def set_expiry(self, key: str, counter: _Counter, expires_at: float) -> None:
        counter.expires_at = expires_at
        heapq.heappush(self._expiries, (expires_at, key))


class MemoryBroadcastListener(BroadcastListener):
    """Pattern subscription fed directly by ``InMemoryStore.publish``."""

    def __init__(self, backend: MemoryBackend, pattern: str):
        self.pattern = pattern
        self._backend = backend
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def matches(self, channel: str) -> bool:
        return not self._closed and fnmatchcase(channel, self.pattern)

    def deliver(self, channel: str, message: str) -> None:
        self._queue.put_nowait((channel, self.pattern, message))

    async def __aiter__(self) -> AsyncIterator[tuple[str, str, str]]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self in self._backend.listeners:
            self._backend.listeners.remove(self)
        self._queue.put_nowait(_CLOSED)


class InMemoryStore(QueueStore):
    """A session against a ``MemoryBackend``."""

    def __init__(self, backend: MemoryBackend, role: SessionRole = SessionRole.GENERAL):
        self._backend = backend
        self.role = role
        self._closed = False

    @classmethod
    def factory(cls, backend: MemoryBackend | None = None) -> StoreFactory:
        """Build a store factory whose sessions all share one backend."""
        shared = backend or MemoryBackend()

        def create(role: SessionRole) -> QueueStore:
            return cls(shared, role)

        return create

    def _check(self) -> None:
        if self._closed:
            raise QueueConnectionError(f"Store session '{self.role}' is closed")
        self._backend.check_available()

    async def push(self, key: str, item: str | bytes) -> int:
        self._check()
        cond = self._backend.condition(key)
        async with cond:
            items = self._backend.lists[key]
            items.append(item)
            cond.notify_all()
            return len(items)

    async def pop(self, key: str, timeout: float | None = None) -> str | bytes | None:
        self._check()
        cond = self._backend.condition(key)
        items = self._backend.lists[key]
        async with cond:
            if not items and timeout:
                try:
                    await asyncio.wait_for(cond.wait_for(lambda: bool(items)), timeout)
                except TimeoutError:
                    return None
            # Availability may have changed while blocked
            self._check()
            return items.popleft() if items else None

    async def length(self, key: str) -> int:
        self._check()
        return len(self._backend.lists.get(key, ()))

    async def schedule(self, key: str, item: str, score: float) -> None:
        self._check()
        async with self._backend.condition(key):
            members = self._backend.scored[key]
            # Re-adding an existing member only moves its score
            sequence = members[item][1] if item in members else self._backend.next_sequence()
            members[item] = (score, sequence)

    async def promote_due(self, source: str, target: str, max_score: float, limit: int) -> list[str | bytes]:
        self._check()
        # Locks are always taken in key order
        first, second = sorted((source, target))
        async with self._backend.condition(first), self._backend.condition(second):
            members = self._backend.scored[source]
            due = sorted(
                (entry for entry in members.items() if entry[1][0] <= max_score),
                key=lambda entry: entry[1],
            )[:limit]
            moved = [item for item, _ in due]
            items = self._backend.lists[target]
            for item in moved:
                del members[item]
                items.append(item)
            if moved:
                self._backend.condition(target).notify_all()
            return moved

    async def count(self, key: str) -> int:
        self._check()
        return len(self._backend.scored.get(key, ()))

    async def incr(self, key: str, ttl_seconds: int | None = None) -> int:
        # Never awaits, so it runs as one step on the event loop
        self._check()
        now = time.monotonic()
        self._backend.expire_counters(now)
        counter = self._backend.counters.get(key)
        if counter is None or counter.expired(now):
            counter = self._backend.counters[key] = _Counter()
        counter.value += 1
        if ttl_seconds is not None:
            self._backend.set_expiry(key, counter, now + ttl_seconds)
        return counter.value

    async def publish(self, channel: str, message: str) -> int:
        self._check()
        receivers = [listener for listener in self._backend.listeners if listener.matches(channel)]
        for listener in receivers:
            listener.deliver(channel, message)
        return len(receivers)

    async def psubscribe(self, pattern: str) -> BroadcastListener:
        self._check()
        listener = MemoryBroadcastListener(self._backend, pattern)
        self._backend.listeners.append(listener)
        return listener

    async def ping(self) -> None:
        self._check()

    async def close(self) -> None:
        self._closed = True

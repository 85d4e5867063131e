"""
Redis backing store.

Lists use LPUSH/BRPOP (oldest item popped first), the delayed set is a ZSET
scored by due time in epoch milliseconds, and broadcast uses Redis pub/sub
pattern subscriptions. Each session is its own ``redis.asyncio.Redis`` client.

Clients do not decode responses: an item that is not valid UTF-8 is returned
as bytes by ``pop`` so the caller can dead-letter it instead of losing it
inside the response parser.
"""

import logging
from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager

from redis import exceptions as redis_exceptions
from redis.asyncio import Redis
from redis.asyncio.client import PubSub

from billing_mq.config import Settings, get_settings
from billing_mq.constants import SessionRole
from billing_mq.errors import QueueConnectionError
from billing_mq.store.base import BroadcastListener, QueueStore, StoreFactory

logger = logging.getLogger(__name__)

# Moves due members of KEYS[1] to the tail of list KEYS[2] in one atomic step
PROMOTE_DUE_SCRIPT = """
local items = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, ARGV[2])
for _, item in ipairs(items) do
    redis.call('ZREM', KEYS[1], item)
    redis.call('LPUSH', KEYS[2], item)
end
return items
"""


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Translate redis transport failures into ``QueueConnectionError``."""
    try:
        yield
    except (redis_exceptions.ConnectionError, redis_exceptions.TimeoutError) as e:
        raise QueueConnectionError(f"Redis {operation} failed: {e}") from e


def _text(value: str | bytes) -> str:
    return value.decode("utf-8", errors="replace") if isinstance(value, bytes) else value


def create_client(settings: Settings | None = None) -> Redis:
    """
    Create a Redis client from settings.

    ``redis_url`` wins when set; otherwise host, port, password and db are used.
    """
    settings = settings or get_settings()
    if settings.redis_url:
        return Redis.from_url(
            settings.redis_url,
            decode_responses=False,
            socket_timeout=settings.redis_socket_timeout_seconds,
        )
    return Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password,
        db=settings.redis_db,
        decode_responses=False,
        socket_timeout=settings.redis_socket_timeout_seconds,
    )


class RedisBroadcastListener(BroadcastListener):
    """Pattern subscription over a Redis ``PubSub`` connection."""

    def __init__(self, pubsub: PubSub, pattern: str):
        self.pattern = pattern
        self._pubsub = pubsub
        self._closed = False

    async def __aiter__(self) -> AsyncIterator[tuple[str, str, str]]:
        with _store_errors("pub/sub listen"):
            async for message in self._pubsub.listen():
                if self._closed:
                    return
                if message.get("type") != "pmessage":
                    continue
                yield _text(message["channel"]), _text(message["pattern"]), _text(message["data"])

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with _store_errors("punsubscribe"):
            await self._pubsub.punsubscribe(self.pattern)
            await self._pubsub.aclose()


class RedisStore(QueueStore):
    """A session backed by one Redis client."""

    def __init__(self, client: Redis):
        self._redis = client
        self._promote_due_script = client.register_script(PROMOTE_DUE_SCRIPT)

    @classmethod
    def factory(cls, settings: Settings | None = None) -> StoreFactory:
        """Build a store factory creating an independent client per session role."""

        def create(role: SessionRole) -> QueueStore:
            logger.debug("Creating Redis session", extra={"role": str(role)})
            return cls(create_client(settings))

        return create

    async def push(self, key: str, item: str | bytes) -> int:
        with _store_errors("LPUSH"):
            return await self._redis.lpush(key, item)

    async def pop(self, key: str, timeout: float | None = None) -> str | bytes | None:
        with _store_errors("BRPOP"):
            if not timeout:
                return await self._redis.rpop(key)
            result = await self._redis.brpop([key], timeout=timeout)
            if result is None:
                return None
            _, item = result
            return item

    async def length(self, key: str) -> int:
        with _store_errors("LLEN"):
            return await self._redis.llen(key)

    async def schedule(self, key: str, item: str, score: float) -> None:
        with _store_errors("ZADD"):
            await self._redis.zadd(key, {item: score})

    async def promote_due(self, source: str, target: str, max_score: float, limit: int) -> list[str | bytes]:
        with _store_errors("promote due"):
            return list(await self._promote_due_script(keys=[source, target], args=[max_score, limit]))

    async def count(self, key: str) -> int:
        with _store_errors("ZCARD"):
            return await self._redis.zcard(key)

    async def incr(self, key: str, ttl_seconds: int | None = None) -> int:
        with _store_errors("INCR"):
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                if ttl_seconds is not None:
                    pipe.expire(key, ttl_seconds)
                results = await pipe.execute()
            return int(results[0])

    async def publish(self, channel: str, message: str) -> int:
        with _store_errors("PUBLISH"):
            return await self._redis.publish(channel, message)

    async def psubscribe(self, pattern: str) -> BroadcastListener:
        pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
        with _store_errors("PSUBSCRIBE"):
            await pubsub.psubscribe(pattern)
        return RedisBroadcastListener(pubsub, pattern)

    async def ping(self) -> None:
        with _store_errors("PING"):
            await self._redis.ping()

    async def close(self) -> None:
        with _store_errors("close"):
            await self._redis.aclose()

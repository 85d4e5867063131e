"""
Store module.
Contains the backing store contract, its in-memory and Redis implementations,
and connection lifecycle management.
"""

from billing_mq.store.base import BroadcastListener, QueueStore, StoreFactory
from billing_mq.store.connection import ConnectionManager, ConnectionObserver
from billing_mq.store.memory import InMemoryStore, MemoryBackend
from billing_mq.store.redis_store import RedisStore, create_client

__all__ = [
    "QueueStore",
    "BroadcastListener",
    "StoreFactory",
    "ConnectionManager",
    "ConnectionObserver",
    "InMemoryStore",
    "MemoryBackend",
    "RedisStore",
    "create_client",
]

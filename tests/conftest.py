"""
Pytest configuration and shared fixtures.
"""

import asyncio
import inspect
import time
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from prometheus_client import CollectorRegistry

from billing_mq.api.main import create_app
from billing_mq.config import Settings
from billing_mq.constants import MessageType
from billing_mq.observability.metrics import MetricsCollector
from billing_mq.queue import MessageQueue
from billing_mq.store import ConnectionManager, InMemoryStore, MemoryBackend
from billing_mq.store.base import StoreFactory


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with short timings."""
    return Settings(
        _env_file=None,
        log_level="DEBUG",
        log_format="console",
        retry_base_delay_ms=10,
        pop_timeout_seconds=0.05,
        pop_error_pause_seconds=0.05,
        promoter_interval_seconds=0.05,
        promoter_batch_size=10,
        health_check_interval_seconds=0.05,
    )


@pytest.fixture
def registry() -> CollectorRegistry:
    """Isolated Prometheus registry per test."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry: CollectorRegistry) -> MetricsCollector:
    return MetricsCollector(registry)


@pytest.fixture
def backend() -> MemoryBackend:
    """Shared in-memory store state."""
    return MemoryBackend()


@pytest.fixture
def store_factory(backend: MemoryBackend) -> StoreFactory:
    return InMemoryStore.factory(backend)


@pytest_asyncio.fixture
async def connection(store_factory: StoreFactory) -> AsyncGenerator[ConnectionManager]:
    """A connected connection manager over the in-memory store."""
    manager = ConnectionManager(store_factory, health_check_interval=0.05)
    await manager.connect()

    yield manager

    await manager.disconnect()


@pytest_asyncio.fixture
async def queue(
    store_factory: StoreFactory,
    test_settings: Settings,
    metrics: MetricsCollector,
) -> AsyncGenerator[MessageQueue]:
    """A connected message queue over the in-memory store."""
    message_queue = MessageQueue(store_factory, settings=test_settings, metrics=metrics)
    await message_queue.connect()

    yield message_queue

    await message_queue.disconnect()


@pytest_asyncio.fixture
async def app(queue: MessageQueue) -> FastAPI:
    """Create a FastAPI app bound to the test queue."""
    return create_app(queue)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def eventually() -> Callable[..., Awaitable[None]]:
    """Poll a (possibly async) predicate until it holds or the timeout expires."""

    async def _eventually(predicate: Callable[[], Any], timeout: float = 3.0, interval: float = 0.01) -> None:
        deadline = time.monotonic() + timeout
        while True:
            result = predicate()
            if inspect.isawaitable(result):
                result = await result
            if result:
                return
            if time.monotonic() > deadline:
                raise AssertionError("Condition not met before timeout")
            await asyncio.sleep(interval)

    return _eventually


@pytest.fixture
def sample_payload() -> dict[str, Any]:
    """Create a sample billing event payload."""
    return {
        "type": MessageType.INVOICE_GENERATION_REQUESTED,
        "subscription_id": "sub_123",
        "customer_id": "cus_456",
    }

"""
Integration tests for the monitoring API.
"""

import pytest
from httpx import AsyncClient

from billing_mq.constants import SessionRole
from billing_mq.queue import MessageQueue
from billing_mq.store import MemoryBackend
from billing_mq.types.envelope import Envelope


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    @pytest.mark.asyncio
    async def test_health_check(self, client: AsyncClient):
        """Test health check endpoint."""
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["store"] == "healthy"
        assert "version" in data
        assert "timestamp" in data

    @pytest.mark.asyncio
    async def test_health_check_store_down(self, client: AsyncClient, backend: MemoryBackend):
        backend.available = False

        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["store"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_liveness_check(self, client: AsyncClient):
        """Test liveness endpoint."""
        response = await client.get("/live")

        assert response.status_code == 200
        assert response.json() == {"alive": True}

    @pytest.mark.asyncio
    async def test_readiness_check(self, client: AsyncClient, backend: MemoryBackend):
        assert (await client.get("/ready")).json() == {"ready": True}

        backend.available = False

        assert (await client.get("/ready")).json() == {"ready": False}

    @pytest.mark.asyncio
    async def test_metrics_endpoint(self, client: AsyncClient):
        """Test Prometheus metrics endpoint."""
        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "text/plain" in response.headers["content-type"]


class TestQueueEndpoints:
    """Tests for queue monitoring endpoints."""

    @pytest.mark.asyncio
    async def test_stats(self, client: AsyncClient, queue: MessageQueue):
        await queue.publish("orders", {"n": 1})
        await queue.publish("orders", {"n": 2}, delay=60_000)

        response = await client.get("/v1/queues/orders/stats")

        assert response.status_code == 200
        assert response.json() == {
            "topic": "orders",
            "pending": 1,
            "delayed": 1,
            "failed": 0,
            "total": 2,
        }

    @pytest.mark.asyncio
    async def test_stats_store_down(self, client: AsyncClient, backend: MemoryBackend):
        backend.available = False

        response = await client.get("/v1/queues/orders/stats")

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_replay_dead_letters(self, client: AsyncClient, queue: MessageQueue):
        """Test replaying moves dead-lettered payloads back to the ready queue."""
        store = queue.connection.session(SessionRole.GENERAL)
        for n in range(3):
            await store.push("dlq:orders", Envelope.create({"n": n}).record_failure("boom").to_json())

        response = await client.post("/v1/queues/orders/dead-letters/replay", json={"limit": 2})

        assert response.status_code == 200
        data = response.json()
        assert data["topic"] == "orders"
        assert len(data["replayed"]) == 2

        stats = await queue.get_queue_stats("orders")
        assert (stats.pending, stats.failed) == (2, 1)

    @pytest.mark.asyncio
    async def test_replay_invalid_limit(self, client: AsyncClient):
        response = await client.post("/v1/queues/orders/dead-letters/replay", json={"limit": 0})

        assert response.status_code == 422

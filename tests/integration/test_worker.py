"""
Integration tests for the worker process.
"""

import asyncio

import pytest

from billing_mq.constants import Queue
from billing_mq.queue import MessageQueue
from billing_mq.worker.handlers import register_handler, unregister_handler
from billing_mq.worker.main import Worker


class TestWorkerIntegration:
    """Integration tests for registered-handler consumption."""

    @pytest.fixture(autouse=True)
    def cleanup(self):
        yield
        unregister_handler(Queue.INVOICE_GENERATION)
        unregister_handler(Queue.NOTIFICATIONS)

    @pytest.mark.asyncio
    async def test_worker_processes_registered_topics(self, queue: MessageQueue, eventually):
        """Test the worker subscribes every registration and handles its messages."""
        invoices: list[str] = []

        @register_handler(Queue.INVOICE_GENERATION, concurrency=2, max_retries=5)
        async def generate_invoice(payload, envelope):
            invoices.append(payload["subscription_id"])

        worker = Worker(queue, topics=[Queue.INVOICE_GENERATION])
        task = asyncio.create_task(worker.start())

        await eventually(lambda: len(worker.subscriptions) == 1)
        (subscription,) = worker.subscriptions
        assert subscription.concurrency == 2
        assert subscription.max_retries == 5

        await queue.publish(Queue.INVOICE_GENERATION, {"subscription_id": "sub_1"})
        await queue.publish(Queue.INVOICE_GENERATION, {"subscription_id": "sub_2"})
        await eventually(lambda: sorted(invoices) == ["sub_1", "sub_2"])

        await worker.stop()
        await asyncio.wait_for(task, 2.0)

        assert queue.is_connected() is False
        assert subscription.is_running is False

    @pytest.mark.asyncio
    async def test_worker_skips_topics_without_handler(self, queue: MessageQueue, eventually):
        @register_handler(Queue.NOTIFICATIONS)
        def notify(payload, envelope):
            return None

        worker = Worker(queue, topics=[Queue.NOTIFICATIONS, "unhandled"])
        task = asyncio.create_task(worker.start())

        await eventually(lambda: len(worker.subscriptions) == 1)
        assert worker.subscriptions[0].topic == Queue.NOTIFICATIONS

        await worker.stop()
        await asyncio.wait_for(task, 2.0)

    @pytest.mark.asyncio
    async def test_worker_failures_reach_dead_letter_queue(self, queue: MessageQueue, eventually):
        """Test a failing registered handler uses its own retry budget."""

        @register_handler(Queue.NOTIFICATIONS, max_retries=1)
        async def notify(payload, envelope):
            raise RuntimeError("smtp down")

        worker = Worker(queue, topics=[Queue.NOTIFICATIONS])
        task = asyncio.create_task(worker.start())
        await eventually(lambda: len(worker.subscriptions) == 1)

        await queue.publish(Queue.NOTIFICATIONS, {"to": "billing@example.com"})

        async def dead_lettered() -> bool:
            return (await queue.get_queue_stats(Queue.NOTIFICATIONS)).failed == 1

        await eventually(dead_lettered)
        (dead,) = await queue.consume_dead_letters(Queue.NOTIFICATIONS)
        assert dead.retry_count == 1
        assert dead.last_error == "smtp down"

        await worker.stop()
        await asyncio.wait_for(task, 2.0)

"""
FastAPI dependencies.
"""

from fastapi import Request

from billing_mq.queue import MessageQueue


def get_queue_dependency(request: Request) -> MessageQueue:
    """Return the queue attached to the application."""
    return request.app.state.queue

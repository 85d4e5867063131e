"""
API routes module.
"""

from billing_mq.api.routes.health import router as health_router
from billing_mq.api.routes.queues import router as queues_router

__all__ = ["health_router", "queues_router"]

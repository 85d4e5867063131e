"""
Health check routes.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from billing_mq import __version__
from billing_mq.api.dependencies import get_queue_dependency
from billing_mq.errors import ShutdownError
from billing_mq.observability.metrics import get_metrics
from billing_mq.queue import MessageQueue
from billing_mq.types.api import HealthResponse

router = APIRouter(tags=["Health"])


async def _store_status(queue: MessageQueue) -> str:
    try:
        reachable = await queue.connection.check()
    except ShutdownError:
        return "unhealthy"
    return "healthy" if reachable else "unhealthy"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the queue and its backing store.",
)
async def health_check(
    queue: MessageQueue = Depends(get_queue_dependency),
) -> HealthResponse:
    """
    Perform a health check.

    Probes the store and returns service status.
    """
    store_status = await _store_status(queue)

    return HealthResponse(
        status="healthy" if store_status == "healthy" else "degraded",
        version=__version__,
        store=store_status,
        timestamp=datetime.now(UTC),
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if the service is ready to receive traffic.",
)
async def readiness_check(
    queue: MessageQueue = Depends(get_queue_dependency),
) -> dict:
    """Kubernetes readiness probe endpoint."""
    return {"ready": await _store_status(queue) == "healthy"}


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the service is alive.",
)
async def liveness_check() -> dict:
    """Kubernetes liveness probe endpoint."""
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics.",
)
async def metrics() -> Response:
    """Expose Prometheus metrics."""
    metrics_collector = get_metrics()
    return Response(
        content=metrics_collector.get_metrics(),
        media_type=metrics_collector.get_content_type(),
    )

"""
FastAPI application entry point.

Serves health probes, Prometheus metrics and queue monitoring for the
billing message queue.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from billing_mq import __version__
from billing_mq.api.routes import health_router, queues_router
from billing_mq.config import get_settings
from billing_mq.observability.logging import setup_logging
from billing_mq.observability.metrics import setup_metrics
from billing_mq.observability.tracing import instrument_fastapi, setup_tracing
from billing_mq.queue import MessageQueue, get_queue

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Connects the queue on startup and disconnects it on shutdown.
    """
    setup_logging("api")
    setup_metrics()
    setup_tracing()

    queue: MessageQueue = app.state.queue
    if not queue.is_connected():
        await queue.connect()

    logger.info("Application started")

    yield

    await queue.disconnect()
    logger.info("Application shutdown")


def create_app(queue: MessageQueue | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        queue: Queue to expose. Defaults to the process-wide queue.

    Returns:
        FastAPI: The configured application instance.
    """
    app = FastAPI(
        title="Billing Message Queue",
        description="Monitoring surface for the billing event queue",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.queue = queue or get_queue()

    app.include_router(health_router)
    app.include_router(queues_router)

    instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()
    app = create_app()

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()

"""
Queue monitoring and dead-letter routes.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from billing_mq.api.dependencies import get_queue_dependency
from billing_mq.errors import QueueConnectionError, ShutdownError
from billing_mq.queue import MessageQueue
from billing_mq.types.api import (
    ErrorResponse,
    QueueStatsResponse,
    ReplayDeadLettersRequest,
    ReplayDeadLettersResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/queues", tags=["Queues"])


def _unavailable(error: Exception) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"Message store unavailable: {error}",
    )


@router.get(
    "/{topic}/stats",
    response_model=QueueStatsResponse,
    responses={503: {"model": ErrorResponse}},
    summary="Queue statistics",
    description="Pending, delayed and dead-lettered message counts for a topic.",
)
async def queue_stats(
    topic: str,
    queue: MessageQueue = Depends(get_queue_dependency),
) -> QueueStatsResponse:
    """Get container lengths for a topic."""
    try:
        stats = await queue.get_queue_stats(topic)
    except (QueueConnectionError, ShutdownError) as e:
        raise _unavailable(e) from e

    return QueueStatsResponse(topic=topic, **stats.model_dump())


@router.post(
    "/{topic}/dead-letters/replay",
    response_model=ReplayDeadLettersResponse,
    responses={503: {"model": ErrorResponse}},
    summary="Replay dead letters",
    description="Re-publish dead-lettered messages of a topic as new messages.",
)
async def replay_dead_letters(
    topic: str,
    request: ReplayDeadLettersRequest,
    queue: MessageQueue = Depends(get_queue_dependency),
) -> ReplayDeadLettersResponse:
    """Operator action: move dead-lettered payloads back onto the ready queue."""
    try:
        replayed = await queue.replay_dead_letters(topic, limit=request.limit)
    except (QueueConnectionError, ShutdownError) as e:
        raise _unavailable(e) from e

    logger.info(
        "Dead letters replayed via API",
        extra={"topic": topic, "count": len(replayed)},
    )
    return ReplayDeadLettersResponse(topic=topic, replayed=replayed)

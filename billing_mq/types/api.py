"""
API request and response type definitions.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class QueueStatsResponse(BaseModel):
    """Container lengths for a topic."""

    topic: str
    pending: int
    delayed: int
    failed: int
    total: int


class ReplayDeadLettersRequest(BaseModel):
    """Request body for replaying dead-lettered messages."""

    limit: int = Field(default=10, ge=1, le=1000, description="Maximum messages to replay")


class ReplayDeadLettersResponse(BaseModel):
    """Response body after replaying dead-lettered messages."""

    topic: str
    replayed: list[str]
    message: str = "Dead-lettered messages re-published"


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    store: str
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: str | None = None

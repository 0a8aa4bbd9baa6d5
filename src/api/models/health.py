"""Health check models for the API."""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field

from src.infrastructure.settings import APP_VERSION


class DatabaseHealth(BaseModel):
    """Storage connectivity as seen by a trivial query."""

    status: Literal["connected", "disconnected"]
    type: str = "duckdb"
    response_time_ms: Optional[float] = None


class HealthResponse(BaseModel):
    """Health check response.

    ``degraded`` means storage answers but critical notifications are pending
    past the escalation window.
    """

    status: Literal["healthy", "degraded", "unhealthy"]
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: str = APP_VERSION
    database: DatabaseHealth
    overdue_notifications: Optional[int] = Field(
        None, description="Critical notifications pending past the escalation window"
    )

"""Health check endpoint for the API."""

import logging
import time

from fastapi import APIRouter

from src.adapters.storage import DuckDBAdapter
from src.api.dependencies import StorageDep
from src.api.models.health import DatabaseHealth, HealthResponse
from src.domain.services import CriticalNotificationTrigger
from src.infrastructure.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


def probe_database(storage: DuckDBAdapter) -> DatabaseHealth:
    """Run ``SELECT 1`` and time it. Never raises."""
    started = time.perf_counter()
    probe = storage.query("SELECT 1")
    if probe.is_failure():
        logger.warning(f"Health probe failed: {probe.error}")
        return DatabaseHealth(status="disconnected")
    return DatabaseHealth(status="connected", response_time_ms=round((time.perf_counter() - started) * 1000, 2))


@router.get("/health", response_model=HealthResponse)
async def health_check(storage: StorageDep) -> HealthResponse:
    """Storage connectivity plus the count of overdue critical notifications.

    Security Impact:
        - Reports counts only; no patient or result identifiers
    """
    database = probe_database(storage)
    if database.status == "disconnected":
        return HealthResponse(status="unhealthy", database=database)

    overdue = CriticalNotificationTrigger(storage).find_overdue(settings.engine.escalation_minutes)
    return HealthResponse(
        status="degraded" if overdue else "healthy",
        database=database,
        overdue_notifications=len(overdue),
    )

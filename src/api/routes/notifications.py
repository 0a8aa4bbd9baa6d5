"""Critical-value notification endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from src.api.dependencies import StorageDep
from src.api.models.validation import AcknowledgeRequest
from src.domain.results import CriticalResultNotification
from src.domain.services import CriticalNotificationTrigger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("/pending", response_model=list[CriticalResultNotification])
async def list_pending(
    storage: StorageDep,
    tenant_id: Optional[str] = Query(None, description="Limit to one tenant"),
    overdue_minutes: Optional[int] = Query(
        None, ge=0, description="Only notifications pending longer than this many minutes"
    )
) -> list[CriticalResultNotification]:
    """Pending notifications, oldest first."""
    if overdue_minutes is not None:
        return CriticalNotificationTrigger(storage).find_overdue(overdue_minutes, tenant_id=tenant_id)
    return storage.list_pending_notifications(tenant_id)


@router.post("/{result_id}/acknowledge", response_model=CriticalResultNotification)
async def acknowledge(
    result_id: str,
    request: AcknowledgeRequest,
    storage: StorageDep
) -> CriticalResultNotification:
    """Acknowledge a pending notification. Acknowledgment is terminal."""
    existing = storage.get_notification(result_id)
    if existing is None:
        raise HTTPException(status_code=404, detail=f"No critical notification for result {result_id}")
    if existing.is_acknowledged():
        raise HTTPException(
            status_code=409,
            detail=f"Notification for result {result_id} was already acknowledged by {existing.acknowledged_by}"
        )

    acknowledged = CriticalNotificationTrigger(storage).acknowledge(
        result_id,
        request.acknowledged_by,
        notified_to=request.notified_to,
        notification_method=request.notification_method,
    )
    if acknowledged.is_failure():
        logger.error(f"Acknowledgment of {result_id} failed: {acknowledged.error}")
        raise HTTPException(status_code=409, detail=str(acknowledged.error))
    return acknowledged.value

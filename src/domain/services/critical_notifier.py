"""Critical Notification Trigger.

Creates exactly one pending critical-value notification per critical result,
tracks acknowledgment and lists notifications that have waited past the
escalation window. Whether a record exists is decided by the notification
store alone, so a re-validation after a failed create produces the missing
notification.

Security Impact:
    - Critical values are patient-safety events: a notification is never
      auto-deleted and acknowledgment is terminal
    - Creation is check-before-create on result_id; the storage insert is also
      keyed by result_id so concurrent triggers cannot produce duplicates

Architecture:
    - Domain service depending only on NotificationPort
    - Delivery (push/SMS/email) is out of scope; only the record is created
"""

import logging
from datetime import datetime
from typing import Optional

from src.domain.enums import NotificationStatus
from src.domain.ports import NotificationError, NotificationPort, Result
from src.domain.results import CriticalResultNotification, TestResult, ValidationOutcome

logger = logging.getLogger(__name__)

DEFAULT_ESCALATION_MINUTES = 15


class CriticalNotificationTrigger:
    """Creates and manages critical-result notification records.

    Example Usage:
        ```python
        trigger = CriticalNotificationTrigger(storage_adapter)
        result = trigger.trigger(test_result, outcome)
        if result.is_success() and result.value:
            print(f"Notification pending for {result.value.result_id}")
        ```
    """

    def __init__(self, notification_port: NotificationPort):
        self.notification_port = notification_port

    def trigger(
        self,
        result: TestResult,
        outcome: ValidationOutcome
    ) -> Result[Optional[CriticalResultNotification]]:
        """Ensure a critical outcome has its notification record.

        Parameters:
            result: Result the outcome belongs to
            outcome: Assembled validation outcome

        Returns:
            Result[Optional[CriticalResultNotification]]: The new or existing
            record, None when no notification applies, or a failure
        """
        if not outcome.is_critical:
            return Result.success_result(None)

        try:
            existing = self.notification_port.get_notification(result.id)
        except Exception as e:
            logger.error(f"Failed to look up notification for result {result.id}: {str(e)}", exc_info=True)
            return Result.failure_result(
                NotificationError(f"Notification lookup failed: {str(e)}", result_id=result.id),
                error_type="NotificationError",
                error_details={"result_id": result.id}
            )

        if existing is not None:
            logger.debug(f"Critical notification already exists for result {result.id}")
            return Result.success_result(existing)

        notification = CriticalResultNotification(
            result_id=result.id,
            tenant_id=result.tenant_id,
            patient_id=result.patient_id,
            test_order_id=result.test_order_id,
            test_code=result.test_code,
            test_name=result.test_name,
            value=result.value,
            unit=result.unit,
            flag=outcome.flag,
            message=self._build_message(result, outcome),
            notification_status=NotificationStatus.PENDING,
        )
        created = self.notification_port.emit_critical_notification(notification)
        if created.is_success():
            logger.warning(f"Critical value detected for result {result.id}: {notification.message}")
        return created

    @staticmethod
    def _build_message(result: TestResult, outcome: ValidationOutcome) -> str:
        if outcome.verdict is not None:
            for warning in outcome.verdict.warnings:
                if warning.startswith("Critical"):
                    return warning
        return f"Critical value detected: {result.value}"

    def acknowledge(
        self,
        result_id: str,
        acknowledged_by: str,
        notified_to: Optional[str] = None,
        notification_method: Optional[str] = None
    ) -> Result[CriticalResultNotification]:
        """Acknowledge a pending notification.

        Acknowledging an unknown or already-acknowledged notification fails.
        """
        existing = self.notification_port.get_notification(result_id)
        if existing is None:
            return Result.failure_result(
                NotificationError(f"No critical notification for result {result_id}", result_id=result_id),
                error_type="NotificationError",
                error_details={"result_id": result_id}
            )
        if existing.is_acknowledged():
            return Result.failure_result(
                NotificationError(
                    f"Notification for result {result_id} was already acknowledged by {existing.acknowledged_by}",
                    result_id=result_id
                ),
                error_type="NotificationError",
                error_details={"result_id": result_id, "acknowledged_by": existing.acknowledged_by}
            )

        acknowledged = self.notification_port.acknowledge_notification(
            result_id, acknowledged_by, notified_to, notification_method
        )
        if acknowledged.is_success():
            logger.info(f"Critical notification for result {result_id} acknowledged by {acknowledged_by}")
        return acknowledged

    def find_overdue(
        self,
        minutes: int = DEFAULT_ESCALATION_MINUTES,
        tenant_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> list[CriticalResultNotification]:
        """Pending notifications older than the escalation window, oldest first."""
        now = now or datetime.now()
        overdue = [
            notification
            for notification in self.notification_port.list_pending_notifications(tenant_id)
            if notification.is_overdue(minutes, now)
        ]
        return sorted(overdue, key=lambda n: n.created_at)

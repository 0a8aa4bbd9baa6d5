"""Unit tests for critical-value notifications.

Tests cover:
- One notification per result, created only on the transition into critical
- Acknowledgment lifecycle
- Escalation of overdue notifications
"""

from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest

from src.domain.enums import NotificationStatus
from src.domain.ports import NotificationPort, Result
from src.domain.results import CriticalResultNotification, TestResult, ValidationVerdict
from src.domain.services.critical_notifier import CriticalNotificationTrigger
from src.domain.services.verdict_assembler import assemble_outcome


@pytest.fixture
def port():
    mock = Mock(spec=NotificationPort)
    mock.get_notification.return_value = None
    mock.emit_critical_notification.side_effect = lambda n: Result.success_result(n)
    return mock


@pytest.fixture
def result():
    return TestResult(id="res-1", tenant_id="lab-1", patient_id="P001", test_code="K", value=7.1, unit="mmol/L")


@pytest.fixture
def critical_outcome():
    return assemble_outcome(ValidationVerdict(
        warnings=("Critical high value: 7.1 (>= 6.5)",),
        flags=("critical_high",),
        requires_review=True,
        is_critical=True,
    ))


class TestTrigger:
    """Test notification creation."""

    def test_creates_pending_notification(self, port, result, critical_outcome):
        created = CriticalNotificationTrigger(port).trigger(result, critical_outcome)
        assert created.is_success()
        notification = created.value
        assert notification.result_id == "res-1"
        assert notification.notification_status == NotificationStatus.PENDING
        assert notification.message == "Critical high value: 7.1 (>= 6.5)"
        assert notification.flag == "critical_high"
        port.emit_critical_notification.assert_called_once()

    def test_non_critical_outcome_does_nothing(self, port, result):
        outcome = assemble_outcome(ValidationVerdict())
        assert CriticalNotificationTrigger(port).trigger(result, outcome).value is None
        port.get_notification.assert_not_called()
        port.emit_critical_notification.assert_not_called()

    def test_existing_notification_returned(self, port, result, critical_outcome):
        existing = CriticalResultNotification(result_id="res-1")
        port.get_notification.return_value = existing
        created = CriticalNotificationTrigger(port).trigger(result, critical_outcome)
        assert created.value is existing
        port.emit_critical_notification.assert_not_called()

    def test_stored_critical_without_record_is_notified(self, port, result, critical_outcome):
        already = result.model_copy(update={"is_critical": True})
        created = CriticalNotificationTrigger(port).trigger(already, critical_outcome)
        assert created.value.result_id == "res-1"
        port.emit_critical_notification.assert_called_once()

    def test_lookup_failure_is_reported(self, port, result, critical_outcome):
        port.get_notification.side_effect = RuntimeError("db down")
        created = CriticalNotificationTrigger(port).trigger(result, critical_outcome)
        assert created.is_failure()
        assert created.error_type == "NotificationError"

    def test_fallback_message(self, port, result):
        outcome = assemble_outcome(ValidationVerdict(requires_review=True, is_critical=True))
        created = CriticalNotificationTrigger(port).trigger(result, outcome)
        assert created.value.message == "Critical value detected: 7.1"


class TestAcknowledge:
    """Test acknowledgment."""

    def test_acknowledge_pending(self, port):
        port.get_notification.return_value = CriticalResultNotification(result_id="res-1")
        acknowledged = CriticalResultNotification(
            result_id="res-1",
            notification_status=NotificationStatus.ACKNOWLEDGED,
            acknowledged_by="dr.smith",
        )
        port.acknowledge_notification.return_value = Result.success_result(acknowledged)

        outcome = CriticalNotificationTrigger(port).acknowledge("res-1", "dr.smith", "ward nurse", "phone")
        assert outcome.is_success()
        port.acknowledge_notification.assert_called_once_with("res-1", "dr.smith", "ward nurse", "phone")

    def test_acknowledge_unknown(self, port):
        outcome = CriticalNotificationTrigger(port).acknowledge("missing", "dr.smith")
        assert outcome.is_failure()
        port.acknowledge_notification.assert_not_called()

    def test_acknowledge_twice_fails(self, port):
        port.get_notification.return_value = CriticalResultNotification(
            result_id="res-1",
            notification_status=NotificationStatus.ACKNOWLEDGED,
            acknowledged_by="dr.jones",
        )
        outcome = CriticalNotificationTrigger(port).acknowledge("res-1", "dr.smith")
        assert outcome.is_failure()
        assert "dr.jones" in str(outcome.error)


class TestFindOverdue:
    """Test escalation of pending notifications."""

    def test_only_overdue_oldest_first(self, port):
        now = datetime(2026, 1, 1, 12, 0)
        port.list_pending_notifications.return_value = [
            CriticalResultNotification(result_id="recent", created_at=now - timedelta(minutes=5)),
            CriticalResultNotification(result_id="late", created_at=now - timedelta(minutes=20)),
            CriticalResultNotification(result_id="later", created_at=now - timedelta(minutes=60)),
        ]
        overdue = CriticalNotificationTrigger(port).find_overdue(15, now=now)
        assert [n.result_id for n in overdue] == ["later", "late"]

    def test_acknowledged_never_overdue(self):
        notification = CriticalResultNotification(
            result_id="x",
            notification_status=NotificationStatus.ACKNOWLEDGED,
            created_at=datetime(2020, 1, 1),
        )
        assert notification.is_overdue(15) is False

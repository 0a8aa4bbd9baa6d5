"""Unit tests for the buffered validation audit logger."""

from unittest.mock import Mock

from src.domain.enums import AuditAction
from src.domain.ports import Result
from src.domain.results import ValidationVerdict
from src.infrastructure.audit import ValidationAuditLogger


class TestValidationAuditLogger:
    """Test buffering and flushing of audit entries."""

    def test_memory_only(self):
        audit = ValidationAuditLogger()
        written = audit.write_audit_log("res-1", ["r1"], ValidationVerdict(flags=("low",)), final_status="validated")

        assert written.is_success()
        assert audit.get_log_count() == 1
        entry = audit.get_logs()[0]
        assert entry.result_id == "res-1"
        assert entry.action == AuditAction.VALIDATION
        assert entry.verdict["flags"] == ["low"]
        assert entry.audit_id == written.value

    def test_auto_flush_clears_buffer(self):
        sink = Mock(return_value=Result.success_result(1))
        audit = ValidationAuditLogger(sink=sink)
        audit.write_audit_log("res-1", [], None)

        sink.assert_called_once()
        assert audit.has_logs() is False

    def test_batched_flush(self):
        sink = Mock(return_value=Result.success_result(2))
        audit = ValidationAuditLogger(sink=sink, auto_flush=False)
        audit.write_audit_log("res-1", [], None)
        audit.write_audit_log("res-2", [], None)
        sink.assert_not_called()

        flushed = audit.flush()
        assert flushed.value == 2
        assert len(sink.call_args[0][0]) == 2
        assert audit.get_log_count() == 0

    def test_failed_flush_keeps_entries(self):
        sink = Mock(return_value=Result.failure_result("disk full", error_type="StorageError"))
        audit = ValidationAuditLogger(sink=sink)
        written = audit.write_audit_log("res-1", [], None)

        assert written.is_failure()
        assert audit.get_log_count() == 1

    def test_sink_exception_is_failure(self):
        audit = ValidationAuditLogger(sink=Mock(side_effect=RuntimeError("boom")))
        written = audit.write_audit_log("res-1", [], None)
        assert written.is_failure()
        assert written.error_type == "StorageError"

    def test_unknown_action_rejected(self):
        written = ValidationAuditLogger().write_audit_log("res-1", [], None, action="nonsense")
        assert written.is_failure()

    def test_performed_by(self):
        audit = ValidationAuditLogger(performed_by="batch-job")
        audit.write_audit_log("res-1", [], None, action=AuditAction.VALIDATION_SYSTEM_ERROR.value)
        assert audit.get_logs()[0].performed_by == "batch-job"

    def test_clear(self):
        audit = ValidationAuditLogger()
        audit.write_audit_log("res-1", [], None)
        audit.clear_logs()
        assert audit.has_logs() is False

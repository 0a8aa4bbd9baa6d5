"""Validation Audit Logger.

This module records every validation decision (rules applied, verdict, final
status) as an append-only audit entry. Entries are buffered in memory and
flushed to a storage sink, either after every write or in batches.

Security Impact:
    - Creates an immutable audit trail of every status change made by the engine
    - Entries carry the full verdict, so a decision can be replayed and compared
    - Audit logs are append-only for compliance

Architecture:
    - Infrastructure layer component implementing AuditLogPort
    - Storage-agnostic: the sink is any callable accepting a list of entries
      (e.g. DuckDBAdapter.flush_audit_logs)
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, List, Optional

from src.domain.enums import AuditAction
from src.domain.ports import AuditLogPort, Result, StorageError
from src.domain.results import AuditLogEntry, ValidationVerdict

logger = logging.getLogger(__name__)

AuditSink = Callable[[List[AuditLogEntry]], Result[int]]


class ValidationAuditLogger(AuditLogPort):
    """Buffered audit trail for validation decisions.

    Example Usage:
        ```python
        audit = ValidationAuditLogger(sink=storage.flush_audit_logs, auto_flush=False)
        audit.write_audit_log("R001", ["r-glu-crit"], verdict, final_status="requires_review")
        # Later, flush to storage
        audit.flush()
        ```
    """

    def __init__(
        self,
        sink: Optional[AuditSink] = None,
        performed_by: str = "system",
        auto_flush: bool = True
    ):
        """Initialize audit logger.

        Parameters:
            sink: Storage callable receiving buffered entries (None = memory only)
            performed_by: Actor recorded on every entry
            auto_flush: Flush to the sink after every write
        """
        self._logs: List[AuditLogEntry] = []
        self._sink = sink
        self._performed_by = performed_by
        self._auto_flush = auto_flush

    def write_audit_log(
        self,
        result_id: str,
        applied_rule_ids: list[str],
        verdict: Optional[ValidationVerdict],
        action: str = AuditAction.VALIDATION.value,
        final_status: Optional[str] = None,
        details: Optional[dict] = None
    ) -> Result[str]:
        try:
            entry = AuditLogEntry(
                audit_id=str(uuid.uuid4()),
                result_id=str(result_id),
                action=AuditAction(action),
                applied_rule_ids=list(applied_rule_ids),
                verdict=verdict.model_dump(mode="json") if verdict is not None else None,
                final_status=final_status,
                performed_by=self._performed_by,
                performed_at=datetime.now(),
                details=details or {},
            )
        except ValueError as e:
            return Result.failure_result(e, error_type="ValidationError", error_details={"result_id": result_id})

        self._logs.append(entry)
        logger.debug(f"Logged audit entry: {entry.action.value} for result {result_id} ({final_status})")

        if self._auto_flush and self._sink is not None:
            flushed = self.flush()
            if flushed.is_failure():
                return Result.failure_result(
                    flushed.error,
                    error_type=flushed.error_type,
                    error_details=flushed.error_details
                )
        return Result.success_result(entry.audit_id)

    def flush(self) -> Result[int]:
        """Hand buffered entries to the sink and clear the buffer on success.

        Returns:
            Result[int]: Number of entries flushed
        """
        if self._sink is None:
            return Result.success_result(0)
        if not self._logs:
            return Result.success_result(0)

        pending = self._logs.copy()
        try:
            flushed = self._sink(pending)
        except Exception as e:
            logger.error(f"Failed to flush {len(pending)} audit entries: {str(e)}", exc_info=True)
            return Result.failure_result(
                StorageError(f"Audit flush failed: {str(e)}", operation="flush_audit_logs"),
                error_type="StorageError",
                error_details={"pending": len(pending)}
            )
        if flushed.is_success():
            del self._logs[:len(pending)]
        else:
            logger.error(f"Audit sink rejected {len(pending)} entries: {flushed.error}")
        return flushed

    def get_logs(self) -> List[AuditLogEntry]:
        """Buffered entries not yet flushed."""
        return self._logs.copy()

    def clear_logs(self) -> None:
        self._logs.clear()
        logger.debug("Cleared validation audit logs")

    def get_log_count(self) -> int:
        return len(self._logs)

    def has_logs(self) -> bool:
        return len(self._logs) > 0

"""Domain Ports - Abstract Contracts for Result Validation.

This module defines the Port interfaces (abstract contracts) that Adapters must implement.
Following Hexagonal Architecture, the Domain Core defines what it needs, not how it's provided.

The validation engine consumes five collaborators:
    - RuleRepositoryPort: active rules for a tenant and test code
    - PreviousResultPort: most recent final result for delta checks
    - VerdictStorePort: idempotent update of the result document
    - NotificationPort: idempotent creation of critical-result notifications
    - AuditLogPort: append-only record of the rules applied and the verdict

Batch inputs (rule files, result files) are read through IngestionPort.

Architecture:
    - Pure abstract interfaces with zero infrastructure dependencies
    - Adapters (DuckDB, JSON files, mocks in tests) implement these ports
    - Cross-boundary operations report failure through Result, not exceptions
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, Iterator, Optional, TypeVar, Union

if TYPE_CHECKING:
    from src.domain.results import (
        CriticalResultNotification,
        TestResult,
        ValidationOutcome,
        ValidationVerdict,
    )
    from src.domain.rules import RuleBase

# Type variable for Result generic
T = TypeVar('T')


# ============================================================================
# Result Type for Success/Failure Communication
# ============================================================================

@dataclass(frozen=True)
class Result(Generic[T]):
    """Result type for communicating success or failure without exceptions.

    Storage writes, notification creation and the validation workflow itself
    return Result so that callers decide retry policy explicitly instead of
    unwinding through exception handlers.

    Attributes:
        success: True if the operation succeeded, False otherwise
        value: The successful result value (only present if success=True)
        error: Error information (only present if success=False)
        error_type: Type of error (RuleRepositoryError, StorageError, etc.)
        error_details: Additional error context (result_id, rule_id, etc.)

    Example:
        ```python
        result = service.validate_result(test_result)
        if result.is_success():
            print(result.value.status)
        else:
            log_error(result.error, result.error_details)
        ```
    """

    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Optional[dict] = None

    @classmethod
    def success_result(cls, value: T) -> 'Result[T]':
        """Create a successful result."""
        return cls(
            success=True,
            value=value,
            error=None,
            error_type=None,
            error_details=None
        )

    @classmethod
    def failure_result(
        cls,
        error: Union[str, Exception],
        error_type: Optional[str] = None,
        error_details: Optional[dict] = None
    ) -> 'Result[T]':
        """Create a failure result.

        Parameters:
            error: Error message or exception
            error_type: Type of error (defaults to the exception class name)
            error_details: Additional context

        Returns:
            Result: Failure result with error information
        """
        error_message = str(error) if isinstance(error, Exception) else error
        error_type_name = error_type or (type(error).__name__ if isinstance(error, Exception) else "UnknownError")

        return cls(
            success=False,
            value=None,
            error=error_message,
            error_type=error_type_name,
            error_details=error_details or {}
        )

    def is_success(self) -> bool:
        """Check if result is successful."""
        return self.success

    def is_failure(self) -> bool:
        """Check if result is a failure."""
        return not self.success


# ============================================================================
# Custom Exception Hierarchy
# ============================================================================

class LabVerdictError(Exception):
    """Base exception for all validation-engine errors."""
    pass


class RuleDefinitionError(LabVerdictError):
    """Raised when a rule document cannot be turned into a usable rule.

    Rule-definition errors never fail a validation: the offending rule is
    logged and skipped.

    Attributes:
        rule_id: Identifier of the malformed rule (if known)
    """

    def __init__(self, message: str, rule_id: Optional[str] = None):
        super().__init__(message)
        self.rule_id = rule_id


class RuleRepositoryError(LabVerdictError):
    """Raised when the rule repository cannot be queried.

    Fatal to a single evaluation: the workflow falls back to requires_review
    with a generic system-error message.
    """

    def __init__(self, message: str, tenant_id: Optional[str] = None, test_code: Optional[str] = None):
        super().__init__(message)
        self.tenant_id = tenant_id
        self.test_code = test_code


class PreviousResultLookupError(LabVerdictError):
    """Raised when the previous-result lookup for a delta check fails.

    Never fatal: the delta rule is treated as having no prior result.
    """
    pass


class StorageError(LabVerdictError):
    """Raised when a storage operation fails.

    Attributes:
        operation: Storage operation that failed
        details: Additional error context
    """

    def __init__(self, message: str, operation: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.operation = operation
        self.details = details or {}


class NotificationError(LabVerdictError):
    """Raised when a notification cannot be created or acknowledged.

    Attributes:
        result_id: Result the notification belongs to
    """

    def __init__(self, message: str, result_id: Optional[str] = None):
        super().__init__(message)
        self.result_id = result_id


class SourceNotFoundError(LabVerdictError):
    """Raised when a rule file or result file cannot be found.

    Attributes:
        source: The source identifier that was not found
    """

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class UnsupportedSourceError(LabVerdictError):
    """Raised when the source format is not supported by the adapter.

    Attributes:
        source: The source identifier that is unsupported
        adapter: The adapter that cannot handle the source
    """

    def __init__(self, message: str, source: Optional[str] = None, adapter: Optional[str] = None):
        super().__init__(message)
        self.source = source
        self.adapter = adapter


# ============================================================================
# Ports
# ============================================================================

class RuleRepositoryPort(ABC):
    """Abstract contract for fetching validation rules.

    Implementations should return rules pre-filtered to enabled=True and
    sorted by ascending priority. The evaluator re-applies both as a guard,
    so an adapter that cannot filter or sort is still correct.
    """

    @abstractmethod
    def fetch_rules(self, tenant_id: str, test_code: str) -> list['RuleBase']:
        """Fetch the active rules for a test.

        Parameters:
            tenant_id: Tenant whose rule set applies
            test_code: Test code of the submitted result

        Returns:
            list[RuleBase]: Possibly empty list of rules

        Raises:
            RuleRepositoryError: If the repository cannot be queried
        """
        pass


class PreviousResultPort(ABC):
    """Abstract contract for the delta-check history lookup."""

    @abstractmethod
    def fetch_previous_final_result(
        self,
        tenant_id: str,
        test_code: str,
        patient_id: str
    ) -> Optional['TestResult']:
        """Fetch the most recent final result for the same test and patient.

        Ordered by performed time descending, limit 1.

        Returns:
            Optional[TestResult]: The previous final result, or None

        Raises:
            PreviousResultLookupError: If the lookup fails or times out
        """
        pass


class VerdictStorePort(ABC):
    """Abstract contract for persisting the assembled verdict on a result."""

    @abstractmethod
    def persist_verdict(self, result_id: str, outcome: 'ValidationOutcome') -> Result[str]:
        """Update the result document with status, flag, criticality and errors.

        Must be idempotent: writing the same outcome twice leaves the same
        document.

        Returns:
            Result[str]: The result id or error
        """
        pass


class NotificationPort(ABC):
    """Abstract contract for critical-result notification records."""

    @abstractmethod
    def get_notification(self, result_id: str) -> Optional['CriticalResultNotification']:
        """Return the notification for a result, if one exists."""
        pass

    @abstractmethod
    def emit_critical_notification(
        self,
        notification: 'CriticalResultNotification'
    ) -> Result['CriticalResultNotification']:
        """Create a pending notification keyed by its result_id.

        Must be idempotent: when a record for the result already exists the
        existing record is returned and nothing new is created.
        """
        pass

    def acknowledge_notification(
        self,
        result_id: str,
        acknowledged_by: str,
        notified_to: Optional[str] = None,
        notification_method: Optional[str] = None
    ) -> Result['CriticalResultNotification']:
        """Mark a pending notification as acknowledged (terminal).

        Note:
            Default implementation reports the operation as unsupported.
            Adapters backed by a store override it.
        """
        return Result.failure_result(
            NotificationError("Acknowledgment not supported by this adapter", result_id=result_id),
            error_type="NotificationError"
        )

    def list_pending_notifications(self, tenant_id: Optional[str] = None) -> list['CriticalResultNotification']:
        """List notifications still awaiting acknowledgment."""
        return []


class AuditLogPort(ABC):
    """Abstract contract for the append-only validation audit trail."""

    @abstractmethod
    def write_audit_log(
        self,
        result_id: str,
        applied_rule_ids: list[str],
        verdict: Optional['ValidationVerdict'],
        action: str = "validation",
        final_status: Optional[str] = None,
        details: Optional[dict] = None
    ) -> Result[str]:
        """Append one audit entry.

        Parameters:
            result_id: Result the entry refers to
            applied_rule_ids: Ids of the rules evaluated, in evaluation order
            verdict: Engine verdict (None for system-error entries)
            action: Audit action (see AuditAction)
            final_status: Status written to the result
            details: Additional context

        Returns:
            Result[str]: Audit entry identifier or error
        """
        pass


class IngestionPort(ABC):
    """Abstract contract for reading rule documents or results from a source.

    Example Implementation:
        ```python
        class CSVResultIngester(IngestionPort):
            def ingest(self, source: str) -> Iterator[Result[TestResult]]:
                for row in read_rows(source):
                    yield Result.success_result(TestResult(**row))
        ```
    """

    @abstractmethod
    def can_ingest(self, source: str) -> bool:
        """Check if this adapter can handle the given source."""
        pass

    @abstractmethod
    def ingest(self, source: str) -> Iterator[Result[Any]]:
        """Yield one Result per record; bad records are failures, not exceptions.

        Raises:
            SourceNotFoundError: If the source does not exist or cannot be read
            UnsupportedSourceError: If the source format is invalid
        """
        pass

    def get_source_info(self, source: str) -> Optional[dict]:
        """Get metadata about the source (size, format), if available."""
        return None

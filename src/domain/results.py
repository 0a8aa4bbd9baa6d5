"""Test Result and Verdict Schema Definitions.

This module defines the records that flow through the validation workflow:
the submitted test result, the engine's verdict, the assembled outcome that is
written back to the result, the critical-value notification and the audit
entry.

Security Impact:
    - Verdicts are pure values with no timestamps, so repeated evaluation of
      the same inputs serializes byte-identically and can be compared in audits
    - Critical notifications are keyed by result id and never auto-deleted
    - Audit entries are append-only

Architecture:
    - Pure domain models with zero infrastructure dependencies
    - Invariants enforced at construction time via Pydantic V2 validators
"""

from datetime import datetime, timedelta
from typing import Any, ClassVar, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.domain.enums import (
    AuditAction,
    NotificationStatus,
    ResultFlag,
    ResultStatus,
    ResultType,
)

ResultValue = Union[int, float, str]

_DOCUMENT_CONFIG = ConfigDict(populate_by_name=True, use_enum_values=False, extra="ignore")


class TestResult(BaseModel):
    """A single lab test result as stored by the LIS.

    Parameters:
        id: Result identifier
        tenant_id: Owning tenant
        patient_id: Patient the result belongs to
        test_order_id: Order the result was produced for
        test_code: Test code used to select rules
        test_name: Display name of the test
        value: Raw value (number or free text)
        unit: Unit of measure
        reference_range: Free-text reference range (e.g. "70-100")
        result_type: Optional numeric/text hint
        status: Lifecycle state
        flag: Primary abnormality flag
        is_critical: Whether the value hit a critical threshold
        validation_errors: Ordered list of blocking messages
        performed_at: When the test was performed
    """
    __test__: ClassVar[bool] = False
    model_config = _DOCUMENT_CONFIG

    id: str = Field(..., min_length=1, description="Result identifier")
    tenant_id: str = Field(..., alias="tenantId", min_length=1, description="Owning tenant")
    patient_id: str = Field(..., alias="patientId", min_length=1, description="Patient identifier")
    test_order_id: Optional[str] = Field(None, alias="testOrderId", description="Test order identifier")
    test_code: str = Field(..., alias="testCode", min_length=1, description="Test code")
    test_name: Optional[str] = Field(None, alias="testName", description="Test display name")
    value: ResultValue = Field(..., description="Raw result value")
    unit: Optional[str] = Field(None, description="Unit of measure")
    reference_range: Optional[str] = Field(None, alias="referenceRange", description="Reference range text")
    result_type: Optional[ResultType] = Field(None, alias="resultType", description="Numeric/text hint")
    status: ResultStatus = Field(ResultStatus.PENDING, description="Lifecycle state")
    flag: Optional[str] = Field(None, description="Primary flag")
    is_critical: bool = Field(False, alias="isCritical", description="Critical value indicator")
    validation_errors: list[str] = Field(
        default_factory=list,
        alias="validationErrors",
        description="Blocking validation messages"
    )
    performed_at: Optional[datetime] = Field(None, alias="performedAt", description="Performed time")

    def is_pending(self) -> bool:
        return self.status == ResultStatus.PENDING

    def as_submission(self) -> 'TestResult':
        """Copy with the engine-owned fields reset to a fresh pending result.

        Status, flag, criticality and validation errors are written only by
        the validation workflow, never taken from a submitter.
        """
        return self.model_copy(update={
            "status": ResultStatus.PENDING,
            "flag": None,
            "is_critical": False,
            "validation_errors": [],
        })


class ValidationVerdict(BaseModel):
    """Immutable engine output for one evaluation.

    Invariants:
        - is_valid is True exactly when errors is empty
        - is_critical implies requires_review
    """
    model_config = ConfigDict(frozen=True)

    is_valid: bool = True
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    flags: tuple[str, ...] = ()
    requires_review: bool = False
    is_critical: bool = False
    applied_rule_ids: tuple[str, ...] = ()
    skipped_rule_ids: tuple[str, ...] = ()

    @model_validator(mode="after")
    def check_invariants(self) -> 'ValidationVerdict':
        if self.is_valid != (len(self.errors) == 0):
            raise ValueError("is_valid must be True exactly when there are no errors")
        if self.is_critical and not self.requires_review:
            raise ValueError("a critical verdict must require review")
        return self

    @property
    def primary_flag(self) -> str:
        """First flag pushed during evaluation, or ``normal``."""
        return self.flags[0] if self.flags else ResultFlag.NORMAL.value


class ValidationOutcome(BaseModel):
    """Assembled outcome written back to the result document."""
    model_config = ConfigDict(frozen=True)

    status: ResultStatus
    flag: str = ResultFlag.NORMAL.value
    is_critical: bool = False
    validation_errors: tuple[str, ...] = ()
    verdict: Optional[ValidationVerdict] = None


class CriticalResultNotification(BaseModel):
    """Critical-value notification record (one per result).

    Lifecycle: pending -> acknowledged. Acknowledged is terminal.
    """
    model_config = _DOCUMENT_CONFIG

    result_id: str = Field(..., alias="resultId", min_length=1)
    tenant_id: Optional[str] = Field(None, alias="tenantId")
    patient_id: Optional[str] = Field(None, alias="patientId")
    test_order_id: Optional[str] = Field(None, alias="testOrderId")
    test_code: Optional[str] = Field(None, alias="testCode")
    test_name: Optional[str] = Field(None, alias="testName")
    value: Optional[ResultValue] = None
    unit: Optional[str] = None
    flag: Optional[str] = None
    message: Optional[str] = None
    notification_status: NotificationStatus = Field(NotificationStatus.PENDING, alias="notificationStatus")
    created_at: datetime = Field(default_factory=datetime.now, alias="createdAt")
    acknowledged_at: Optional[datetime] = Field(None, alias="acknowledgedAt")
    acknowledged_by: Optional[str] = Field(None, alias="acknowledgedBy")
    notified_to: Optional[str] = Field(None, alias="notifiedTo")
    notification_method: Optional[str] = Field(None, alias="notificationMethod")

    def is_acknowledged(self) -> bool:
        return self.notification_status == NotificationStatus.ACKNOWLEDGED

    def is_overdue(self, minutes: int, now: Optional[datetime] = None) -> bool:
        """Whether the notification is still pending past the escalation window."""
        if self.is_acknowledged():
            return False
        now = now or datetime.now()
        return now - self.created_at > timedelta(minutes=minutes)


class AuditLogEntry(BaseModel):
    """One append-only audit record of a validation decision."""

    audit_id: str
    result_id: str
    action: AuditAction = AuditAction.VALIDATION
    applied_rule_ids: list[str] = Field(default_factory=list)
    verdict: Optional[dict[str, Any]] = None
    final_status: Optional[str] = None
    performed_by: str = "system"
    performed_at: datetime = Field(default_factory=datetime.now)
    details: dict[str, Any] = Field(default_factory=dict)

    def to_record(self) -> dict:
        """Flatten to a row ready for database insertion."""
        return self.model_dump(mode="json")

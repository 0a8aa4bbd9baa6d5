"""Request and response models for validation and notification endpoints."""

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from src.domain.enums import ResultType
from src.domain.results import ValidationOutcome


class ValidateRequest(BaseModel):
    """Ad-hoc evaluation request.

    When ``rules`` is omitted the tenant's stored rules for ``test_code`` are
    used. Nothing is persisted.

    Attributes:
        test_code: Test code used to select stored rules
        value: Value to evaluate (number or text)
        tenant_id: Tenant whose rules apply (defaults to the configured tenant)
        rules: Inline rule documents
        previous_value: Previous final value for delta rules
        reference_range: Reference range text used as a low/high fallback
        result_type: Optional numeric/text hint
    """
    model_config = ConfigDict(populate_by_name=True)

    test_code: str = Field(..., alias="testCode", min_length=1)
    value: Union[int, float, str]
    tenant_id: Optional[str] = Field(None, alias="tenantId")
    rules: Optional[list[dict[str, Any]]] = None
    previous_value: Optional[float] = Field(None, alias="previousValue")
    reference_range: Optional[str] = Field(None, alias="referenceRange")
    result_type: Optional[ResultType] = Field(None, alias="resultType")


class ResultValidationResponse(BaseModel):
    """Outcome persisted for a stored result."""

    result_id: str
    outcome: ValidationOutcome


class AcknowledgeRequest(BaseModel):
    """Acknowledgment of a critical-value notification.

    Attributes:
        acknowledged_by: Clinician or staff member acknowledging
        notified_to: Person who was notified
        notification_method: How they were notified (phone, in person...)
    """
    model_config = ConfigDict(populate_by_name=True)

    acknowledged_by: str = Field(..., alias="acknowledgedBy", min_length=1)
    notified_to: Optional[str] = Field(None, alias="notifiedTo")
    notification_method: Optional[str] = Field(None, alias="notificationMethod")

"""API Pydantic models."""

from src.api.models.health import DatabaseHealth, HealthResponse
from src.api.models.validation import (
    AcknowledgeRequest,
    ResultValidationResponse,
    ValidateRequest,
)

__all__ = [
    "DatabaseHealth",
    "HealthResponse",
    "AcknowledgeRequest",
    "ResultValidationResponse",
    "ValidateRequest",
]

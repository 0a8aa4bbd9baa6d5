"""Result submission and validation endpoints.

This module provides endpoints for submitting results, re-running validation
on stored results and reading a result's audit trail.
"""

import logging

from fastapi import APIRouter, HTTPException, Query

from src.api.dependencies import StorageDep, ValidationServiceDep
from src.api.models.validation import ResultValidationResponse
from src.domain.enums import ResultStatus
from src.domain.ports import Result
from src.domain.results import AuditLogEntry, TestResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/results", tags=["results"])


def _raise_for_failure(result_id: str, result: Result) -> None:
    """Map a failed validation to an HTTP error."""
    if result.error_type == "AlreadyProcessed":
        raise HTTPException(status_code=409, detail=str(result.error))
    if result.error_type == "RuleRepositoryError":
        # The result was parked in requires_review before this point
        raise HTTPException(
            status_code=503,
            detail={"error": "Rule repository unavailable", "status": ResultStatus.REQUIRES_REVIEW.value}
        )
    logger.error(f"Validation of result {result_id} failed: {result.error}")
    raise HTTPException(status_code=500, detail="Validation failed")


@router.post("", response_model=ResultValidationResponse, status_code=201)
async def submit_result(
    result: TestResult,
    storage: StorageDep,
    service: ValidationServiceDep
) -> ResultValidationResponse:
    """Store a new pending result and validate it immediately.

    Status, flag, criticality and errors in the body are ignored. An id that
    is already stored is rejected with 409; stored results are never replaced.
    """
    result = result.as_submission()
    saved = storage.save_result(result)
    if saved.is_failure():
        if saved.error_type == "DuplicateResult":
            raise HTTPException(status_code=409, detail=f"Result {result.id} already exists")
        logger.error(f"Failed to store result {result.id}: {saved.error}")
        raise HTTPException(status_code=500, detail="Failed to store result")

    validated = service.validate_result(result)
    if validated.is_failure():
        _raise_for_failure(result.id, validated)
    return ResultValidationResponse(result_id=result.id, outcome=validated.value)


@router.get("/{result_id}", response_model=TestResult)
async def get_result(result_id: str, storage: StorageDep) -> TestResult:
    result = storage.get_result(result_id)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Result not found: {result_id}")
    return result


@router.post("/{result_id}/validate", response_model=ResultValidationResponse)
async def validate_stored_result(
    result_id: str,
    storage: StorageDep,
    service: ValidationServiceDep,
    force: bool = Query(False, description="Re-validate a result that is no longer pending")
) -> ResultValidationResponse:
    """Validate a stored result.

    Results that are no longer pending are rejected with 409 unless
    ``force=true``.
    """
    result = storage.get_result(result_id)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Result not found: {result_id}")

    validated = service.validate_result(result, force=force)
    if validated.is_failure():
        _raise_for_failure(result_id, validated)
    return ResultValidationResponse(result_id=result_id, outcome=validated.value)


@router.get("/{result_id}/audit", response_model=list[AuditLogEntry])
async def get_result_audit(result_id: str, storage: StorageDep) -> list[AuditLogEntry]:
    """Audit trail of a result, oldest first."""
    return storage.get_audit_logs(result_id)

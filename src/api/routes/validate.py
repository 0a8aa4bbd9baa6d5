"""Ad-hoc evaluation endpoint.

Evaluates a value against inline rule documents, or against the tenant's
stored rules, and returns the assembled outcome. Nothing is persisted, no
notification is created and no audit entry is written.
"""

import logging

from fastapi import APIRouter, HTTPException

from src.api.dependencies import StorageDep
from src.api.models.validation import ValidateRequest
from src.domain.ports import RuleRepositoryError
from src.domain.results import ValidationOutcome
from src.domain.rules import parse_rule
from src.domain.services import assemble_outcome, evaluate_rules
from src.domain.services.verdict_assembler import no_rules_outcome
from src.domain.utils import parse_reference_range
from src.infrastructure.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["validation"])


@router.post("/validate", response_model=ValidationOutcome)
async def validate_value(request: ValidateRequest, storage: StorageDep) -> ValidationOutcome:
    """Evaluate a value and return status, flag, criticality and verdict.

    Inline rule documents are parsed individually; any malformed document
    rejects the request with 422 and the per-document messages.
    """
    tenant_id = request.tenant_id or settings.engine.default_tenant_id

    if request.rules is not None:
        rules = []
        errors = []
        for document in request.rules:
            parsed = parse_rule(document)
            if parsed.is_success():
                rules.append(parsed.value)
            else:
                errors.append(str(parsed.error))
        if errors:
            raise HTTPException(status_code=422, detail=errors)
    else:
        try:
            rules = storage.fetch_rules(tenant_id, request.test_code)
        except RuleRepositoryError as e:
            logger.error(f"Rule lookup failed for {tenant_id}/{request.test_code}: {str(e)}")
            raise HTTPException(status_code=503, detail="Rule repository unavailable")

    if not rules:
        return no_rules_outcome()

    reference_range = parse_reference_range(request.reference_range)
    state = evaluate_rules(
        request.value,
        rules,
        previous_value=request.previous_value,
        reference_range=reference_range,
        result_type=request.result_type,
    )
    return assemble_outcome(state.to_verdict())

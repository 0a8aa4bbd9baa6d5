"""Verdict Assembler.

Maps an engine verdict onto the result lifecycle:

    errors present        -> rejected
    review required       -> requires_review
    otherwise             -> validated

The primary flag is the first flag recorded during evaluation, or ``normal``.
"""

from src.domain.enums import ResultFlag, ResultStatus
from src.domain.results import ValidationOutcome, ValidationVerdict

SYSTEM_ERROR_MESSAGE = "Validation system error"


def assemble_outcome(verdict: ValidationVerdict) -> ValidationOutcome:
    """Build the outcome written back to the result."""
    if not verdict.is_valid:
        status = ResultStatus.REJECTED
    elif verdict.requires_review:
        status = ResultStatus.REQUIRES_REVIEW
    else:
        status = ResultStatus.VALIDATED

    return ValidationOutcome(
        status=status,
        flag=verdict.primary_flag,
        is_critical=verdict.is_critical,
        validation_errors=verdict.errors,
        verdict=verdict,
    )


def no_rules_outcome() -> ValidationOutcome:
    """Outcome for a test code with no configured rules."""
    return assemble_outcome(ValidationVerdict())


def system_error_outcome() -> ValidationOutcome:
    """Fail-safe outcome used when the rule repository is unavailable."""
    return ValidationOutcome(
        status=ResultStatus.REQUIRES_REVIEW,
        flag=ResultFlag.NORMAL.value,
        is_critical=False,
        validation_errors=(SYSTEM_ERROR_MESSAGE,),
        verdict=None,
    )

"""Result Validation Workflow.

Orchestrates the validation of one submitted result:

    fetch rules -> normalize value -> (fetch previous value) -> evaluate
    -> assemble outcome -> persist verdict -> critical notification -> audit

Security Impact:
    - A rule repository failure never lets a result through: the result is
      parked in requires_review with a generic system-error message
    - Every decision, including system errors, is written to the audit trail

Architecture:
    - Domain service wired to ports only (no infrastructure imports)
    - Synchronous, one invocation per result; per-result serialization is the
      caller's responsibility
    - Side-effect failures (notification, audit) are logged and do not change
      the returned outcome
"""

import logging
from typing import Iterable, Optional

from src.domain.enums import AuditAction, ResultStatus
from src.domain.ports import (
    AuditLogPort,
    NotificationPort,
    PreviousResultPort,
    Result,
    RuleRepositoryError,
    RuleRepositoryPort,
    VerdictStorePort,
)
from src.domain.results import TestResult, ValidationOutcome
from src.domain.rules import DeltaRule, RuleBase
from src.domain.services.critical_notifier import CriticalNotificationTrigger
from src.domain.services.delta_checker import DeltaChecker
from src.domain.services.rule_evaluator import evaluate_rules
from src.domain.services.value_normalizer import normalize_value
from src.domain.services.verdict_assembler import (
    assemble_outcome,
    no_rules_outcome,
    system_error_outcome,
)
from src.domain.utils import parse_reference_range

logger = logging.getLogger(__name__)


class ResultValidationService:
    """Validates pending results against their tenant's rule set.

    Example Usage:
        ```python
        service = ResultValidationService(
            rule_repository=storage,
            verdict_store=storage,
            notification_port=storage,
            audit_log=storage,
            previous_result_port=storage,
        )
        result = service.validate_result(test_result)
        if result.is_success():
            print(result.value.status, result.value.flag)
        ```
    """

    def __init__(
        self,
        rule_repository: RuleRepositoryPort,
        verdict_store: VerdictStorePort,
        notification_port: NotificationPort,
        audit_log: AuditLogPort,
        previous_result_port: Optional[PreviousResultPort] = None,
        reference_range_fallback: bool = False
    ):
        """Initialize the workflow.

        Parameters:
            rule_repository: Source of rule sets
            verdict_store: Writes the outcome back to the result
            notification_port: Critical notification records
            audit_log: Audit trail
            previous_result_port: History lookup for delta rules (optional)
            reference_range_fallback: Flag low/high from the result's
                reference range text when no rule produced a flag
        """
        self.rule_repository = rule_repository
        self.verdict_store = verdict_store
        self.audit_log = audit_log
        self.previous_result_port = previous_result_port
        self.reference_range_fallback = reference_range_fallback
        self.notifier = CriticalNotificationTrigger(notification_port)

    def evaluate(self, result: TestResult, rules: Iterable[RuleBase]) -> ValidationOutcome:
        """Evaluate a result against a given rule set without side effects
        (apart from the previous-result lookup for delta rules).
        """
        rules = list(rules)
        if not rules:
            return no_rules_outcome()

        value = normalize_value(result.value, result.result_type)
        previous_value = None
        if value.is_numeric and self._has_delta_rule(rules):
            previous_value = self._fetch_previous_value(result)

        reference_range = None
        if self.reference_range_fallback:
            reference_range = parse_reference_range(result.reference_range)

        state = evaluate_rules(value, rules, previous_value=previous_value, reference_range=reference_range)
        return assemble_outcome(state.to_verdict())

    def validate_result(self, result: TestResult, force: bool = False) -> Result[ValidationOutcome]:
        """Validate one result and apply every side effect.

        Parameters:
            result: Submitted result
            force: Re-validate a result that is no longer pending

        Returns:
            Result[ValidationOutcome]: The persisted outcome, or a failure
            (AlreadyProcessed, RuleRepositoryError, StorageError)
        """
        if not result.is_pending() and not force:
            logger.info(f"Result {result.id} is {result.status.value}, skipping validation")
            return Result.failure_result(
                f"Result {result.id} already processed (status: {result.status.value})",
                error_type="AlreadyProcessed",
                error_details={"result_id": result.id, "status": result.status.value}
            )

        try:
            rules = self.rule_repository.fetch_rules(result.tenant_id, result.test_code)
        except Exception as e:
            return self._handle_repository_failure(result, e)

        outcome = self.evaluate(result, rules)
        logger.info(
            f"Result {result.id} ({result.test_code}) evaluated against {len(rules)} rule(s): "
            f"status={outcome.status.value}, flag={outcome.flag}"
        )

        persisted = self.verdict_store.persist_verdict(result.id, outcome)
        if persisted.is_failure():
            logger.error(f"Failed to persist verdict for result {result.id}: {persisted.error}")
            return Result.failure_result(
                persisted.error,
                error_type=persisted.error_type or "StorageError",
                error_details={"result_id": result.id, **(persisted.error_details or {})}
            )

        notified = self.notifier.trigger(result, outcome)
        if notified.is_failure():
            logger.error(f"Critical notification failed for result {result.id}: {notified.error}")

        applied_rule_ids = list(outcome.verdict.applied_rule_ids) if outcome.verdict else []
        audited = self.audit_log.write_audit_log(
            result.id,
            applied_rule_ids,
            outcome.verdict,
            action=AuditAction.VALIDATION.value,
            final_status=outcome.status.value,
            details={"test_code": result.test_code, "flag": outcome.flag, "is_critical": outcome.is_critical}
        )
        if audited.is_failure():
            logger.error(f"Audit log write failed for result {result.id}: {audited.error}")

        return Result.success_result(outcome)

    def _handle_repository_failure(self, result: TestResult, error: Exception) -> Result[ValidationOutcome]:
        logger.error(f"Rule lookup failed for result {result.id} ({result.test_code}): {str(error)}", exc_info=True)
        outcome = system_error_outcome()

        persisted = self.verdict_store.persist_verdict(result.id, outcome)
        if persisted.is_failure():
            logger.error(f"Failed to persist fail-safe status for result {result.id}: {persisted.error}")

        audited = self.audit_log.write_audit_log(
            result.id,
            [],
            None,
            action=AuditAction.VALIDATION_SYSTEM_ERROR.value,
            final_status=ResultStatus.REQUIRES_REVIEW.value,
            details={"test_code": result.test_code, "error": str(error)}
        )
        if audited.is_failure():
            logger.error(f"Audit log write failed for result {result.id}: {audited.error}")

        return Result.failure_result(
            RuleRepositoryError(str(error), tenant_id=result.tenant_id, test_code=result.test_code),
            error_type="RuleRepositoryError",
            error_details={"result_id": result.id, "test_code": result.test_code}
        )

    @staticmethod
    def _has_delta_rule(rules: list[RuleBase]) -> bool:
        return any(isinstance(rule, DeltaRule) and rule.enabled and rule.has_conditions() for rule in rules)

    def _fetch_previous_value(self, result: TestResult) -> Optional[float]:
        if self.previous_result_port is None:
            return None
        checker = DeltaChecker(self.previous_result_port, result.tenant_id)
        return checker.fetch_previous_value(result.test_code, result.patient_id)

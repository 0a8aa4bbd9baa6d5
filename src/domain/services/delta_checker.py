"""Delta Checker Service.

This module compares a new result with the patient's most recent final result
for the same test, to catch transcription errors or acute clinical change.

Architecture:
    - ``compute_delta`` is pure and used directly by the rule evaluator
    - ``DeltaChecker`` wraps the previous-result lookup (PreviousResultPort)
      and degrades every lookup failure to "no prior result"
    - The evaluator never performs I/O; the workflow fetches the previous
      value up front through ``fetch_previous_value``
"""

import logging
from dataclasses import dataclass
from typing import Optional

from src.domain.enums import DeltaType, RuleAction
from src.domain.ports import PreviousResultLookupError, PreviousResultPort
from src.domain.rules import DeltaRule
from src.domain.services.value_normalizer import normalize_value
from src.domain.utils import format_number

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeltaOutcome:
    """Result of comparing a value with its predecessor.

    Attributes:
        delta: Measured change (absolute units or percent)
        delta_type: How the change was measured
        previous_value: Value of the previous final result
        current_value: Value being validated
        violated: Whether the change exceeds the rule threshold
        message: Human-readable violation message (None when not violated)
        is_error: Whether the violation blocks the result
    """

    delta: float
    delta_type: DeltaType
    previous_value: float
    current_value: float
    violated: bool
    message: Optional[str] = None
    is_error: bool = False


def compute_delta(current: float, previous: float, rule: DeltaRule) -> Optional[DeltaOutcome]:
    """Compare ``current`` with ``previous`` under a delta rule.

    Parameters:
        current: Numeric value being validated
        previous: Numeric value of the previous final result
        rule: Delta rule carrying the threshold and type

    Returns:
        Optional[DeltaOutcome]: None when the rule has no threshold or a
        percentage change is undefined (previous value of zero)
    """
    threshold = rule.conditions.delta_threshold
    if threshold is None:
        return None

    delta_type = rule.conditions.delta_type
    if delta_type == DeltaType.PERCENTAGE:
        if previous == 0:
            logger.debug(f"Delta rule {rule.id}: previous value is zero, percentage change undefined")
            return None
        delta = abs(current - previous) / abs(previous) * 100
        delta_text = f"{delta:.1f}% change"
    else:
        delta = abs(current - previous)
        delta_text = f"{format_number(round(delta, 6))} change"

    violated = delta > threshold
    message = None
    if violated:
        message = (
            f"Significant delta from previous result: {delta_text} "
            f"(previous: {format_number(previous)}, current: {format_number(current)})"
        )

    return DeltaOutcome(
        delta=delta,
        delta_type=delta_type,
        previous_value=previous,
        current_value=current,
        violated=violated,
        message=message,
        is_error=violated and rule.action == RuleAction.BLOCK,
    )


class DeltaChecker:
    """Evaluates delta rules against the patient's result history.

    Example Usage:
        ```python
        checker = DeltaChecker(storage_adapter, tenant_id="lab-1")
        outcome = checker.evaluate_delta(3.5, "CREAT", "P001", rule)
        if outcome and outcome.violated:
            print(outcome.message)
        ```
    """

    def __init__(self, previous_result_port: PreviousResultPort, tenant_id: str):
        """Initialize delta checker.

        Parameters:
            previous_result_port: History lookup
            tenant_id: Tenant whose history is searched
        """
        self.previous_result_port = previous_result_port
        self.tenant_id = tenant_id

    def fetch_previous_value(self, test_code: str, patient_id: str) -> Optional[float]:
        """Fetch the numeric value of the previous final result.

        Returns:
            Optional[float]: None when there is no previous result, its value
            is not numeric, or the lookup fails
        """
        try:
            previous = self.previous_result_port.fetch_previous_final_result(
                self.tenant_id, test_code, patient_id
            )
        except PreviousResultLookupError as e:
            logger.warning(
                f"Previous result lookup failed for {test_code}/{patient_id}, "
                f"treating delta rules as inert: {str(e)}"
            )
            return None
        except Exception as e:
            logger.error(
                f"Unexpected error fetching previous result for {test_code}/{patient_id}: {str(e)}",
                exc_info=True
            )
            return None

        if previous is None:
            logger.debug(f"No previous final result for {test_code}/{patient_id}")
            return None

        normalized = normalize_value(previous.value, previous.result_type)
        if not normalized.is_numeric:
            logger.debug(f"Previous result {previous.id} is not numeric, delta check skipped")
            return None
        return normalized.numeric

    def evaluate_delta(
        self,
        current_value: float,
        test_code: str,
        patient_id: str,
        rule: DeltaRule
    ) -> Optional[DeltaOutcome]:
        """Look up the previous result and apply ``rule`` to the change.

        Returns:
            Optional[DeltaOutcome]: None when the rule is inert (no history,
            lookup failure, zero baseline for a percentage rule)
        """
        previous = self.fetch_previous_value(test_code, patient_id)
        if previous is None:
            return None
        return compute_delta(current_value, previous, rule)

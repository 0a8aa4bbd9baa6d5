"""Domain Guardrails - Rule-Set Lint and Batch Failure Monitoring.

This module provides two guardrails around the validation engine:

    - RuleSetGuardrail: authoring checks for a rule set (ordering hazards,
      duplicate priorities, malformed rules). Advisory only; the engine never
      re-sorts rules on its own.
    - CircuitBreaker: monitors the failure rate of a batch of ingested results
      and aborts the batch when the source is mostly unreadable.

Security Impact:
    - Surfaces rule sets whose primary flag could hide a critical value behind
      a range flag before they reach production
    - Prevents a corrupt batch file from producing thousands of failed rows

Architecture:
    - Pure domain logic with no infrastructure dependencies
    - Works with Result type from ports to monitor success/failure
"""

import logging
from collections import Counter, deque
from dataclasses import dataclass
from threading import Lock
from typing import Iterable, Optional

from src.domain.enums import RuleType
from src.domain.ports import Result
from src.domain.rules import RuleBase

logger = logging.getLogger(__name__)


# ============================================================================
# Rule-set lint
# ============================================================================

@dataclass(frozen=True)
class RuleSetIssue:
    """One finding from the rule-set lint.

    Attributes:
        code: Stable identifier of the check
        message: Human-readable description
        rule_ids: Rules involved
        severity: ``warning`` or ``error``
    """
    code: str
    message: str
    rule_ids: tuple[str, ...] = ()
    severity: str = "warning"


class RuleSetGuardrail:
    """Authoring checks for a rule set.

    Checks:
        critical_after_range: a critical rule evaluates after a range rule, so
            the primary flag of a critical value could be ``low``/``high``
        duplicate_priority: two enabled rules share a priority (order then
            depends on storage order)
        test_code_mismatch: a rule belongs to a different test code
        malformed_rule: an enabled rule with no effective condition
        all_disabled: the set has rules but none of them is enabled

    Example Usage:
        ```python
        issues = RuleSetGuardrail().check(rules, test_code="GLU")
        for issue in issues:
            print(issue.code, issue.message)
        ```
    """

    def check(self, rules: Iterable[RuleBase], test_code: Optional[str] = None) -> list[RuleSetIssue]:
        rules = list(rules)
        enabled = sorted((r for r in rules if r.enabled), key=lambda r: r.priority)

        issues: list[RuleSetIssue] = []
        if rules and not enabled:
            issues.append(RuleSetIssue(
                code="all_disabled",
                message="Rule set contains only disabled rules; every result will be validated",
                rule_ids=tuple(r.id for r in rules),
            ))

        if test_code is not None:
            mismatched = [r.id for r in rules if r.test_code != test_code]
            if mismatched:
                issues.append(RuleSetIssue(
                    code="test_code_mismatch",
                    message=f"Rules do not belong to test {test_code}",
                    rule_ids=tuple(mismatched),
                    severity="error",
                ))

        for rule in enabled:
            if not rule.has_conditions():
                issues.append(RuleSetIssue(
                    code="malformed_rule",
                    message=f"{rule.rule_type} rule {rule.id} has no conditions and will be skipped",
                    rule_ids=(rule.id,),
                    severity="error",
                ))

        issues.extend(self._check_critical_order(enabled))
        issues.extend(self._check_duplicate_priorities(enabled))
        return issues

    @staticmethod
    def _check_critical_order(enabled: list[RuleBase]) -> list[RuleSetIssue]:
        issues = []
        first_range: Optional[RuleBase] = None
        for rule in enabled:
            if rule.rule_type == RuleType.RANGE.value and first_range is None:
                first_range = rule
            elif rule.rule_type == RuleType.CRITICAL.value and first_range is not None:
                issues.append(RuleSetIssue(
                    code="critical_after_range",
                    message=(
                        f"Critical rule {rule.id} (priority {rule.priority}) evaluates after range rule "
                        f"{first_range.id} (priority {first_range.priority}); the primary flag of a "
                        f"critical value may be low/high"
                    ),
                    rule_ids=(first_range.id, rule.id),
                ))
        return issues

    @staticmethod
    def _check_duplicate_priorities(enabled: list[RuleBase]) -> list[RuleSetIssue]:
        counts = Counter(rule.priority for rule in enabled)
        issues = []
        for priority, count in sorted(counts.items()):
            if count > 1:
                issues.append(RuleSetIssue(
                    code="duplicate_priority",
                    message=f"{count} rules share priority {priority}; their order follows storage order",
                    rule_ids=tuple(r.id for r in enabled if r.priority == priority),
                ))
        return issues


def has_errors(issues: Iterable[RuleSetIssue]) -> bool:
    return any(issue.severity == "error" for issue in issues)


# ============================================================================
# Batch circuit breaker
# ============================================================================

@dataclass
class CircuitBreakerConfig:
    """Configuration for CircuitBreaker behavior.

    Attributes:
        failure_threshold_percent: Percentage of failures that opens the circuit (0-100)
        window_size: Number of rows evaluated in the sliding window
        min_records_before_check: Rows processed before the threshold is checked
        abort_on_open: Raise CircuitBreakerOpenError when the threshold is exceeded
    """
    failure_threshold_percent: float = 50.0
    window_size: int = 100
    min_records_before_check: int = 10
    abort_on_open: bool = True


class CircuitBreakerOpenError(Exception):
    """Raised when the batch failure rate exceeds the configured threshold.

    Attributes:
        failure_rate: Failure rate in the window when the circuit opened
        threshold: Configured threshold
        records_processed: Rows processed when the circuit opened
        failures: Failures recorded when the circuit opened
    """

    def __init__(
        self,
        message: str,
        failure_rate: float,
        threshold: float,
        records_processed: int,
        failures: int
    ):
        super().__init__(message)
        self.failure_rate = failure_rate
        self.threshold = threshold
        self.records_processed = records_processed
        self.failures = failures


class CircuitBreaker:
    """Sliding-window failure monitor for batch ingestion.

    Example Usage:
        ```python
        breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold_percent=30.0))
        for row in ingester.ingest("results.csv"):
            breaker.record_result(row)
            if row.is_success():
                service.validate_result(row.value)
        ```
    """

    def __init__(self, config: Optional[CircuitBreakerConfig] = None):
        self.config = config or CircuitBreakerConfig()
        self._window: deque[bool] = deque(maxlen=self.config.window_size)
        self._lock = Lock()
        self._is_open = False
        self._total_processed = 0
        self._total_failures = 0

    def record_result(self, result: Result) -> None:
        """Record one row outcome and re-check the threshold.

        Raises:
            CircuitBreakerOpenError: If abort_on_open=True and threshold exceeded
        """
        with self._lock:
            self._window.append(result.is_success())
            self._total_processed += 1
            if result.is_failure():
                self._total_failures += 1

            if self._total_processed >= self.config.min_records_before_check:
                self._check_threshold()

    def _failure_rate(self) -> float:
        if not self._window:
            return 0.0
        failures = sum(1 for ok in self._window if not ok)
        return failures / len(self._window) * 100.0

    def _check_threshold(self) -> None:
        failure_rate = self._failure_rate()
        threshold = self.config.failure_threshold_percent

        if failure_rate >= threshold:
            if not self._is_open:
                self._is_open = True
                logger.error(
                    f"CircuitBreaker OPEN: Failure rate {failure_rate:.1f}% exceeds threshold {threshold}% "
                    f"(total: {self._total_failures}/{self._total_processed})"
                )
                if self.config.abort_on_open:
                    raise CircuitBreakerOpenError(
                        f"CircuitBreaker opened: {failure_rate:.1f}% failure rate exceeds threshold {threshold}%",
                        failure_rate=failure_rate,
                        threshold=threshold,
                        records_processed=self._total_processed,
                        failures=self._total_failures
                    )
        elif self._is_open:
            self._is_open = False
            logger.info(f"CircuitBreaker CLOSED: Failure rate {failure_rate:.1f}% is below threshold {threshold}%")

    def is_open(self) -> bool:
        with self._lock:
            return self._is_open

    def get_statistics(self) -> dict:
        """Counters and the current window failure rate."""
        with self._lock:
            return {
                'is_open': self._is_open,
                'total_processed': self._total_processed,
                'total_failures': self._total_failures,
                'records_in_window': len(self._window),
                'failure_rate': self._failure_rate(),
                'threshold': self.config.failure_threshold_percent,
            }

"""Rule Evaluator Service.

This module applies an ordered rule set to a single result value and produces
a ValidationVerdict. Evaluation is a fold over the enabled rules, stably
sorted by ascending priority, threading an immutable EvaluationState.

Comparison semantics:
    - range: exclusive (``value < min`` -> low, ``value > max`` -> high)
    - critical: inclusive (``value <= critical_low``, ``value >= critical_high``)
    - absurd: outside ``[absurd_low, absurd_high]`` is always an error
    - pattern: search semantics, string originals only
    - delta: compares with the previous final value supplied by the caller

Flags are recorded in the order rules fire and are never re-sorted; the first
flag is the primary flag. Critical rules are expected to carry lower priority
numbers than range rules (see RuleSetGuardrail).

Architecture:
    - Pure function, no I/O and no shared mutable state
    - The previous value for delta rules is injected by the caller
"""

import logging
import re
from dataclasses import dataclass, replace
from typing import Iterable, Optional, Union

from src.domain.enums import ResultFlag, ResultType, RuleAction
from src.domain.results import ValidationVerdict
from src.domain.rules import (
    AbsurdRule,
    CriticalRule,
    DeltaRule,
    PatternRule,
    RangeRule,
    RuleBase,
)
from src.domain.services.delta_checker import compute_delta
from src.domain.services.value_normalizer import NormalizedValue, normalize_value
from src.domain.utils import format_number

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleFinding:
    """What a single rule contributed when it fired."""

    message: Optional[str] = None
    is_error: bool = False
    flag: Optional[str] = None
    is_critical: bool = False
    requires_review: bool = False


@dataclass(frozen=True)
class EvaluationState:
    """Immutable accumulator threaded through the rule fold."""

    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    flags: tuple[str, ...] = ()
    requires_review: bool = False
    is_critical: bool = False
    applied_rule_ids: tuple[str, ...] = ()
    skipped_rule_ids: tuple[str, ...] = ()

    def with_applied(self, rule_id: str) -> 'EvaluationState':
        return replace(self, applied_rule_ids=self.applied_rule_ids + (rule_id,))

    def with_skipped(self, rule_id: str) -> 'EvaluationState':
        return replace(self, skipped_rule_ids=self.skipped_rule_ids + (rule_id,))

    def with_flag(self, flag: str) -> 'EvaluationState':
        if flag in self.flags:
            return self
        return replace(self, flags=self.flags + (flag,))

    def with_finding(self, finding: RuleFinding) -> 'EvaluationState':
        state = self
        if finding.flag:
            state = state.with_flag(finding.flag)
        if finding.message:
            if finding.is_error:
                state = replace(state, errors=state.errors + (finding.message,))
            else:
                state = replace(state, warnings=state.warnings + (finding.message,))
        if finding.is_critical:
            state = replace(state, is_critical=True, requires_review=True)
        if finding.requires_review:
            state = replace(state, requires_review=True)
        return state

    def to_verdict(self) -> ValidationVerdict:
        return ValidationVerdict(
            is_valid=len(self.errors) == 0,
            errors=self.errors,
            warnings=self.warnings,
            flags=self.flags,
            requires_review=self.requires_review or self.is_critical,
            is_critical=self.is_critical,
            applied_rule_ids=self.applied_rule_ids,
            skipped_rule_ids=self.skipped_rule_ids,
        )


def order_rules(rules: Iterable[RuleBase]) -> list[RuleBase]:
    """Enabled rules in evaluation order (stable sort on priority)."""
    return sorted((rule for rule in rules if rule.enabled), key=lambda rule: rule.priority)


# ============================================================================
# Per-family checks
# ============================================================================

def _check_range(rule: RangeRule, value: float) -> list[RuleFinding]:
    conditions = rule.conditions
    is_error = rule.action == RuleAction.BLOCK
    if conditions.min_value is not None and value < conditions.min_value:
        return [RuleFinding(
            message=f"Value {format_number(value)} is below reference low {format_number(conditions.min_value)}",
            is_error=is_error,
            flag=ResultFlag.LOW.value,
        )]
    if conditions.max_value is not None and value > conditions.max_value:
        return [RuleFinding(
            message=f"Value {format_number(value)} is above reference high {format_number(conditions.max_value)}",
            is_error=is_error,
            flag=ResultFlag.HIGH.value,
        )]
    return []


def _check_critical(rule: CriticalRule, value: float) -> list[RuleFinding]:
    conditions = rule.conditions
    findings = []
    if conditions.critical_low is not None and value <= conditions.critical_low:
        findings.append(RuleFinding(
            message=f"Critical low value: {format_number(value)} (<= {format_number(conditions.critical_low)})",
            flag=ResultFlag.CRITICAL_LOW.value,
            is_critical=True,
        ))
    if conditions.critical_high is not None and value >= conditions.critical_high:
        findings.append(RuleFinding(
            message=f"Critical high value: {format_number(value)} (>= {format_number(conditions.critical_high)})",
            flag=ResultFlag.CRITICAL_HIGH.value,
            is_critical=True,
        ))
    return findings


def _check_absurd(rule: AbsurdRule, value: float) -> list[RuleFinding]:
    conditions = rule.conditions
    findings = []
    if conditions.absurd_low is not None and value < conditions.absurd_low:
        findings.append(RuleFinding(
            message=f"Value {format_number(value)} is below absurd low limit {format_number(conditions.absurd_low)}",
            is_error=True,
        ))
    if conditions.absurd_high is not None and value > conditions.absurd_high:
        findings.append(RuleFinding(
            message=f"Value {format_number(value)} is above absurd high limit {format_number(conditions.absurd_high)}",
            is_error=True,
        ))
    return findings


def _check_pattern(rule: PatternRule, original) -> list[RuleFinding]:
    if not isinstance(original, str):
        return []
    if re.search(rule.conditions.pattern, original):
        return []
    return [RuleFinding(
        message=f"Value does not match required pattern: {rule.conditions.pattern}",
        is_error=rule.action == RuleAction.BLOCK,
    )]


def _check_delta(rule: DeltaRule, value: float, previous_value: Optional[float]) -> list[RuleFinding]:
    if previous_value is None:
        return []
    outcome = compute_delta(value, previous_value, rule)
    if outcome is None or not outcome.violated:
        return []
    return [RuleFinding(message=outcome.message, is_error=outcome.is_error, requires_review=True)]


def _apply_rule(
    state: EvaluationState,
    rule: RuleBase,
    value: NormalizedValue,
    previous_value: Optional[float]
) -> EvaluationState:
    if rule.requires_numeric and not value.is_numeric:
        return state
    state = state.with_applied(rule.id)

    if isinstance(rule, RangeRule):
        findings = _check_range(rule, value.numeric)
    elif isinstance(rule, CriticalRule):
        findings = _check_critical(rule, value.numeric)
    elif isinstance(rule, AbsurdRule):
        findings = _check_absurd(rule, value.numeric)
    elif isinstance(rule, DeltaRule):
        findings = _check_delta(rule, value.numeric, previous_value)
    elif isinstance(rule, PatternRule):
        findings = _check_pattern(rule, value.original)
    else:
        # consistency / calculated
        findings = []

    if not findings:
        return state

    for finding in findings:
        state = state.with_finding(finding)
    if rule.requires_review:
        state = replace(state, requires_review=True)
    if rule.action == RuleAction.FLAG and rule.flag:
        state = state.with_flag(rule.flag)
    return state


def _apply_reference_range(
    state: EvaluationState,
    value: NormalizedValue,
    reference_range: Optional[tuple[float, float]]
) -> EvaluationState:
    if reference_range is None or not value.is_numeric:
        return state
    if state.is_critical or state.flags:
        return state
    low, high = reference_range
    if value.numeric < low:
        return state.with_flag(ResultFlag.LOW.value)
    if value.numeric > high:
        return state.with_flag(ResultFlag.HIGH.value)
    return state


def evaluate_rules(
    value: Union[int, float, str, None, NormalizedValue],
    rules: Iterable[RuleBase],
    previous_value: Optional[float] = None,
    reference_range: Optional[tuple[float, float]] = None,
    result_type: Optional[Union[ResultType, str]] = None
) -> EvaluationState:
    """Evaluate ``value`` against ``rules``.

    Parameters:
        value: Raw or already-normalized value
        rules: Rule set for the test (any order; disabled rules are ignored)
        previous_value: Previous final value for delta rules (None = inert)
        reference_range: Optional ``(low, high)`` fallback applied when no
            rule produced a flag and nothing critical fired
        result_type: Optional numeric/text hint for raw values

    Returns:
        EvaluationState: Final accumulator; call ``to_verdict()`` for the
        immutable verdict
    """
    normalized = value if isinstance(value, NormalizedValue) else normalize_value(value, result_type)

    state = EvaluationState()
    for rule in order_rules(rules):
        if not rule.has_conditions():
            logger.warning(f"Skipping malformed {rule.rule_type} rule {rule.id}: no conditions set")
            state = state.with_skipped(rule.id)
            continue
        state = _apply_rule(state, rule, normalized, previous_value)

    return _apply_reference_range(state, normalized, reference_range)


def evaluate(
    value: Union[int, float, str, None],
    rules: Iterable[RuleBase],
    previous_value: Optional[float] = None,
    reference_range: Optional[tuple[float, float]] = None,
    result_type: Optional[Union[ResultType, str]] = None
) -> ValidationVerdict:
    """Convenience wrapper returning the immutable verdict."""
    return evaluate_rules(value, rules, previous_value, reference_range, result_type).to_verdict()

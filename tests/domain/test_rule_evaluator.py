"""Unit tests for the rule evaluator.

Tests cover:
- Range, critical, absurd, pattern and delta semantics
- Boundary inclusivity
- Priority ordering and primary flag
- Disabled, malformed and non-numeric handling
- Determinism of the produced verdict
"""

import pytest

from src.domain.enums import ResultFlag
from src.domain.rules import parse_rule
from src.domain.services.rule_evaluator import EvaluationState, evaluate, evaluate_rules, order_rules


def make_rule(rule_type, conditions=None, **fields):
    document = {
        "id": fields.pop("id", f"r-{rule_type}"),
        "testCode": fields.pop("testCode", "GLU"),
        "ruleType": rule_type,
        "conditions": conditions or {},
    }
    document.update(fields)
    return parse_rule(document).value


class TestCriticalRules:
    """Critical thresholds are inclusive."""

    def test_value_at_critical_high_is_critical(self):
        verdict = evaluate(500, [make_rule("critical", {"criticalHigh": 500})])
        assert verdict.is_critical is True
        assert verdict.requires_review is True
        assert verdict.is_valid is True
        assert verdict.flags == (ResultFlag.CRITICAL_HIGH.value,)
        assert verdict.warnings == ("Critical high value: 500 (>= 500)",)

    def test_value_just_below_critical_high_is_not_critical(self):
        verdict = evaluate(499.999, [make_rule("critical", {"criticalHigh": 500})])
        assert verdict.is_critical is False
        assert verdict.flags == ()

    def test_value_just_above_critical_low_is_not_critical(self):
        verdict = evaluate(40 + 1e-9, [make_rule("critical", {"criticalLow": 40})])
        assert verdict.is_critical is False
        assert verdict.flags == ()

    def test_value_at_critical_low_is_critical(self):
        verdict = evaluate(40, [make_rule("critical", {"criticalLow": 40})])
        assert verdict.is_critical is True
        assert verdict.primary_flag == ResultFlag.CRITICAL_LOW.value
        assert verdict.warnings == ("Critical low value: 40 (<= 40)",)

    def test_critical_block_action_still_a_warning(self):
        """Critical values are never rejected, they go to review."""
        verdict = evaluate(600, [make_rule("critical", {"criticalHigh": 500}, action="block")])
        assert verdict.is_valid is True
        assert verdict.errors == ()


class TestRangeRules:
    """Range bounds are exclusive."""

    def test_below_range_flags_low(self):
        verdict = evaluate(65, [make_rule("range", {"minValue": 70, "maxValue": 100})])
        assert verdict.flags == (ResultFlag.LOW.value,)
        assert verdict.warnings == ("Value 65 is below reference low 70",)
        assert verdict.requires_review is False
        assert verdict.is_valid is True

    def test_above_range_flags_high(self):
        verdict = evaluate(101, [make_rule("range", {"minValue": 70, "maxValue": 100})])
        assert verdict.flags == (ResultFlag.HIGH.value,)
        assert verdict.warnings == ("Value 101 is above reference high 100",)

    @pytest.mark.parametrize("value", [70, 100, 85.5])
    def test_bounds_are_exclusive(self, value):
        verdict = evaluate(value, [make_rule("range", {"minValue": 70, "maxValue": 100})])
        assert verdict.flags == ()
        assert verdict.warnings == ()

    def test_requires_review_on_rule(self):
        rule = make_rule("range", {"minValue": 70, "maxValue": 100}, requiresReview=True)
        assert evaluate(65, [rule]).requires_review is True
        assert evaluate(80, [rule]).requires_review is False

    def test_block_action_makes_error(self):
        verdict = evaluate(65, [make_rule("range", {"minValue": 70}, action="block")])
        assert verdict.is_valid is False
        assert verdict.errors == ("Value 65 is below reference low 70",)

    def test_flag_action_appends_custom_flag(self):
        rule = make_rule("range", {"maxValue": 100}, action="flag", flag="H*")
        assert evaluate(120, [rule]).flags == (ResultFlag.HIGH.value, "H*")
        assert evaluate(90, [rule]).flags == ()


class TestAbsurdRules:
    """Absurd limits always produce errors."""

    def test_below_absurd_low(self):
        verdict = evaluate(-5, [make_rule("absurd", {"absurdLow": 0})])
        assert verdict.is_valid is False
        assert verdict.errors == ("Value -5 is below absurd low limit 0",)

    def test_above_absurd_high(self):
        verdict = evaluate(2000, [make_rule("absurd", {"absurdHigh": 1500})])
        assert verdict.errors == ("Value 2000 is above absurd high limit 1500",)

    @pytest.mark.parametrize("action", ["warn", "notify", "flag", "block"])
    def test_error_regardless_of_action(self, action):
        verdict = evaluate(-1, [make_rule("absurd", {"absurdLow": 0}, action=action)])
        assert verdict.is_valid is False

    def test_boundary_is_not_absurd(self):
        assert evaluate(0, [make_rule("absurd", {"absurdLow": 0})]).is_valid is True


class TestPatternRules:
    """Pattern rules use search semantics on text values."""

    def test_matching_text(self):
        rule = make_rule("pattern", {"pattern": "^(positive|negative)$"})
        assert evaluate("positive", [rule]).warnings == ()

    def test_non_matching_text_warns(self):
        rule = make_rule("pattern", {"pattern": "^(positive|negative)$"})
        verdict = evaluate("pos", [rule])
        assert verdict.warnings == ("Value does not match required pattern: ^(positive|negative)$",)
        assert verdict.is_valid is True

    def test_block_pattern_rejects(self):
        rule = make_rule("pattern", {"pattern": "^[0-9]+$"}, action="block")
        assert evaluate("abc", [rule]).is_valid is False

    def test_search_not_full_match(self):
        rule = make_rule("pattern", {"pattern": "pos"})
        assert evaluate("weakly positive", [rule]).warnings == ()

    def test_numeric_original_not_checked(self):
        rule = make_rule("pattern", {"pattern": "^x$"}, action="block")
        assert evaluate(12, [rule]).is_valid is True


class TestDeltaRules:
    """Delta rules compare with a caller-supplied previous value."""

    def test_percentage_delta_violation(self):
        rule = make_rule("delta", {"deltaType": "percentage", "deltaThreshold": 50}, testCode="CREAT")
        verdict = evaluate(3.5, [rule], previous_value=1.2)
        assert verdict.requires_review is True
        assert verdict.warnings == (
            "Significant delta from previous result: 191.7% change (previous: 1.2, current: 3.5)",
        )

    def test_delta_block_action_rejects(self):
        rule = make_rule("delta", {"deltaType": "percentage", "deltaThreshold": 50}, action="block")
        verdict = evaluate(3.5, [rule], previous_value=1.2)
        assert verdict.is_valid is False
        assert "1.2" in verdict.errors[0] and "3.5" in verdict.errors[0]

    def test_no_previous_value_is_inert(self):
        rule = make_rule("delta", {"deltaThreshold": 1})
        verdict = evaluate(100, [rule])
        assert verdict.warnings == ()
        assert verdict.applied_rule_ids == (rule.id,)

    def test_within_threshold(self):
        rule = make_rule("delta", {"deltaThreshold": 10})
        assert evaluate(105, [rule], previous_value=100).warnings == ()


class TestOrderingAndFlags:
    """Rules run in priority order and the first flag is primary."""

    def test_critical_before_range_sets_primary_flag(self):
        rules = [
            make_rule("range", {"minValue": 70, "maxValue": 100}, id="r-range", priority=2),
            make_rule("critical", {"criticalHigh": 500}, id="r-crit", priority=1),
        ]
        verdict = evaluate(550, rules)
        assert verdict.flags == (ResultFlag.CRITICAL_HIGH.value, ResultFlag.HIGH.value)
        assert verdict.primary_flag == ResultFlag.CRITICAL_HIGH.value
        assert verdict.applied_rule_ids == ("r-crit", "r-range")

    def test_stable_sort_on_equal_priority(self):
        rules = [
            make_rule("range", {"maxValue": 100}, id="first", priority=1),
            make_rule("critical", {"criticalHigh": 500}, id="second", priority=1),
        ]
        assert [rule.id for rule in order_rules(rules)] == ["first", "second"]
        assert evaluate(600, rules).primary_flag == ResultFlag.HIGH.value

    def test_flags_are_deduplicated(self):
        rules = [
            make_rule("range", {"maxValue": 100}, id="a", priority=1),
            make_rule("range", {"maxValue": 110}, id="b", priority=2),
        ]
        assert evaluate(120, rules).flags == (ResultFlag.HIGH.value,)

    def test_disabled_rules_ignored(self):
        rule = make_rule("absurd", {"absurdLow": 0}, enabled=False)
        verdict = evaluate(-5, [rule])
        assert verdict.is_valid is True
        assert verdict.applied_rule_ids == ()


class TestEdgeCases:
    """Degenerate inputs never raise."""

    def test_zero_rules(self):
        verdict = evaluate(123, [])
        assert verdict.is_valid is True
        assert verdict.flags == ()
        assert verdict.primary_flag == ResultFlag.NORMAL.value

    def test_malformed_rule_skipped(self):
        malformed = make_rule("range", {}, id="empty")
        good = make_rule("absurd", {"absurdLow": 0}, id="abs")
        verdict = evaluate(-1, [malformed, good])
        assert verdict.skipped_rule_ids == ("empty",)
        assert verdict.applied_rule_ids == ("abs",)
        assert verdict.is_valid is False

    def test_numeric_rules_skip_text_values(self):
        rules = [
            make_rule("critical", {"criticalHigh": 500}),
            make_rule("absurd", {"absurdLow": 0}),
        ]
        verdict = evaluate("hemolyzed", rules)
        assert verdict.is_valid is True
        assert verdict.flags == ()
        assert verdict.applied_rule_ids == ()

    def test_text_value_lists_only_rules_that_ran(self):
        rules = [
            make_rule("critical", {"criticalHigh": 500}, id="crit", priority=1),
            make_rule("pattern", {"pattern": "^(pos|neg)"}, id="pat", priority=2),
        ]
        assert evaluate("positive", rules).applied_rule_ids == ("pat",)

    def test_text_hint_skips_numeric_rules(self):
        rule = make_rule("absurd", {"absurdLow": 0})
        assert evaluate("-5", [rule], result_type="text").is_valid is True

    def test_reference_range_fallback(self):
        assert evaluate(65, [make_rule("pattern", {"pattern": "."})], reference_range=(70, 100)).flags == ("low",)

    def test_reference_range_not_applied_when_flagged(self):
        rules = [make_rule("range", {"maxValue": 50})]
        assert evaluate(60, rules, reference_range=(70, 100)).flags == ("high",)

    def test_evaluation_state_is_immutable(self):
        state = EvaluationState()
        updated = state.with_flag("low")
        assert state.flags == ()
        assert updated.flags == ("low",)

    def test_verdict_is_deterministic(self):
        rules = [
            make_rule("critical", {"criticalHigh": 500}, priority=1),
            make_rule("range", {"minValue": 70, "maxValue": 100}, priority=2),
            make_rule("delta", {"deltaThreshold": 5}, priority=3),
        ]
        first = evaluate(520, rules, previous_value=100).model_dump_json()
        second = evaluate(520, rules, previous_value=100).model_dump_json()
        assert first == second

    def test_evaluate_rules_returns_state(self):
        state = evaluate_rules("80", [make_rule("range", {"minValue": 70})])
        assert isinstance(state, EvaluationState)
        assert state.to_verdict().is_valid is True

"""Unit tests for validation rule parsing.

Tests cover:
- Tagged-union dispatch on ruleType
- camelCase and snake_case documents
- Legacy ``actions`` and ``deltaPercentage`` documents
- Malformed documents reported through Result
"""

import pytest

from src.domain.enums import DeltaType, RuleAction
from src.domain.rules import (
    AbsurdRule,
    CalculatedRule,
    ConsistencyRule,
    CriticalRule,
    DeltaRule,
    PatternRule,
    RangeRule,
    parse_rule,
    parse_rule_set,
)


class TestParseRule:
    """Test parsing of individual rule documents."""

    def test_parse_critical_rule(self):
        result = parse_rule({
            "id": "r-crit",
            "testCode": "GLU",
            "ruleType": "critical",
            "priority": 1,
            "conditions": {"criticalLow": 40, "criticalHigh": 500},
            "action": "notify",
        })
        assert result.is_success()
        rule = result.value
        assert isinstance(rule, CriticalRule)
        assert rule.conditions.critical_low == 40
        assert rule.conditions.critical_high == 500
        assert rule.action == RuleAction.NOTIFY
        assert rule.enabled is True

    @pytest.mark.parametrize("rule_type,cls", [
        ("range", RangeRule),
        ("absurd", AbsurdRule),
        ("delta", DeltaRule),
        ("pattern", PatternRule),
        ("consistency", ConsistencyRule),
        ("calculated", CalculatedRule),
    ])
    def test_dispatch_on_rule_type(self, rule_type, cls):
        result = parse_rule({"id": "r1", "testCode": "X", "ruleType": rule_type})
        assert result.is_success()
        assert isinstance(result.value, cls)

    def test_snake_case_document(self):
        result = parse_rule({
            "id": "r-range",
            "test_code": "GLU",
            "rule_type": "range",
            "conditions": {"min_value": 70, "max_value": 100},
            "requires_review": True,
        })
        assert result.is_success()
        assert result.value.conditions.min_value == 70
        assert result.value.requires_review is True

    def test_unknown_rule_type_is_failure(self):
        result = parse_rule({"id": "r-x", "testCode": "GLU", "ruleType": "mystery"})
        assert result.is_failure()
        assert result.error_type == "RuleDefinitionError"
        assert result.error_details["rule_id"] == "r-x"

    def test_missing_rule_type_is_failure(self):
        result = parse_rule({"id": "r-x", "testCode": "GLU"})
        assert result.is_failure()

    def test_invalid_pattern_is_failure(self):
        result = parse_rule({
            "id": "r-pat",
            "testCode": "UA",
            "ruleType": "pattern",
            "conditions": {"pattern": "([unclosed"},
        })
        assert result.is_failure()
        assert any("regular expression" in msg for msg in result.error_details["errors"])

    def test_non_numeric_bound_is_failure(self):
        result = parse_rule({
            "id": "r-range",
            "testCode": "GLU",
            "ruleType": "range",
            "conditions": {"minValue": "low"},
        })
        assert result.is_failure()

    def test_is_active_alias(self):
        result = parse_rule({"id": "r1", "testCode": "X", "ruleType": "range", "isActive": False})
        assert result.value.enabled is False

    def test_legacy_actions_fold(self):
        """Older documents describe behaviour in an ``actions`` object."""
        result = parse_rule({
            "id": "r-abs",
            "testCode": "K",
            "ruleType": "absurd",
            "conditions": {"absurdHigh": 15},
            "actions": {"autoReject": True, "requiresReview": True},
        })
        rule = result.value
        assert rule.action == RuleAction.BLOCK
        assert rule.requires_review is True

    def test_legacy_actions_flag(self):
        result = parse_rule({
            "id": "r-flag",
            "testCode": "K",
            "ruleType": "range",
            "conditions": {"maxValue": 5},
            "actions": {"flag": "H*"},
        })
        assert result.value.action == RuleAction.FLAG
        assert result.value.flag == "H*"

    def test_legacy_delta_percentage(self):
        result = parse_rule({
            "id": "r-delta",
            "testCode": "CREAT",
            "ruleType": "delta",
            "conditions": {"deltaPercentage": 50},
        })
        rule = result.value
        assert rule.conditions.delta_threshold == 50
        assert rule.conditions.delta_type == DeltaType.PERCENTAGE

    def test_has_conditions(self):
        empty = parse_rule({"id": "r1", "testCode": "X", "ruleType": "range", "conditions": {}}).value
        half = parse_rule({"id": "r2", "testCode": "X", "ruleType": "range", "conditions": {"minValue": 1}}).value
        assert empty.has_conditions() is False
        assert half.has_conditions() is True

    def test_rules_are_frozen(self):
        rule = parse_rule({"id": "r1", "testCode": "X", "ruleType": "range"}).value
        with pytest.raises(Exception):
            rule.priority = 5

    def test_to_document_round_trip(self):
        document = {
            "id": "r-crit",
            "testCode": "GLU",
            "ruleType": "critical",
            "conditions": {"criticalHigh": 500},
        }
        rule = parse_rule(document).value
        dumped = rule.to_document()
        assert dumped["ruleType"] == "critical"
        assert dumped["testCode"] == "GLU"
        assert parse_rule(dumped).value == rule


class TestParseRuleSet:
    """Test parsing of rule sets."""

    def test_malformed_rule_does_not_block_others(self):
        rules = parse_rule_set([
            {"id": "ok-1", "testCode": "GLU", "ruleType": "range", "conditions": {"minValue": 70}},
            {"id": "bad", "testCode": "GLU", "ruleType": "nope"},
            {"id": "ok-2", "testCode": "GLU", "ruleType": "critical", "conditions": {"criticalHigh": 500}},
        ])
        assert [rule.id for rule in rules] == ["ok-1", "ok-2"]

"""Domain layer for Lab-Verdict.

This module contains the validation rule and test result models and the
business logic that evaluates one against the other.
All domain models are pure Python with no external dependencies beyond Pydantic.
"""

from .results import (
    TestResult,
    ValidationVerdict,
    ValidationOutcome,
    CriticalResultNotification,
    AuditLogEntry,
)
from .rules import ValidationRule, parse_rule, parse_rule_set

__all__ = [
    "TestResult",
    "ValidationVerdict",
    "ValidationOutcome",
    "CriticalResultNotification",
    "AuditLogEntry",
    "ValidationRule",
    "parse_rule",
    "parse_rule_set",
]

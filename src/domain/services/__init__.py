"""Domain Services.

This package contains domain services that implement the validation engine
without infrastructure dependencies.
"""

from src.domain.services.critical_notifier import CriticalNotificationTrigger
from src.domain.services.delta_checker import DeltaChecker, DeltaOutcome, compute_delta
from src.domain.services.result_validation import ResultValidationService
from src.domain.services.rule_evaluator import EvaluationState, evaluate, evaluate_rules
from src.domain.services.value_normalizer import NormalizedValue, normalize_value
from src.domain.services.verdict_assembler import assemble_outcome
from src.domain.services.westgard import evaluate_westgard, qc_run_status

__all__ = [
    'CriticalNotificationTrigger',
    'DeltaChecker',
    'DeltaOutcome',
    'compute_delta',
    'ResultValidationService',
    'EvaluationState',
    'evaluate',
    'evaluate_rules',
    'NormalizedValue',
    'normalize_value',
    'assemble_outcome',
    'evaluate_westgard',
    'qc_run_status',
]

"""Westgard Multi-Rule QC Evaluation.

Evaluates a quality-control measurement against its target mean and SD,
together with the preceding control values for the same analyte, using the
Westgard multi-rule scheme:

    12s  1 control exceeds 2SD                         (warning)
    13s  1 control exceeds 3SD                         (rejection)
    22s  2 consecutive controls exceed 2SD, same side  (rejection)
    R4s  range of 2 consecutive controls exceeds 4SD   (rejection)
    41s  4 consecutive controls exceed 1SD, same side  (rejection)
    10x  10 consecutive controls on same side of mean  (rejection)

Multi-point rules look at the tail of ``previous_values + [value]``.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Sequence

import pandas as pd

from src.domain.enums import QCRunStatus, QCSeverity, WestgardRule

DEFAULT_WESTGARD_RULES: tuple[WestgardRule, ...] = (
    WestgardRule.R_13S,
    WestgardRule.R_22S,
    WestgardRule.R_R4S,
    WestgardRule.R_41S,
    WestgardRule.R_10X,
)

# Values kept from history for multi-point rules
QC_HISTORY_WINDOW = 20

OUTLIER_Z_SCORE = 4


@dataclass(frozen=True)
class WestgardViolation:
    rule: WestgardRule
    description: str
    severity: QCSeverity
    data_points: tuple[float, ...]


@dataclass(frozen=True)
class QCStatistics:
    """Summary statistics of a control series (sample SD, n - 1)."""

    count: int
    mean: float
    sd: float
    cv: float
    min: float
    max: float
    median: float


def _same_side(z_scores: Sequence[float], limit: float) -> bool:
    return all(z > limit for z in z_scores) or all(z < -limit for z in z_scores)


def evaluate_westgard(
    value: float,
    mean: float,
    sd: float,
    previous_values: Iterable[float] = (),
    rules: Iterable[WestgardRule] = DEFAULT_WESTGARD_RULES
) -> list[WestgardViolation]:
    """Apply Westgard rules to a control measurement.

    Parameters:
        value: Current control value
        mean: Target mean for the control level
        sd: Target standard deviation (must be positive)
        previous_values: Earlier control values, oldest first
        rules: Rules to apply, in reporting order

    Returns:
        list[WestgardViolation]: Violations in the order of ``rules``

    Raises:
        ValueError: If ``sd`` is not positive
    """
    if not sd > 0:
        raise ValueError(f"Standard deviation must be positive, got {sd}")

    all_values = [float(v) for v in previous_values][-QC_HISTORY_WINDOW:] + [float(value)]
    z_scores = [(v - mean) / sd for v in all_values]
    z = z_scores[-1]

    violations = []
    for rule in rules:
        rule = WestgardRule(rule)
        if rule == WestgardRule.R_12S and abs(z) > 2:
            violations.append(WestgardViolation(
                rule, "1 control exceeds 2SD", QCSeverity.WARNING, (float(value),)
            ))
        elif rule == WestgardRule.R_13S and abs(z) > 3:
            violations.append(WestgardViolation(
                rule, "1 control exceeds 3SD", QCSeverity.REJECTION, (float(value),)
            ))
        elif rule == WestgardRule.R_22S and len(z_scores) >= 2 and _same_side(z_scores[-2:], 2):
            violations.append(WestgardViolation(
                rule, "2 consecutive controls exceed 2SD on same side", QCSeverity.REJECTION,
                tuple(all_values[-2:])
            ))
        elif rule == WestgardRule.R_R4S and len(all_values) >= 2 and abs(all_values[-1] - all_values[-2]) > 4 * sd:
            violations.append(WestgardViolation(
                rule, "Range of 2 consecutive controls exceeds 4SD", QCSeverity.REJECTION,
                tuple(all_values[-2:])
            ))
        elif rule == WestgardRule.R_41S and len(z_scores) >= 4 and _same_side(z_scores[-4:], 1):
            violations.append(WestgardViolation(
                rule, "4 consecutive controls exceed 1SD on same side", QCSeverity.REJECTION,
                tuple(all_values[-4:])
            ))
        elif rule == WestgardRule.R_10X and len(z_scores) >= 10 and _same_side(z_scores[-10:], 0):
            violations.append(WestgardViolation(
                rule, "10 consecutive controls on same side of mean", QCSeverity.REJECTION,
                tuple(all_values[-10:])
            ))
    return violations


def qc_run_status(violations: Iterable[WestgardViolation]) -> QCRunStatus:
    """Any rejection rejects the run; any other violation is a warning."""
    violations = list(violations)
    if any(v.severity == QCSeverity.REJECTION for v in violations):
        return QCRunStatus.REJECTED
    if violations:
        return QCRunStatus.WARNING
    return QCRunStatus.ACCEPTED


def z_score(value: float, mean: float, sd: float) -> float:
    if not sd > 0:
        raise ValueError(f"Standard deviation must be positive, got {sd}")
    return (value - mean) / sd


def is_outlier(value: float, mean: float, sd: float) -> bool:
    return abs(z_score(value, mean, sd)) > OUTLIER_Z_SCORE


def calculate_statistics(values: Iterable[float]) -> QCStatistics:
    """Mean, sample SD, CV (%), min, max and median of a control series."""
    series = pd.Series(list(values), dtype="float64")
    if series.empty:
        return QCStatistics(count=0, mean=0.0, sd=0.0, cv=0.0, min=0.0, max=0.0, median=0.0)

    mean = float(series.mean())
    sd = float(series.std(ddof=1)) if len(series) > 1 else 0.0
    if math.isnan(sd):
        sd = 0.0
    cv = (sd / mean) * 100 if mean != 0 else 0.0
    return QCStatistics(
        count=int(series.count()),
        mean=mean,
        sd=sd,
        cv=cv,
        min=float(series.min()),
        max=float(series.max()),
        median=float(series.median()),
    )

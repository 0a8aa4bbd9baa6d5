"""Value Normalizer.

Turns a raw result value (number or free text) into a form the rule
evaluator can compare. Numeric rules use ``numeric``; pattern rules always
use ``original``.
"""

import math
from dataclasses import dataclass
from typing import Optional, Union

from src.domain.enums import ResultType


@dataclass(frozen=True)
class NormalizedValue:
    """Raw value together with its numeric reading.

    Attributes:
        original: Value exactly as submitted
        numeric: Finite float reading, or None
        is_numeric: Whether numeric comparison rules apply
    """

    original: Union[int, float, str, None]
    numeric: Optional[float]
    is_numeric: bool


def normalize_value(
    raw: Union[int, float, str, None],
    result_type: Optional[Union[ResultType, str]] = None
) -> NormalizedValue:
    """Normalize a raw value.

    Parameters:
        raw: Submitted value
        result_type: Optional hint; ``text`` forces a non-numeric reading

    Returns:
        NormalizedValue: Never raises. Booleans, ``nan``/``inf`` and
        unparseable strings are non-numeric.
    """
    if result_type is not None and ResultType(result_type) == ResultType.TEXT:
        return NormalizedValue(original=raw, numeric=None, is_numeric=False)

    numeric: Optional[float] = None
    if isinstance(raw, bool):
        numeric = None
    elif isinstance(raw, (int, float)):
        try:
            numeric = float(raw)
        except OverflowError:
            numeric = None
    elif isinstance(raw, str):
        try:
            numeric = float(raw.strip())
        except ValueError:
            numeric = None

    if numeric is not None and not math.isfinite(numeric):
        numeric = None

    return NormalizedValue(original=raw, numeric=numeric, is_numeric=numeric is not None)

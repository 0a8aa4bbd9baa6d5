"""Domain Utilities - Helpers for formatting and parsing lab values.

Security Impact:
    - No security impact - pure utility functions
"""

import math
import re
from typing import Optional, Union

# "70-100", "3.5 - 5.1", "70–100" (en dash)
_TEXT_RANGE = re.compile(r"(\d+(?:\.\d+)?)\s*[-–]\s*(\d+(?:\.\d+)?)")


def format_number(value: Union[int, float]) -> str:
    """Render a number for a human-readable message.

    Integral floats are rendered without the trailing ``.0`` so messages read
    ``Value -5 is below absurd low limit 0`` rather than ``-5.0`` / ``0.0``.
    """
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    return str(value)


def parse_reference_range(text: Optional[str]) -> Optional[tuple[float, float]]:
    """Parse a free-text reference range into ``(low, high)``.

    Parameters:
        text: Reference range as printed on the report

    Returns:
        Optional[tuple[float, float]]: Bounds, or None when the text does not
        contain a ``low-high`` pair
    """
    if not text:
        return None
    match = _TEXT_RANGE.search(text)
    if match is None:
        return None
    low, high = float(match.group(1)), float(match.group(2))
    if low > high:
        return None
    return low, high

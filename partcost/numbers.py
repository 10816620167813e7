"""
Lenient numeric parsing for user-entered and stored values.

Strings are read like a leading-number parse: '10.6 kg/m' is 10.6 and
'20mm' is 20. A value with no leading number is worth 0 (or the given
default). Nothing in here raises: calculators downstream are total over
their inputs.
"""

import math
import re

LEADING_NUMBER = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


def parse_number(value, default: float = 0.0) -> float:
    """Parse a float from a number or a string like '10.6'. NaN/inf count as unparseable."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        match = LEADING_NUMBER.match(str(value))
        if not match:
            return default
        number = float(match.group(0))
    if not math.isfinite(number):
        return default
    return number


def parse_non_negative(value, default: float = 0.0) -> float:
    """Like parse_number, but negative values clamp to 0."""
    return max(parse_number(value, default), 0.0)


def parse_count(value, default: int = 0) -> int:
    """Parse a non-negative whole count. '10.7' truncates to 10."""
    return max(int(parse_number(value, default)), 0)

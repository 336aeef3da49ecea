"""
Rounding helpers.

Python's round() rounds halves to even; percentages and minute thresholds
shown to learners round halves up.
"""

import math


def round_half_up(value: float) -> int:
    """
    Round to the nearest integer, halves away from zero for positives.

    Examples:
        >>> round_half_up(2.5)
        3
        >>> round_half_up(33.333)
        33
    """
    return math.floor(value + 0.5)

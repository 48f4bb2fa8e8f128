"""
Accuracy Helper Functions

Rounding, clamping and difference utilities used across the scorer,
detector and roll-ups.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Union

Number = Union[int, float]


def round_half_up(value: Number, ndigits: int = 0) -> Union[int, float]:
    """
    Round halves away from zero (84.5 -> 85), unlike the built-in round().

    Returns an int when ``ndigits`` is 0.
    """
    quantum = Decimal(1).scaleb(-ndigits)
    rounded = Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP)
    if ndigits == 0:
        return int(rounded)
    return float(rounded)


def clamp(value: Number, lower: Number = 0, upper: Number = 100) -> Number:
    """Clamp value to [lower, upper]."""
    return max(lower, min(upper, value))


def mean(values: Iterable[Number]) -> Optional[float]:
    """Arithmetic mean, or None for an empty sequence."""
    items = list(values)
    if not items:
        return None
    return sum(items) / len(items)


def absolute_difference(reference: Number, other: Number) -> float:
    """|reference - other|, symmetric in its arguments."""
    return abs(float(reference) - float(other))


def relative_difference(reference: Number, other: Number) -> float:
    """
    Difference relative to the reference value.

    The denominator is max(|reference|, 1), so a zero reference is a valid
    measurement rather than a division error.
    """
    return absolute_difference(reference, other) / max(abs(float(reference)), 1.0)

"""
Numeric Normalization

Every value that leaves the engine passes through ``normalize`` so the wire
format never carries NaN/Infinity and floating noise is suppressed.
"""

from __future__ import annotations
import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Sequence


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Magnitudes below this collapse to exactly zero.
EPSILON: float = 1e-9

#: Decimal places kept on the wire.
ROUND_DIGITS: int = 6

_QUANTUM = Decimal(1).scaleb(-ROUND_DIGITS)

# Above this magnitude a double has no representable digits at the 6th decimal.
_ROUNDING_LIMIT = 1e15


def is_finite(value: Optional[float]) -> bool:
    """True when value is a real, finite number."""
    return value is not None and math.isfinite(value)


def normalize(value: Optional[float]) -> Optional[float]:
    """
    Canonicalize a double into null or a value rounded to 6 decimals.

    NaN and +/-Infinity become None, near-zero collapses to exactly 0.0 and
    ties round away from zero.
    """
    if not is_finite(value):
        return None

    if abs(value) < EPSILON:
        return 0.0

    if abs(value) >= _ROUNDING_LIMIT:
        return float(value)

    rounded = float(Decimal(repr(float(value))).quantize(_QUANTUM, rounding=ROUND_HALF_UP))
    if abs(rounded) < EPSILON:
        return 0.0
    return rounded


def normalize_series(values: Iterable[Optional[float]]) -> List[Optional[float]]:
    return [normalize(v) for v in values]


def value_at(series: Optional[Sequence[float]], index: int) -> Optional[float]:
    """
    Raw (un-rounded) sample at index, or None when the series is absent,
    the index falls outside it, or the sample is not finite.
    """
    if series is None or index < 0 or index >= len(series):
        return None
    value = series[index]
    return float(value) if is_finite(value) else None


def has_finite_samples(series: Optional[Sequence[float]]) -> bool:
    if series is None:
        return False
    return any(is_finite(v) for v in series)

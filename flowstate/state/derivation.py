"""
Series Derivation

Pure, index-aligned functions that fill in the signals a run did not
record. Every function returns a raw float (or None); callers normalize
before a value reaches a response.

Per-bin signals over NodeData:
    attempts     recorded, else served + failures
    failures     recorded, else errors
    retry echo   recorded, else sum(failures[i-k] * kernel[k])

Scalar formulas:
    utilization       served / capacity
    latency (queue)   queueDepth * binMinutes / served
    service time      processingTimeMsSum / servedCount
    throughput ratio  served / arrivals
    retry tax         (attempts - served) / attempts
"""

from __future__ import annotations
import math
from typing import Callable, List, Optional, Sequence

from flowstate.core.models import NodeData
from flowstate.core.numeric import EPSILON, is_finite, normalize, value_at


# ---------------------------------------------------------------------------
# Per-bin NodeData signals
# ---------------------------------------------------------------------------

def failures_at(data: NodeData, index: int) -> Optional[float]:
    recorded = value_at(data.failures, index)
    if recorded is not None:
        return recorded
    return value_at(data.errors, index)


def attempts_at(data: NodeData, index: int, allow_derived: bool = True) -> Optional[float]:
    recorded = value_at(data.attempts, index)
    if recorded is not None or not allow_derived:
        return recorded

    served = value_at(data.served, index)
    failures = failures_at(data, index)
    if served is None or failures is None:
        return None
    return served + failures


def retry_echo_at(data: NodeData, index: int, kernel: Optional[Sequence[float]]) -> Optional[float]:
    recorded = value_at(data.retry_echo, index)
    if recorded is not None:
        return recorded
    if not kernel:
        return None

    total = 0.0
    contributed = False
    for lag, weight in enumerate(kernel):
        source = index - lag
        if source < 0:
            break
        failures = failures_at(data, source)
        if failures is None:
            continue
        total += failures * weight
        contributed = True
    return total if contributed else None


# ---------------------------------------------------------------------------
# Scalar formulas
# ---------------------------------------------------------------------------

def _finite_or_none(value: float) -> Optional[float]:
    return value if math.isfinite(value) else None


def utilization(served: Optional[float], capacity: Optional[float]) -> Optional[float]:
    if not is_finite(served) or not is_finite(capacity) or capacity <= 0:
        return None
    return _finite_or_none(served / capacity)


def queue_latency_minutes(queue_depth: Optional[float], served: Optional[float],
                          bin_minutes: float) -> Optional[float]:
    if not is_finite(queue_depth) or not is_finite(served) or served <= 0:
        return None
    return _finite_or_none(queue_depth * bin_minutes / served)


def service_time_ms(processing_time_ms_sum: Optional[float],
                    served_count: Optional[float]) -> Optional[float]:
    """
    Mean processing time per served item.

    0/0 is 0; a non-positive count with a non-zero sum divides by 1.
    """
    if not is_finite(processing_time_ms_sum) or not is_finite(served_count):
        return None
    if processing_time_ms_sum == 0 and served_count == 0:
        return 0.0
    denominator = served_count if served_count > 0 else 1.0
    return _finite_or_none(processing_time_ms_sum / denominator)


def throughput_ratio(arrivals: Optional[float], served: Optional[float]) -> Optional[float]:
    if not is_finite(arrivals) or not is_finite(served):
        return None
    if abs(arrivals) < EPSILON:
        return None
    return _finite_or_none(served / arrivals)


def retry_tax(attempts: Optional[float], served: Optional[float]) -> Optional[float]:
    if not is_finite(attempts) or not is_finite(served) or attempts <= 0:
        return None
    retries = attempts - served
    if retries <= 0:
        return 0.0
    return _finite_or_none(retries / attempts)


# ---------------------------------------------------------------------------
# Window helpers
# ---------------------------------------------------------------------------

def series_over(fn: Callable[[int], Optional[float]], start: int, count: int) -> List[Optional[float]]:
    """Normalized ``fn(i)`` for ``i`` in ``[start, start + count)``."""
    return [normalize(fn(start + offset)) for offset in range(count)]


def slice_series(series: Optional[Sequence[float]], start: int, count: int) -> List[Optional[float]]:
    return series_over(lambda i: value_at(series, i), start, count)

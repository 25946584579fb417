"""
Retry Kernel Policy

Validates the convolution kernel that turns historical failures into a
retry echo. Absent or invalid kernels fall back to DEFAULT_KERNEL.
"""

from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

#: Weight applied to failures k bins ago: no same-bin retry, then 60/30/10.
DEFAULT_KERNEL: List[float] = [0.0, 0.6, 0.3, 0.1]


@dataclass(frozen=True)
class RetryKernelPolicyResult:
    kernel: List[float]
    messages: List[str] = field(default_factory=list)
    used_default: bool = False


class RetryKernelPolicy:
    """
    Example:
        >>> RetryKernelPolicy.apply([-1, 2]).kernel
        [0.0, 0.6, 0.3, 0.1]
    """

    @staticmethod
    def default_kernel() -> List[float]:
        return list(DEFAULT_KERNEL)

    @staticmethod
    def apply(kernel: Optional[Sequence[float]]) -> RetryKernelPolicyResult:
        if not kernel:
            return RetryKernelPolicyResult(
                kernel=RetryKernelPolicy.default_kernel(),
                messages=[f"Retry kernel not specified; using default kernel {DEFAULT_KERNEL}."],
                used_default=True,
            )

        invalid = []
        for position, weight in enumerate(kernel):
            if not isinstance(weight, (int, float)) or not math.isfinite(weight) or weight < 0:
                invalid.append(position)

        if invalid:
            positions = ", ".join(str(p) for p in invalid)
            return RetryKernelPolicyResult(
                kernel=RetryKernelPolicy.default_kernel(),
                messages=[
                    f"Retry kernel contained negative or non-finite weights at position(s) {positions}; "
                    f"using default kernel {DEFAULT_KERNEL}."
                ],
                used_default=True,
            )

        return RetryKernelPolicyResult(kernel=[float(w) for w in kernel])

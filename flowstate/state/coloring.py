"""
Coloring rules for node snapshots.
"""

from typing import Optional

from flowstate.core.models import NodeKind

GRAY = "gray"
GREEN = "green"
YELLOW = "yellow"
RED = "red"

SERVICE_GREEN_BELOW = 0.7
SERVICE_YELLOW_BELOW = 0.9
QUEUE_YELLOW_FACTOR = 1.5


def pick_service_color(utilization: Optional[float]) -> str:
    if utilization is None:
        return GRAY
    if utilization < SERVICE_GREEN_BELOW:
        return GREEN
    if utilization < SERVICE_YELLOW_BELOW:
        return YELLOW
    return RED


def pick_queue_color(latency_minutes: Optional[float], sla_minutes: Optional[float]) -> str:
    if latency_minutes is None or sla_minutes is None or sla_minutes <= 0:
        return GRAY
    if latency_minutes <= sla_minutes:
        return GREEN
    if latency_minutes <= sla_minutes * QUEUE_YELLOW_FACTOR:
        return YELLOW
    return RED


def pick_color(kind: NodeKind, utilization: Optional[float], latency_minutes: Optional[float],
               sla_minutes: Optional[float]) -> str:
    if kind == NodeKind.QUEUE:
        return pick_queue_color(latency_minutes, sla_minutes)
    if kind == NodeKind.SERVICE:
        return pick_service_color(utilization)
    # const / expr / pmf
    return GRAY

"""
Service-level SLA metrics.
"""
from .service import (
    DEFAULT_WINDOW_BINS,
    SLA_THRESHOLD,
    MetricsResolution,
    MetricsResponse,
    MetricsService,
    ResolvedNodeSeries,
    ServiceMetrics,
    compute_service_metrics,
)

__all__ = [
    "DEFAULT_WINDOW_BINS",
    "SLA_THRESHOLD",
    "MetricsResolution",
    "MetricsResponse",
    "MetricsService",
    "ResolvedNodeSeries",
    "ServiceMetrics",
    "compute_service_metrics",
]

"""
State resolution: derivation, flow latency, run context loading and the
snapshot/window query service.
"""
from .context import (
    ComputedNode,
    GraphQueryMode,
    RunContextLoader,
    StateRunContext,
    WarningCollector,
    resolve_model_path,
)
from .contracts import (
    BinDetail,
    EdgeSeries,
    NodeDerivedMetrics,
    NodeMetrics,
    NodeSeries,
    NodeSnapshot,
    NodeTelemetryInfo,
    NodeTelemetryWarning,
    StateMetadata,
    StateSnapshotResponse,
    StateWarning,
    StateWindowResponse,
    WindowSlice,
)
from .builders import SnapshotBuilder, WindowBuilder
from .flow_latency import FlowLatencyPropagator
from .service import StateQueryService, MAX_WINDOW_BINS

__all__ = [
    "ComputedNode",
    "GraphQueryMode",
    "RunContextLoader",
    "StateRunContext",
    "WarningCollector",
    "resolve_model_path",
    "BinDetail",
    "EdgeSeries",
    "NodeDerivedMetrics",
    "NodeMetrics",
    "NodeSeries",
    "NodeSnapshot",
    "NodeTelemetryInfo",
    "NodeTelemetryWarning",
    "StateMetadata",
    "StateSnapshotResponse",
    "StateWarning",
    "StateWindowResponse",
    "WindowSlice",
    "SnapshotBuilder",
    "WindowBuilder",
    "FlowLatencyPropagator",
    "StateQueryService",
    "MAX_WINDOW_BINS",
]

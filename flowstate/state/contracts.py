"""
State Response Contracts

Dataclasses for snapshot and window responses. ``to_dict`` produces the
camelCase wire shape; timestamps are ISO-8601 UTC with a ``Z`` suffix.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def format_utc(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# =============================================================================
# Metadata and warnings
# =============================================================================

@dataclass
class StateMetadata:
    run_id: str
    template_id: str
    mode: str
    schema: Dict[str, str]
    storage: Dict[str, Optional[str]]
    template_title: Optional[str] = None
    template_version: Optional[str] = None
    provenance_hash: Optional[str] = None
    telemetry_sources_resolved: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "templateId": self.template_id,
            "templateTitle": self.template_title,
            "templateVersion": self.template_version,
            "mode": self.mode,
            "provenanceHash": self.provenance_hash,
            "telemetrySourcesResolved": self.telemetry_sources_resolved,
            "schema": dict(self.schema),
            "storage": dict(self.storage),
        }


@dataclass
class StateWarning:
    code: str
    message: str
    severity: str = "warning"
    node_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "nodeId": self.node_id,
        }


@dataclass
class NodeTelemetryWarning:
    code: str
    message: str
    severity: str = "warning"

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "severity": self.severity}


@dataclass
class NodeTelemetryInfo:
    sources: List[str] = field(default_factory=list)
    warnings: List[NodeTelemetryWarning] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sources": list(self.sources),
            "warnings": [w.to_dict() for w in self.warnings],
        }


# =============================================================================
# Snapshot
# =============================================================================

@dataclass
class BinDetail:
    index: int
    duration_minutes: float
    start_utc: Optional[datetime] = None
    end_utc: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "startUtc": format_utc(self.start_utc),
            "endUtc": format_utc(self.end_utc),
            "durationMinutes": self.duration_minutes,
        }


@dataclass
class NodeMetrics:
    arrivals: Optional[float] = None
    served: Optional[float] = None
    errors: Optional[float] = None
    queue: Optional[float] = None
    capacity: Optional[float] = None
    external_demand: Optional[float] = None
    attempts: Optional[float] = None
    failures: Optional[float] = None
    exhausted_failures: Optional[float] = None
    retry_echo: Optional[float] = None
    retry_budget_remaining: Optional[float] = None
    max_attempts: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "arrivals": self.arrivals,
            "served": self.served,
            "errors": self.errors,
            "queue": self.queue,
            "capacity": self.capacity,
            "externalDemand": self.external_demand,
            "attempts": self.attempts,
            "failures": self.failures,
            "exhaustedFailures": self.exhausted_failures,
            "retryEcho": self.retry_echo,
            "retryBudgetRemaining": self.retry_budget_remaining,
            "maxAttempts": self.max_attempts,
        }


@dataclass
class NodeDerivedMetrics:
    utilization: Optional[float] = None
    latency_minutes: Optional[float] = None
    service_time_ms: Optional[float] = None
    flow_latency_ms: Optional[float] = None
    throughput_ratio: Optional[float] = None
    retry_tax: Optional[float] = None
    color: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "utilization": self.utilization,
            "latencyMinutes": self.latency_minutes,
            "serviceTimeMs": self.service_time_ms,
            "flowLatencyMs": self.flow_latency_ms,
            "throughputRatio": self.throughput_ratio,
            "retryTax": self.retry_tax,
            "color": self.color,
        }


@dataclass
class NodeSnapshot:
    id: str
    kind: str
    metrics: NodeMetrics = field(default_factory=NodeMetrics)
    derived: NodeDerivedMetrics = field(default_factory=NodeDerivedMetrics)
    telemetry: NodeTelemetryInfo = field(default_factory=NodeTelemetryInfo)
    aliases: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "metrics": self.metrics.to_dict(),
            "derived": self.derived.to_dict(),
            "telemetry": self.telemetry.to_dict(),
            "aliases": dict(self.aliases),
        }


@dataclass
class StateSnapshotResponse:
    metadata: StateMetadata
    bin: BinDetail
    nodes: List[NodeSnapshot] = field(default_factory=list)
    warnings: List[StateWarning] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": self.metadata.to_dict(),
            "bin": self.bin.to_dict(),
            "nodes": [n.to_dict() for n in self.nodes],
            "warnings": [w.to_dict() for w in self.warnings],
        }


# =============================================================================
# Window
# =============================================================================

@dataclass
class WindowSlice:
    start_bin: int
    end_bin: int
    bin_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"startBin": self.start_bin, "endBin": self.end_bin, "binCount": self.bin_count}


@dataclass
class NodeSeries:
    id: str
    kind: str
    series: Dict[str, List[Optional[float]]] = field(default_factory=dict)
    telemetry: NodeTelemetryInfo = field(default_factory=NodeTelemetryInfo)
    aliases: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "series": {name: list(values) for name, values in self.series.items()},
            "telemetry": self.telemetry.to_dict(),
            "aliases": dict(self.aliases),
        }


@dataclass
class EdgeSeries:
    id: str
    source: str
    target: str
    edge_type: str
    field: Optional[str]
    multiplier: float
    lag: int
    series: Dict[str, List[Optional[float]]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "from": self.source,
            "to": self.target,
            "edgeType": self.edge_type,
            "field": self.field,
            "multiplier": self.multiplier,
            "lag": self.lag,
            "series": {name: list(values) for name, values in self.series.items()},
        }


@dataclass
class StateWindowResponse:
    metadata: StateMetadata
    window: WindowSlice
    timestamps_utc: List[datetime] = field(default_factory=list)
    nodes: List[NodeSeries] = field(default_factory=list)
    edges: List[EdgeSeries] = field(default_factory=list)
    warnings: List[StateWarning] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": self.metadata.to_dict(),
            "window": self.window.to_dict(),
            "timestampsUtc": [format_utc(t) for t in self.timestamps_utc],
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "warnings": [w.to_dict() for w in self.warnings],
        }

    def get_node(self, node_id: str) -> Optional[NodeSeries]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

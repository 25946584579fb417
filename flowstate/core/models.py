"""
Core Value Objects and Entities

Topology (nodes, edges), the time window and the per-node raw series
(NodeData) that every state query is resolved from.
"""
from __future__ import annotations
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Any, Optional, Tuple

from .exceptions import ModelParseError


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Edge fields that describe retry traffic flowing back to a dependency.
RETRY_DEPENDENCY_FIELDS = frozenset({"attempts", "failures", "exhaustedfailures"})

#: (NodeSemantics/NodeData attribute, wire label) for every semantic signal.
SEMANTIC_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("arrivals", "arrivals"),
    ("served", "served"),
    ("errors", "errors"),
    ("attempts", "attempts"),
    ("failures", "failures"),
    ("exhausted_failures", "exhaustedFailures"),
    ("retry_echo", "retryEcho"),
    ("retry_budget_remaining", "retryBudgetRemaining"),
    ("external_demand", "externalDemand"),
    ("queue_depth", "queue"),
    ("capacity", "capacity"),
    ("processing_time_ms_sum", "processingTimeMsSum"),
    ("served_count", "servedCount"),
)

_BIN_UNIT_MINUTES: Dict[str, int] = {
    "minutes": 1,
    "hours": 60,
    "days": 1440,
    "weeks": 10080,
}


class NodeKind(Enum):
    """Closed set of node kinds."""
    SERVICE = "service"
    QUEUE = "queue"
    CONST = "const"
    EXPR = "expr"
    PMF = "pmf"

    @classmethod
    def parse(cls, value: Optional[str]) -> "NodeKind":
        """Case-insensitive parse; blank defaults to service."""
        if value is None or not str(value).strip():
            return cls.SERVICE
        key = str(value).strip().lower()
        if key in _KIND_ALIASES:
            return _KIND_ALIASES[key]
        raise ModelParseError(f"Unknown node kind: {value}")

    @property
    def is_computed(self) -> bool:
        return self in (NodeKind.CONST, NodeKind.EXPR, NodeKind.PMF)

    @property
    def is_flow(self) -> bool:
        return self in (NodeKind.SERVICE, NodeKind.QUEUE)


_KIND_ALIASES: Dict[str, NodeKind] = {
    "service": NodeKind.SERVICE,
    "queue": NodeKind.QUEUE,
    "dlq": NodeKind.QUEUE,
    "const": NodeKind.CONST,
    "expr": NodeKind.EXPR,
    "expression": NodeKind.EXPR,
    "pmf": NodeKind.PMF,
}


def _positive_or_default(value: Any, default: float = 1.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number) or number <= 0:
        return default
    return number


def split_node_ref(ref: str) -> str:
    """Node-id prefix of an edge endpoint (``node:port`` -> ``node``)."""
    return ref.split(":", 1)[0].strip()


# =============================================================================
# Topology
# =============================================================================

@dataclass
class NodeSemantics:
    """Named references to the series that describe a node."""
    arrivals: Optional[str] = None
    served: Optional[str] = None
    errors: Optional[str] = None
    attempts: Optional[str] = None
    failures: Optional[str] = None
    exhausted_failures: Optional[str] = None
    retry_echo: Optional[str] = None
    retry_budget_remaining: Optional[str] = None
    external_demand: Optional[str] = None
    queue_depth: Optional[str] = None
    capacity: Optional[str] = None
    processing_time_ms_sum: Optional[str] = None
    served_count: Optional[str] = None
    max_attempts: Optional[int] = None
    sla_minutes: Optional[float] = None
    retry_kernel: Optional[List[float]] = None
    aliases: Dict[str, str] = field(default_factory=dict)

    def reference(self, attr: str) -> Optional[str]:
        """Trimmed reference for a semantic attribute, None when blank."""
        value = getattr(self, attr)
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    def references(self) -> List[Tuple[str, str, str]]:
        """(attr, label, reference) for every non-blank series reference."""
        refs = []
        for attr, label in SEMANTIC_FIELDS:
            ref = self.reference(attr)
            if ref:
                refs.append((attr, label, ref))
        return refs

    @property
    def declares_retries(self) -> bool:
        return bool(
            self.reference("attempts")
            or self.reference("failures")
            or self.reference("exhausted_failures")
            or self.reference("retry_echo")
            or self.reference("retry_budget_remaining")
            or self.max_attempts is not None
            or self.retry_kernel is not None
        )


@dataclass
class Node:
    id: str
    kind: NodeKind = NodeKind.SERVICE
    semantics: NodeSemantics = field(default_factory=NodeSemantics)


@dataclass
class Edge:
    """
    Directed dependency between two nodes.

    Endpoints may carry a ``:port`` suffix; only the node-id prefix matters
    for propagation. Weight and multiplier default to 1 when absent,
    non-finite or non-positive; lag is clamped to >= 0.
    """
    source: str
    target: str
    id: Optional[str] = None
    edge_type: Optional[str] = None
    field: Optional[str] = None
    weight: Optional[float] = None
    multiplier: Optional[float] = None
    lag: Optional[int] = None

    def __post_init__(self):
        self.weight = _positive_or_default(self.weight)
        self.multiplier = _positive_or_default(self.multiplier)
        try:
            self.lag = max(0, int(self.lag)) if self.lag is not None else 0
        except (TypeError, ValueError):
            self.lag = 0
        if not self.edge_type or not str(self.edge_type).strip():
            self.edge_type = "dependency"

    @property
    def source_node(self) -> str:
        return split_node_ref(self.source)

    @property
    def target_node(self) -> str:
        return split_node_ref(self.target)

    @property
    def normalized_field(self) -> str:
        return (self.field or "").strip().lower()

    @property
    def is_retry_dependency(self) -> bool:
        return self.normalized_field in RETRY_DEPENDENCY_FIELDS

    @property
    def edge_id(self) -> str:
        return self.id or f"{self.source}->{self.target}"


@dataclass
class Topology:
    nodes: List[Node] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)

    def get_node(self, node_id: str) -> Node:
        for node in self.nodes:
            if node.id == node_id:
                return node
        raise KeyError(f"Topology does not contain node '{node_id}'.")

    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]


# =============================================================================
# Time Window
# =============================================================================

@dataclass
class Window:
    """Fixed grid of time bins."""
    bins: int
    bin_size: int
    bin_unit: str = "minutes"
    start_time: Optional[datetime] = None
    timezone: str = "UTC"

    def __post_init__(self):
        if self.bins <= 0 or self.bins > 10000:
            raise ModelParseError(f"Bins must be between 1 and 10000 (got {self.bins}).")
        if self.bin_size <= 0 or self.bin_size > 1000:
            raise ModelParseError(f"BinSize must be between 1 and 1000 (got {self.bin_size}).")
        self.bin_unit = (self.bin_unit or "minutes").strip().lower()
        if self.bin_unit not in _BIN_UNIT_MINUTES:
            raise ModelParseError(f"Unsupported bin unit '{self.bin_unit}'.")

    @property
    def bin_minutes(self) -> float:
        return float(self.bin_size * _BIN_UNIT_MINUTES[self.bin_unit])

    @property
    def bin_duration(self) -> timedelta:
        return timedelta(minutes=self.bin_minutes)

    def get_bin_start_time(self, bin_index: int) -> Optional[datetime]:
        if self.start_time is None:
            return None
        if bin_index < 0 or bin_index >= self.bins:
            raise IndexError(f"Bin index {bin_index} out of range")
        return self.start_time + self.bin_duration * bin_index


# =============================================================================
# Per-node Series
# =============================================================================

@dataclass
class NodeData:
    """
    Raw per-bin series for one node. Any series may be None when it was
    neither recorded nor derivable.
    """
    node_id: str
    arrivals: Optional[List[float]] = None
    served: Optional[List[float]] = None
    errors: Optional[List[float]] = None
    attempts: Optional[List[float]] = None
    failures: Optional[List[float]] = None
    exhausted_failures: Optional[List[float]] = None
    retry_echo: Optional[List[float]] = None
    retry_budget_remaining: Optional[List[float]] = None
    external_demand: Optional[List[float]] = None
    queue_depth: Optional[List[float]] = None
    capacity: Optional[List[float]] = None
    processing_time_ms_sum: Optional[List[float]] = None
    served_count: Optional[List[float]] = None
    retry_kernel: Optional[List[float]] = None

    @classmethod
    def zero_filled(cls, node: Node, bins: int) -> "NodeData":
        """Zero series for arrivals/served/errors plus every other referenced signal."""
        data = cls(
            node_id=node.id,
            arrivals=[0.0] * bins,
            served=[0.0] * bins,
            errors=[0.0] * bins,
        )
        for attr, _label, _ref in node.semantics.references():
            if getattr(data, attr) is None:
                setattr(data, attr, [0.0] * bins)
        return data

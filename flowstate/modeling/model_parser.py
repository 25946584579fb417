"""
Model Parser

Parses time-travel model documents (YAML) into a ModelDefinition and,
from it, the run Window and Topology used by state queries.
"""

from __future__ import annotations
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import yaml

from flowstate.core.exceptions import ModelParseError
from flowstate.core.models import Edge, Node, NodeKind, NodeSemantics, Topology, Window

logger = logging.getLogger(__name__)

# YAML key -> NodeSemantics attribute for series references.
_SEMANTIC_KEYS = {
    "arrivals": "arrivals",
    "served": "served",
    "errors": "errors",
    "attempts": "attempts",
    "failures": "failures",
    "exhaustedFailures": "exhausted_failures",
    "retryEcho": "retry_echo",
    "retryBudgetRemaining": "retry_budget_remaining",
    "externalDemand": "external_demand",
    "queueDepth": "queue_depth",
    "queue": "queue_depth",
    "capacity": "capacity",
    "processingTimeMsSum": "processing_time_ms_sum",
    "servedCount": "served_count",
}


@dataclass
class GridDefinition:
    bins: int
    bin_size: int
    bin_unit: str = "minutes"
    start_time_utc: Optional[datetime] = None
    timezone: str = "UTC"


@dataclass
class NodeDefinition:
    id: str
    kind: str = "const"
    values: Optional[List[float]] = None
    expr: Optional[str] = None
    pmf: Optional[Dict[float, float]] = None
    source: Optional[str] = None


@dataclass
class ModelDefinition:
    grid: Optional[GridDefinition] = None
    nodes: List[NodeDefinition] = field(default_factory=list)
    topology: Optional[Dict[str, Any]] = None
    mode: Optional[str] = None
    schema_version: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def get_node(self, node_id: str) -> Optional[NodeDefinition]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


@dataclass
class ModelMetadata:
    window: Window
    topology: Optional[Topology] = None


# =============================================================================
# Model document
# =============================================================================

def parse_model(yaml_text: str) -> ModelDefinition:
    """Parse a YAML model document. Raises ModelParseError."""
    try:
        document = yaml.safe_load(yaml_text)
    except yaml.YAMLError as e:
        raise ModelParseError(f"Invalid YAML: {e}")

    if not isinstance(document, dict):
        raise ModelParseError("Model document must be a mapping.")

    grid = _parse_grid(document["grid"]) if document.get("grid") else None

    nodes = []
    for raw in document.get("nodes") or []:
        nodes.append(_parse_node_definition(raw))

    topology = document.get("topology")
    if topology is not None and not isinstance(topology, dict):
        raise ModelParseError("topology must be a mapping with nodes and edges.")

    schema_version = document.get("schemaVersion")
    return ModelDefinition(
        grid=grid,
        nodes=nodes,
        topology=topology,
        mode=document.get("mode"),
        schema_version=int(schema_version) if schema_version is not None else None,
        metadata=document.get("metadata") or {},
    )


def _parse_grid(raw: Any) -> GridDefinition:
    if not isinstance(raw, dict):
        raise ModelParseError("grid must be a mapping.")
    try:
        bins = int(raw["bins"])
        if "binSize" in raw:
            bin_size = int(raw["binSize"])
            bin_unit = str(raw.get("binUnit") or "minutes")
        else:
            bin_size = int(raw["binMinutes"])
            bin_unit = "minutes"
    except (KeyError, TypeError, ValueError) as e:
        raise ModelParseError(f"grid requires bins and binSize/binUnit (or binMinutes): {e}")

    return GridDefinition(
        bins=bins,
        bin_size=bin_size,
        bin_unit=bin_unit,
        start_time_utc=_parse_timestamp(raw.get("startTimeUtc") or raw.get("start")),
        timezone=str(raw.get("timezone") or "UTC"),
    )


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ModelParseError(f"Invalid startTimeUtc '{value}'.")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_node_definition(raw: Any) -> NodeDefinition:
    if not isinstance(raw, dict) or not raw.get("id"):
        raise ModelParseError("Node must have an id")

    kind = str(raw.get("kind") or "const").strip().lower()
    if kind == "expression":
        kind = "expr"

    values = raw.get("values")
    if values is not None:
        values = [_to_float(v, f"Node {raw['id']}: values") for v in values]

    return NodeDefinition(
        id=str(raw["id"]),
        kind=kind,
        values=values,
        expr=raw.get("expr"),
        pmf=_parse_pmf(raw.get("pmf"), raw["id"]),
        source=raw.get("source"),
    )


def _parse_pmf(raw: Any, node_id: str) -> Optional[Dict[float, float]]:
    if raw is None:
        return None

    distribution: Dict[float, float] = {}
    if isinstance(raw, dict) and "values" in raw:
        values = raw.get("values") or []
        probabilities = raw.get("probabilities") or []
        if len(values) != len(probabilities):
            raise ModelParseError(f"Node {node_id}: pmf values and probabilities differ in length")
        pairs = zip(values, probabilities)
    elif isinstance(raw, dict):
        pairs = raw.items()
    else:
        raise ModelParseError(f"Node {node_id}: pmf must be a mapping")

    for value, probability in pairs:
        key = _to_float(value, f"Node {node_id}: invalid PMF value")
        if key in distribution:
            raise ModelParseError(f"Node {node_id}: duplicate PMF value '{key}'")
        distribution[key] = _to_float(probability, f"Node {node_id}: invalid PMF probability")
    return distribution


def _to_float(value: Any, context: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ModelParseError(f"{context} '{value}' must be a number")


# =============================================================================
# Window and topology
# =============================================================================

def parse_metadata(model: ModelDefinition, model_directory: Optional[str] = None) -> ModelMetadata:
    """Build the Window and Topology of a model. Raises ModelParseError."""
    if model.grid is None:
        raise ModelParseError("Model must have a grid definition")

    window = Window(
        bins=model.grid.bins,
        bin_size=model.grid.bin_size,
        bin_unit=model.grid.bin_unit,
        start_time=model.grid.start_time_utc,
        timezone=model.grid.timezone,
    )

    if model.topology is None:
        return ModelMetadata(window=window, topology=None)

    topology = parse_topology(model.topology)
    logger.debug(
        f"Parsed topology with {len(topology.nodes)} nodes and {len(topology.edges)} edges"
        f" (model directory: {model_directory})"
    )
    return ModelMetadata(window=window, topology=topology)


def parse_topology(raw: Dict[str, Any]) -> Topology:
    nodes: List[Node] = []
    seen = set()
    for raw_node in raw.get("nodes") or []:
        if not isinstance(raw_node, dict) or not raw_node.get("id"):
            raise ModelParseError("Topology node must have an id")
        node_id = str(raw_node["id"])
        if node_id in seen:
            raise ModelParseError(f"Duplicate topology node id '{node_id}'")
        seen.add(node_id)
        nodes.append(Node(
            id=node_id,
            kind=NodeKind.parse(raw_node.get("kind")),
            semantics=_parse_semantics(raw_node.get("semantics") or {}, node_id),
        ))

    edges: List[Edge] = []
    for raw_edge in raw.get("edges") or []:
        if not isinstance(raw_edge, dict):
            raise ModelParseError("Topology edge must be a mapping")
        source = raw_edge.get("from") or raw_edge.get("source")
        target = raw_edge.get("to") or raw_edge.get("target")
        if not source or not target:
            raise ModelParseError("Topology edge requires from and to")
        edge = Edge(
            source=str(source),
            target=str(target),
            id=raw_edge.get("id"),
            edge_type=raw_edge.get("type") or raw_edge.get("edgeType"),
            field=raw_edge.get("field"),
            weight=raw_edge.get("weight"),
            multiplier=raw_edge.get("multiplier"),
            lag=raw_edge.get("lag"),
        )
        for endpoint in (edge.source_node, edge.target_node):
            if endpoint not in seen:
                raise ModelParseError(f"Edge '{edge.edge_id}' references unknown node '{endpoint}'")
        edges.append(edge)

    return Topology(nodes=nodes, edges=edges)


def _parse_semantics(raw: Dict[str, Any], node_id: str) -> NodeSemantics:
    if not isinstance(raw, dict):
        raise ModelParseError(f"Node {node_id}: semantics must be a mapping")

    semantics = NodeSemantics()
    for key, attr in _SEMANTIC_KEYS.items():
        value = raw.get(key)
        if value is not None and getattr(semantics, attr) is None:
            setattr(semantics, attr, str(value))

    max_attempts = raw.get("maxAttempts")
    if max_attempts is not None:
        try:
            semantics.max_attempts = int(max_attempts)
        except (TypeError, ValueError):
            raise ModelParseError(f"Node {node_id}: maxAttempts must be an integer")

    sla = raw.get("slaMin", raw.get("slaMinutes"))
    if sla is not None:
        semantics.sla_minutes = _to_float(sla, f"Node {node_id}: slaMinutes")

    kernel = raw.get("retryKernel")
    if kernel is not None:
        if not isinstance(kernel, list):
            raise ModelParseError(f"Node {node_id}: retryKernel must be a list")
        semantics.retry_kernel = [_kernel_weight(v) for v in kernel]

    aliases = raw.get("aliases") or {}
    if not isinstance(aliases, dict):
        raise ModelParseError(f"Node {node_id}: aliases must be a mapping")
    semantics.aliases = {str(k): str(v) for k, v in aliases.items()}

    return semantics


def _kernel_weight(value: Any) -> float:
    # Invalid weights are kept as NaN so the retry kernel policy reports them.
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan

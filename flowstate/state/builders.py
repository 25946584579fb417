"""
Snapshot and Window Builders

Turn a loaded StateRunContext plus its mode-validation result into
response contracts.

    SnapshotBuilder  one bin: raw metrics, derived metrics, color
    WindowBuilder    bin range: node series, computed node series and
                     retry-dependency edge series
"""

from __future__ import annotations
import logging
from typing import Dict, List, Optional, Sequence

from flowstate.core.exceptions import ConflictError, InternalError
from flowstate.core.models import Edge, Node, NodeData, NodeKind, SEMANTIC_FIELDS
from flowstate.core.numeric import normalize, value_at
from flowstate.timetravel.manifest_reader import RunManifestMetadata
from flowstate.timetravel.mode_validator import ModeValidationResult, ModeValidationWarning

from .coloring import pick_color
from .context import StateRunContext
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
from .derivation import (
    attempts_at,
    failures_at,
    queue_latency_minutes,
    retry_echo_at,
    retry_tax,
    series_over,
    service_time_ms,
    slice_series,
    throughput_ratio,
    utilization,
)
from .flow_latency import FlowLatencyPropagator

logger = logging.getLogger(__name__)

# Semantics whose references are reported as telemetry sources.
_TELEMETRY_SOURCE_FIELDS = ("arrivals", "served", "errors", "external_demand", "queue_depth", "capacity")

_SERIES_LABELS = dict(SEMANTIC_FIELDS)


# =============================================================================
# Shared pieces
# =============================================================================

def build_metadata(context: StateRunContext) -> StateMetadata:
    metadata = context.manifest_metadata
    return StateMetadata(
        run_id=context.manifest.run_id,
        template_id=metadata.template_id,
        template_title=metadata.template_title,
        template_version=metadata.template_version,
        mode=metadata.mode,
        provenance_hash=metadata.provenance_hash,
        telemetry_sources_resolved=len(metadata.telemetry_sources) > 0,
        schema={
            "id": metadata.schema.id,
            "version": metadata.schema.version,
            "hash": metadata.schema.hash,
        },
        storage={
            "modelPath": metadata.storage.model_path,
            "metadataPath": metadata.storage.metadata_path,
            "provenancePath": metadata.storage.provenance_path,
        },
    )


def build_warnings(context: StateRunContext,
                   validation_warnings: Sequence[ModeValidationWarning]) -> List[StateWarning]:
    """run.json warnings (info) first, then validation warnings."""
    warnings = [
        StateWarning(code="run_warning", message=message, severity="info")
        for message in context.manifest.warnings
    ]
    for warning in validation_warnings:
        warnings.append(StateWarning(
            code=warning.code,
            message=warning.message,
            severity=warning.severity,
            node_id=warning.node_id,
        ))
    return warnings


def build_telemetry_info(node: Node, metadata: RunManifestMetadata,
                         node_warnings: Sequence[ModeValidationWarning]) -> NodeTelemetryInfo:
    warnings = [NodeTelemetryWarning(w.code, w.message, w.severity) for w in node_warnings]
    if warnings:
        return NodeTelemetryInfo(sources=[], warnings=warnings)

    sources: List[str] = []
    seen = set()

    def add(source: Optional[str]) -> None:
        if source and source.strip() and source.strip().lower() not in seen:
            seen.add(source.strip().lower())
            sources.append(source.strip())

    for attr in _TELEMETRY_SOURCE_FIELDS:
        ref = node.semantics.reference(attr)
        if not ref:
            continue
        if metadata.node_sources.get(ref):
            add(metadata.node_sources[ref])
        elif ref.lower().startswith("file:"):
            add(ref)

    for source in metadata.telemetry_sources:
        add(source)

    return NodeTelemetryInfo(sources=sources, warnings=[])


def _node_data(context: StateRunContext, node: Node) -> NodeData:
    data = context.node_data.get(node.id)
    if data is None:
        available = ", ".join(context.node_data.keys())
        raise InternalError(f"Data for node '{node.id}' was not loaded. Available nodes: {available}")
    return data


def _has_retries(node: Node) -> bool:
    return node.kind == NodeKind.SERVICE and node.semantics.declares_retries


# =============================================================================
# Snapshot
# =============================================================================

class SnapshotBuilder:

    def __init__(self, context: StateRunContext, validation: ModeValidationResult):
        self.context = context
        self.validation = validation

    def build(self, bin_index: int) -> StateSnapshotResponse:
        context = self.context
        window = context.window
        flow = FlowLatencyPropagator(context.topology, context.node_data, window.bin_minutes).compute(bin_index, 1)

        nodes = [
            self._build_node(node, _node_data(context, node), bin_index, flow[node.id][0])
            for node in context.topology.nodes
        ]

        bin_start = window.get_bin_start_time(bin_index)
        return StateSnapshotResponse(
            metadata=build_metadata(context),
            bin=BinDetail(
                index=bin_index,
                start_utc=bin_start,
                end_utc=bin_start + window.bin_duration if bin_start is not None else None,
                duration_minutes=window.bin_minutes,
            ),
            nodes=nodes,
            warnings=build_warnings(context, self.validation.warnings),
        )

    def _build_node(self, node: Node, data: NodeData, index: int,
                    flow_latency: Optional[float]) -> NodeSnapshot:
        arrivals = value_at(data.arrivals, index)
        served = value_at(data.served, index)
        queue = value_at(data.queue_depth, index)
        capacity = value_at(data.capacity, index)

        metrics = NodeMetrics(
            arrivals=normalize(arrivals),
            served=normalize(served),
            errors=normalize(value_at(data.errors, index)),
            queue=normalize(queue),
            capacity=normalize(capacity),
            external_demand=normalize(value_at(data.external_demand, index)),
        )

        tax = None
        if _has_retries(node):
            attempts = attempts_at(data, index, allow_derived=True)
            metrics.attempts = normalize(attempts)
            metrics.failures = normalize(failures_at(data, index))
            metrics.exhausted_failures = normalize(value_at(data.exhausted_failures, index))
            metrics.retry_echo = normalize(retry_echo_at(data, index, data.retry_kernel))
            metrics.retry_budget_remaining = normalize(value_at(data.retry_budget_remaining, index))
            metrics.max_attempts = node.semantics.max_attempts
            tax = retry_tax(attempts, served)

        latency = None
        if node.kind == NodeKind.QUEUE:
            latency = normalize(queue_latency_minutes(queue, served, self.context.window.bin_minutes))

        service_time = None
        if node.kind == NodeKind.SERVICE:
            service_time = normalize(service_time_ms(
                value_at(data.processing_time_ms_sum, index),
                value_at(data.served_count, index),
            ))

        util = normalize(utilization(served, capacity))
        derived = NodeDerivedMetrics(
            utilization=util,
            latency_minutes=latency,
            service_time_ms=service_time,
            flow_latency_ms=normalize(flow_latency),
            throughput_ratio=normalize(throughput_ratio(arrivals, served)),
            retry_tax=normalize(tax),
            color=pick_color(node.kind, util, latency, node.semantics.sla_minutes),
        )

        return NodeSnapshot(
            id=node.id,
            kind=node.kind.value,
            metrics=metrics,
            derived=derived,
            telemetry=build_telemetry_info(
                node, self.context.manifest_metadata, self.validation.warnings_for(node.id)
            ),
            aliases=dict(node.semantics.aliases),
        )


# =============================================================================
# Window
# =============================================================================

class WindowBuilder:

    def __init__(self, context: StateRunContext, validation: ModeValidationResult):
        self.context = context
        self.validation = validation

    def build(self, start_bin: int, end_bin: int) -> StateWindowResponse:
        context = self.context
        count = end_bin - start_bin + 1

        timestamps = []
        for index in range(start_bin, end_bin + 1):
            timestamp = context.window.get_bin_start_time(index)
            if timestamp is None:
                raise ConflictError("Run is missing window.startTimeUtc required for time-travel responses.")
            timestamps.append(timestamp)

        flow = FlowLatencyPropagator(
            context.topology, context.node_data, context.window.bin_minutes
        ).compute(start_bin, count)

        nodes = [
            self._build_node(node, _node_data(context, node), start_bin, count, flow[node.id])
            for node in context.topology.nodes
        ]
        nodes.extend(self._build_computed_nodes(start_bin, count))

        edges = self._build_edges(start_bin, count)

        return StateWindowResponse(
            metadata=build_metadata(context),
            window=WindowSlice(start_bin=start_bin, end_bin=end_bin, bin_count=count),
            timestamps_utc=timestamps,
            nodes=nodes,
            edges=edges,
            warnings=build_warnings(context, self.validation.warnings),
        )

    # ------------------------------------------------------------------
    # Topology nodes
    # ------------------------------------------------------------------

    def _build_node(self, node: Node, data: NodeData, start: int, count: int,
                    flow_latency: List[Optional[float]]) -> NodeSeries:
        series: Dict[str, List[Optional[float]]] = {
            "arrivals": slice_series(data.arrivals, start, count),
            "served": slice_series(data.served, start, count),
            "errors": slice_series(data.errors, start, count),
        }

        if data.external_demand is not None:
            series["externalDemand"] = slice_series(data.external_demand, start, count)

        if data.queue_depth is not None:
            series["queue"] = slice_series(data.queue_depth, start, count)

        if data.capacity is not None:
            series["capacity"] = slice_series(data.capacity, start, count)
            series["utilization"] = series_over(
                lambda i: utilization(value_at(data.served, i), value_at(data.capacity, i)), start, count
            )

        bin_minutes = self.context.window.bin_minutes
        if node.kind == NodeKind.QUEUE and data.queue_depth is not None:
            series["latencyMinutes"] = series_over(
                lambda i: queue_latency_minutes(value_at(data.queue_depth, i), value_at(data.served, i), bin_minutes),
                start, count,
            )

        if node.kind == NodeKind.SERVICE and data.processing_time_ms_sum is not None and data.served_count is not None:
            series["serviceTimeMs"] = series_over(
                lambda i: service_time_ms(value_at(data.processing_time_ms_sum, i), value_at(data.served_count, i)),
                start, count,
            )

        series["flowLatencyMs"] = [normalize(v) for v in flow_latency]

        if data.arrivals is not None:
            series["throughputRatio"] = series_over(
                lambda i: throughput_ratio(value_at(data.arrivals, i), value_at(data.served, i)), start, count
            )

        if _has_retries(node):
            kernel = data.retry_kernel
            series["attempts"] = series_over(lambda i: attempts_at(data, i), start, count)
            series["failures"] = series_over(lambda i: failures_at(data, i), start, count)
            series["retryEcho"] = series_over(lambda i: retry_echo_at(data, i, kernel), start, count)
            series["retryTax"] = series_over(
                lambda i: retry_tax(attempts_at(data, i), value_at(data.served, i)), start, count
            )
            for attr in ("exhausted_failures", "retry_budget_remaining"):
                if getattr(data, attr) is not None:
                    series[_SERIES_LABELS[attr]] = slice_series(getattr(data, attr), start, count)

        return NodeSeries(
            id=node.id,
            kind=node.kind.value,
            series=series,
            telemetry=build_telemetry_info(
                node, self.context.manifest_metadata, self.validation.warnings_for(node.id)
            ),
            aliases=dict(node.semantics.aliases),
        )

    def _build_computed_nodes(self, start: int, count: int) -> List[NodeSeries]:
        metadata = self.context.manifest_metadata
        result = []
        for computed in self.context.computed_nodes:
            source = metadata.node_sources.get(computed.id)
            result.append(NodeSeries(
                id=computed.id,
                kind=computed.kind.value,
                series={"values": slice_series(computed.values, start, count)},
                telemetry=NodeTelemetryInfo(sources=[source] if source else []),
            ))
        return result

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def _build_edges(self, start: int, count: int) -> List[EdgeSeries]:
        result = []
        for edge in self.context.topology.edges:
            if not edge.is_retry_dependency:
                continue
            data = self.context.node_data[edge.source_node]
            result.append(self._build_edge(edge, data, start, count))
        return result

    def _build_edge(self, edge: Edge, data: NodeData, start: int, count: int) -> EdgeSeries:
        bins = self.context.window.bins
        source_retries = _has_retries(self.context.topology.get_node(edge.source_node))

        def shifted(i: int) -> Optional[int]:
            source = i - edge.lag
            return source if 0 <= source < bins else None

        def attempts_load(i: int) -> Optional[float]:
            j = shifted(i)
            value = attempts_at(data, j, allow_derived=source_retries) if j is not None else None
            return value * edge.multiplier if value is not None else None

        def failures_load(i: int) -> Optional[float]:
            j = shifted(i)
            value = failures_at(data, j) if j is not None else None
            return value * edge.multiplier if value is not None else None

        def retry_rate(i: int) -> Optional[float]:
            j = shifted(i)
            if j is None:
                return None
            attempts = attempts_at(data, j, allow_derived=source_retries)
            failures = failures_at(data, j)
            if attempts is None or failures is None or attempts <= 0:
                return None
            return failures / attempts

        series = {
            "attemptsLoad": series_over(attempts_load, start, count),
            "failuresLoad": series_over(failures_load, start, count),
            "retryRate": series_over(retry_rate, start, count),
        }

        if data.exhausted_failures is not None:
            def exhausted_load(i: int) -> Optional[float]:
                j = shifted(i)
                value = value_at(data.exhausted_failures, j) if j is not None else None
                return value * edge.multiplier if value is not None else None

            series["exhaustedFailuresLoad"] = series_over(exhausted_load, start, count)

        return EdgeSeries(
            id=edge.edge_id,
            source=edge.source,
            target=edge.target,
            edge_type=edge.edge_type,
            field=edge.field,
            multiplier=edge.multiplier,
            lag=edge.lag,
            series=series,
        )

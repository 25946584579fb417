"""
Flow-Latency Propagator

Approximate end-to-end latency per node and bin:

    flowLatency[n] = base[n] + flowLatency[dominant predecessor]

base is the service time (service nodes) or queue latency in milliseconds
(queue nodes). The dominant predecessor is the one with the largest
``served * edge.weight`` in that bin; ties keep the first edge.

Nodes are resolved once, in topology order. A predecessor listed after
its successor has no value yet, so it contributes nothing.
"""

from __future__ import annotations
import logging
from typing import Dict, List, Mapping, Optional, Tuple

from flowstate.core.models import NodeData, NodeKind, Topology
from flowstate.core.numeric import value_at
from .derivation import queue_latency_minutes, service_time_ms

logger = logging.getLogger(__name__)

MS_PER_MINUTE = 60000.0


class FlowLatencyPropagator:

    def __init__(self, topology: Topology, node_data: Mapping[str, NodeData], bin_minutes: float):
        self.topology = topology
        self.node_data = node_data
        self.bin_minutes = bin_minutes

        self._index: Dict[str, int] = {node.id: i for i, node in enumerate(topology.nodes)}
        self._predecessors: List[List[Tuple[int, float]]] = [[] for _ in topology.nodes]
        for edge in topology.edges:
            source = self._index.get(edge.source_node)
            target = self._index.get(edge.target_node)
            if source is None or target is None:
                continue
            self._predecessors[target].append((source, edge.weight))

    def compute(self, start: int, count: int) -> Dict[str, List[Optional[float]]]:
        """Raw flow latency (ms) for bins ``[start, start + count)``, keyed by node id."""
        resolved: List[Optional[List[Optional[float]]]] = [None] * len(self.topology.nodes)

        for position, node in enumerate(self.topology.nodes):
            data = self.node_data.get(node.id)
            values: List[Optional[float]] = []
            for offset in range(count):
                index = start + offset
                base = self._base_value(node.kind, data, index)
                upstream = self._upstream_value(position, index, offset, resolved)
                values.append(_combine(base, upstream))
            resolved[position] = values

        return {node.id: resolved[i] for i, node in enumerate(self.topology.nodes)}

    def _base_value(self, kind: NodeKind, data: Optional[NodeData], index: int) -> Optional[float]:
        if data is None:
            return None
        if kind == NodeKind.SERVICE:
            return service_time_ms(
                value_at(data.processing_time_ms_sum, index),
                value_at(data.served_count, index),
            )
        if kind == NodeKind.QUEUE:
            minutes = queue_latency_minutes(
                value_at(data.queue_depth, index),
                value_at(data.served, index),
                self.bin_minutes,
            )
            return minutes * MS_PER_MINUTE if minutes is not None else None
        return None

    def _upstream_value(self, position: int, index: int, offset: int,
                        resolved: List[Optional[List[Optional[float]]]]) -> Optional[float]:
        best: Optional[int] = None
        best_volume = 0.0
        for source, weight in self._predecessors[position]:
            data = self.node_data.get(self.topology.nodes[source].id)
            served = value_at(data.served, index) if data is not None else None
            if served is None:
                continue
            volume = served * weight
            if best is None or volume > best_volume:
                best = source
                best_volume = volume

        if best is None or resolved[best] is None:
            return None
        return resolved[best][offset]


def _combine(base: Optional[float], upstream: Optional[float]) -> Optional[float]:
    if base is not None and upstream is not None:
        return base + upstream
    if base is not None:
        return base
    return upstream

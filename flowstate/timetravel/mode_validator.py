"""
Mode Validator

Checks a loaded run against the expectations of its mode:
    - simulation: every required series present and finite, otherwise an error
    - telemetry:  unresolved sources and invalid samples become node warnings
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from flowstate.core.models import Node, NodeData, NodeKind, NodeSemantics, Topology, Window
from flowstate.core.numeric import is_finite
from flowstate.datasources.uri_resolver import is_file_uri
from .manifest_reader import RunManifestMetadata

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModeValidationWarning:
    code: str
    message: str
    node_id: Optional[str] = None
    severity: str = "warning"


@dataclass
class ModeValidationContext:
    manifest_metadata: RunManifestMetadata
    window: Window
    topology: Topology
    node_data: Mapping[str, NodeData]
    initial_warnings: Sequence[ModeValidationWarning] = field(default_factory=list)
    initial_node_warnings: Mapping[str, Sequence[ModeValidationWarning]] = field(default_factory=dict)

    @property
    def mode(self) -> str:
        return self.manifest_metadata.mode


@dataclass
class ModeValidationResult:
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    warnings: List[ModeValidationWarning] = field(default_factory=list)
    node_warnings: Dict[str, List[ModeValidationWarning]] = field(default_factory=dict)

    @property
    def has_errors(self) -> bool:
        return self.error_code is not None

    def warnings_for(self, node_id: str) -> List[ModeValidationWarning]:
        return self.node_warnings.get(node_id, [])

    @classmethod
    def with_error(cls, error_code: str, error_message: str) -> "ModeValidationResult":
        return cls(error_code=error_code, error_message=error_message)


# (NodeData attribute, label) pairs checked for presence and finiteness.
_VALIDATED_SERIES = (
    ("arrivals", "arrivals"),
    ("served", "served"),
    ("queue_depth", "queue"),
    ("attempts", "attempts"),
    ("failures", "failures"),
    ("retry_echo", "retryEcho"),
)

_SOURCE_LABELS = (
    ("arrivals", "arrivals"),
    ("served", "served"),
    ("errors", "errors"),
    ("attempts", "attempts"),
    ("failures", "failures"),
    ("retry_echo", "retryEcho"),
    ("queue_depth", "queue"),
    ("capacity", "capacity"),
    ("external_demand", "external_demand"),
)


class ModeValidator:

    def validate(self, context: ModeValidationContext) -> ModeValidationResult:
        is_simulation = context.mode == "simulation"
        is_telemetry = context.mode == "telemetry"

        warnings = list(context.initial_warnings)
        node_warnings: Dict[str, List[ModeValidationWarning]] = {
            node_id: list(items) for node_id, items in context.initial_node_warnings.items()
        }

        if is_telemetry and not context.manifest_metadata.telemetry_sources:
            warnings.append(ModeValidationWarning(
                code="telemetry_sources_missing",
                message="Telemetry mode run resolved no telemetry sources.",
            ))

        for node in context.topology.nodes:
            data = context.node_data.get(node.id)
            if data is None:
                return ModeValidationResult.with_error(
                    "missing_node_data",
                    f"Node '{node.id}' is missing data in the run artifacts.",
                )

            missing, invalid = self._inspect_series(node, data, context.window.bins)

            if is_simulation and invalid:
                return ModeValidationResult.with_error(
                    "mode_validation_failed",
                    f"Node '{node.id}' contains invalid values for {', '.join(invalid)} in simulation mode.",
                )

            if is_simulation and missing:
                return ModeValidationResult.with_error(
                    "mode_validation_failed",
                    f"Node '{node.id}' is missing required {', '.join(missing)} series for simulation mode.",
                )

            if is_telemetry:
                unresolved = self._unresolved_sources(node.semantics, context.manifest_metadata)
                if unresolved or invalid:
                    parts = []
                    if unresolved:
                        parts.append(f"sources for {', '.join(unresolved)}")
                    if invalid:
                        parts.append(f"invalid values in {', '.join(invalid)}")
                    node_warnings.setdefault(node.id, []).append(ModeValidationWarning(
                        code="telemetry_sources_unresolved" if unresolved else "telemetry_series_invalid",
                        message=f"Telemetry mode detected {' and '.join(parts)}.",
                        node_id=node.id,
                    ))

        return ModeValidationResult(warnings=warnings, node_warnings=node_warnings)

    @staticmethod
    def _inspect_series(node: Node, data: NodeData, bins: int):
        required = set()
        if node.kind == NodeKind.SERVICE:
            required = {"arrivals", "served"}
        elif node.kind == NodeKind.QUEUE:
            required = {"arrivals", "queue"}

        missing: List[str] = []
        invalid: List[str] = []
        for attr, label in _VALIDATED_SERIES:
            series = getattr(data, attr)
            is_missing = series is None or len(series) != bins
            if label in required and is_missing:
                missing.append(label)
            if not is_missing and not all(is_finite(v) for v in series):
                invalid.append(label)
        return missing, invalid

    @staticmethod
    def _unresolved_sources(semantics: NodeSemantics, metadata: RunManifestMetadata) -> List[str]:
        unresolved = []
        for attr, label in _SOURCE_LABELS:
            ref = semantics.reference(attr)
            if not ref or is_file_uri(ref) or ref in metadata.node_sources:
                continue
            unresolved.append(label)
        return unresolved

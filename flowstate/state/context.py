"""
Run Context Loader

Assembles the per-request StateRunContext: run manifest, model, topology,
manifest metadata and raw per-node series, with every data-quality
warning recorded before derivation runs.

Load sequence (fail fast on structural errors):
    1. run id             blank or path-like        -> 400
    2. run directory      missing                   -> 404
    3. run.json / index   missing -> 404, malformed -> 500
    4. model document     missing                   -> 404
    5. model parse        invalid                   -> 409
    6. window / topology  invalid -> 409, no topology -> 412
    7. manifest metadata  incomplete -> 409, missing -> 404
    8. provenance hash    mismatch                  -> 409 provenance_mismatch
    9. per-node series    gap-fill, retry kernel policy, presence and
                          attempts-conservation checks (telemetry runs
                          zero-fill nodes whose files are missing)
   10. computed nodes     FULL mode only
"""

from __future__ import annotations
import logging
import math
import os
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from flowstate.core.exceptions import (
    ConflictError,
    InternalError,
    InvalidRequestError,
    ManifestMetadataError,
    ModelParseError,
    NotFoundError,
    PreconditionFailedError,
    StateQueryError,
)
from flowstate.core.models import Node, NodeData, NodeKind, Topology, Window
from flowstate.core.numeric import has_finite_samples, value_at
from flowstate.datasources.csv_reader import read_time_series
from flowstate.datasources.semantic_loader import SemanticLoader
from flowstate.datasources.uri_resolver import is_file_uri, resolve_file_path
from flowstate.modeling.evaluator import pad_series
from flowstate.modeling.model_parser import ModelDefinition, parse_metadata, parse_model
from flowstate.timetravel.manifest_reader import RunManifestMetadata, RunManifestReader
from flowstate.timetravel.mode_validator import ModeValidationWarning
from flowstate.timetravel.retry_kernel import RetryKernelPolicy
from flowstate.timetravel.run_reader import RunArtifactReader, RunManifest, SeriesIndex

from .derivation import failures_at

logger = logging.getLogger(__name__)

CONSERVATION_TOLERANCE = 1e-4


class GraphQueryMode(Enum):
    """OPERATIONAL: topology nodes only. FULL: plus computed const/expr/pmf nodes."""
    OPERATIONAL = "operational"
    FULL = "full"

    @classmethod
    def parse(cls, value: Optional[str]) -> "GraphQueryMode":
        if value is None or not str(value).strip():
            return cls.OPERATIONAL
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidRequestError(f"mode must be one of: operational, full (got '{value}').")


# =============================================================================
# Warnings
# =============================================================================

class WarningCollector:
    """Global and node-scoped warnings gathered while a run loads."""

    def __init__(self):
        self._global: List[ModeValidationWarning] = []
        self._nodes: Dict[str, List[ModeValidationWarning]] = {}

    def add_global(self, code: str, message: str, node_id: Optional[str] = None,
                   severity: str = "warning") -> None:
        self._global.append(ModeValidationWarning(code, message, node_id, severity))

    def add_global_once(self, code: str, message: str) -> None:
        if not self.has_global(code):
            self.add_global(code, message)

    def add_node(self, node_id: str, code: str, message: str, severity: str = "warning") -> None:
        self._nodes.setdefault(node_id, []).append(
            ModeValidationWarning(code, message, node_id, severity)
        )

    def has_global(self, code: str) -> bool:
        return any(w.code == code for w in self._global)

    def node_warnings(self, node_id: str) -> List[ModeValidationWarning]:
        return list(self._nodes.get(node_id, []))

    def freeze(self) -> Tuple[Tuple[ModeValidationWarning, ...], Mapping[str, Tuple[ModeValidationWarning, ...]]]:
        nodes = {node_id: tuple(items) for node_id, items in self._nodes.items()}
        return tuple(self._global), MappingProxyType(nodes)


# =============================================================================
# Context
# =============================================================================

@dataclass(frozen=True)
class ComputedNode:
    """Resolved value series of a const/expr/pmf model node."""
    id: str
    kind: NodeKind
    values: List[float]


@dataclass(frozen=True)
class StateRunContext:
    run_id: str
    manifest: RunManifest
    manifest_metadata: RunManifestMetadata
    window: Window
    topology: Topology
    node_data: Mapping[str, NodeData]
    model: ModelDefinition
    series_index: Optional[SeriesIndex] = None
    initial_warnings: Tuple[ModeValidationWarning, ...] = ()
    initial_node_warnings: Mapping[str, Tuple[ModeValidationWarning, ...]] = field(default_factory=dict)
    computed_nodes: Tuple[ComputedNode, ...] = ()
    query_mode: GraphQueryMode = GraphQueryMode.OPERATIONAL

    @property
    def bin_minutes(self) -> float:
        return self.window.bin_minutes

    @property
    def mode(self) -> str:
        return self.manifest_metadata.mode


def resolve_model_path(run_directory: str) -> str:
    """``model/model.yaml``, falling back to ``spec.yaml`` at the run root."""
    explicit = os.path.join(run_directory, "model", "model.yaml")
    if os.path.isfile(explicit):
        return explicit
    spec = os.path.join(run_directory, "spec.yaml")
    if os.path.isfile(spec):
        return spec
    raise FileNotFoundError("Run is missing model/model.yaml or spec.yaml")


# =============================================================================
# Loader
# =============================================================================

class RunContextLoader:

    def __init__(self, data_dir: str, manifest_reader: Optional[RunManifestReader] = None):
        self.data_dir = data_dir
        self.manifest_reader = manifest_reader or RunManifestReader()

    def load(self, run_id: str, query_mode: GraphQueryMode = GraphQueryMode.OPERATIONAL) -> StateRunContext:
        """
        Raises:
            StateQueryError: with the status of the first structural failure.
        """
        if run_id is None or not run_id.strip():
            raise InvalidRequestError("runId must be provided.")
        if "/" in run_id or "\\" in run_id or ".." in run_id:
            raise InvalidRequestError(f"runId '{run_id}' is not a valid run identifier.")

        run_directory = os.path.join(self.data_dir, run_id)
        if not os.path.isdir(run_directory):
            raise NotFoundError(f"Run '{run_id}' not found.")

        try:
            return self._load(run_id, run_directory, query_mode)
        except StateQueryError:
            raise
        except FileNotFoundError as e:
            logger.error(f"Missing artifact for run {run_id}: {e}")
            raise NotFoundError(f"Required artifact missing for run '{run_id}': {e}")
        except Exception as e:
            logger.exception(f"Unexpected error loading run {run_id}")
            raise InternalError(f"Unexpected error loading run '{run_id}': {e}")

    def _load(self, run_id: str, run_directory: str, query_mode: GraphQueryMode) -> StateRunContext:
        reader = RunArtifactReader(run_directory)
        manifest = reader.read_run_info()
        series_index = reader.read_index()

        model_path = resolve_model_path(run_directory)
        model_directory = os.path.dirname(model_path)
        with open(model_path, "r", encoding="utf-8") as f:
            model_yaml = f.read()

        try:
            model = parse_model(model_yaml)
        except ModelParseError as e:
            logger.error(f"Failed to parse model for run {run_id}: {e}")
            raise ConflictError(f"Model for run '{run_id}' could not be parsed: {e}")

        try:
            metadata = parse_metadata(model, model_directory)
        except ModelParseError as e:
            logger.error(f"Invalid model metadata for run {run_id}: {e}")
            raise ConflictError(f"Model metadata for run '{run_id}' is invalid: {e}")

        if metadata.topology is None:
            raise PreconditionFailedError(
                f"Run '{run_id}' does not include topology information required for state queries."
            )

        try:
            manifest_metadata = self.manifest_reader.read(model_directory)
        except ManifestMetadataError as e:
            logger.error(f"Manifest metadata missing for run {run_id}: {e}")
            raise ConflictError(f"Manifest metadata for run '{run_id}' is incomplete: {e}")
        except FileNotFoundError as e:
            logger.error(f"Manifest metadata files missing for run {run_id}: {e}")
            raise NotFoundError(f"Manifest metadata for run '{run_id}' not found: {e}")

        expected_hash = (manifest.model_hash or "").strip()
        reported_hash = (manifest_metadata.provenance_hash or "").strip()
        if expected_hash and reported_hash and expected_hash.lower() != reported_hash.lower():
            raise ConflictError(
                f"Provenance hash mismatch for run '{run_id}'. Expected '{expected_hash}' "
                f"but storage reported '{reported_hash}'.",
                error_code="provenance_mismatch",
            )

        warnings = WarningCollector()
        node_data = self._load_nodes(
            run_id, metadata.topology, metadata.window.bins, model, reader,
            SemanticLoader(model_directory), manifest_metadata, warnings,
        )

        computed: Tuple[ComputedNode, ...] = ()
        if query_mode == GraphQueryMode.FULL:
            computed = self._load_computed_nodes(
                model, metadata.topology, metadata.window.bins, reader, model_directory, warnings,
            )

        initial_warnings, initial_node_warnings = warnings.freeze()
        return StateRunContext(
            run_id=run_id,
            manifest=manifest,
            manifest_metadata=manifest_metadata,
            window=metadata.window,
            topology=metadata.topology,
            node_data=MappingProxyType(node_data),
            model=model,
            series_index=series_index,
            initial_warnings=initial_warnings,
            initial_node_warnings=initial_node_warnings,
            computed_nodes=computed,
            query_mode=query_mode,
        )

    # ------------------------------------------------------------------
    # Topology nodes
    # ------------------------------------------------------------------

    def _load_nodes(self, run_id: str, topology: Topology, bins: int, model: ModelDefinition,
                    reader: RunArtifactReader, loader: SemanticLoader,
                    manifest_metadata: RunManifestMetadata,
                    warnings: WarningCollector) -> Dict[str, NodeData]:
        node_data: Dict[str, NodeData] = {}
        for node in topology.nodes:
            try:
                data = loader.load_node_data(node, bins)
            except FileNotFoundError as e:
                if not manifest_metadata.is_telemetry:
                    logger.error(f"Failed to load series for node {node.id} in run {run_id}: {e}")
                    raise InternalError(f"Failed to load data for node '{node.id}' in run '{run_id}': {e}")

                logger.warning(f"Telemetry source missing for node {node.id} in run {run_id}: {e}")
                node_data[node.id] = NodeData.zero_filled(node, bins)
                warnings.add_node(
                    node.id,
                    "telemetry_sources_unresolved",
                    f"Telemetry source '{node.semantics.served}' could not be resolved for node '{node.id}'.",
                )
                warnings.add_global_once(
                    "telemetry_sources_missing",
                    "One or more telemetry sources could not be resolved for this run.",
                )
                continue
            except StateQueryError:
                raise
            except Exception as e:
                logger.error(f"Failed to load series for node {node.id} in run {run_id}: {e}")
                raise InternalError(f"Failed to load data for node '{node.id}' in run '{run_id}': {e}")

            self._augment_from_run(node, data, bins, model, reader)
            self._apply_kernel_policy(node, data, warnings)
            self._check_presence(node, data, warnings)
            self._check_conservation(node, data, bins, warnings)
            node_data[node.id] = data

        return node_data

    @staticmethod
    def _augment_from_run(node: Node, data: NodeData, bins: int, model: ModelDefinition,
                          reader: RunArtifactReader) -> None:
        """Fill node-id references from the run's recorded series, then inline model values."""
        for attr, _label, ref in node.semantics.references():
            if getattr(data, attr) is not None or is_file_uri(ref):
                continue
            series = reader.read_node_series(ref, bins)
            if series is None:
                definition = model.get_node(ref.split("@", 1)[0])
                if definition is not None and definition.values is not None:
                    series = pad_series(definition.values, bins).tolist()
            if series is not None:
                setattr(data, attr, series)

    @staticmethod
    def _apply_kernel_policy(node: Node, data: NodeData, warnings: WarningCollector) -> None:
        if node.kind != NodeKind.SERVICE or not node.semantics.declares_retries:
            return
        declared = data.retry_kernel
        result = RetryKernelPolicy.apply(declared)
        data.retry_kernel = result.kernel
        severity = "info" if not declared else "warning"
        for message in result.messages:
            warnings.add_node(node.id, "retry_kernel_policy", message, severity)

    @staticmethod
    def _check_presence(node: Node, data: NodeData, warnings: WarningCollector) -> None:
        for attr, label, ref in node.semantics.references():
            if not has_finite_samples(getattr(data, attr)):
                warnings.add_node(
                    node.id,
                    f"{label}_series_missing",
                    f"Series '{ref}' for {label} on node '{node.id}' has no finite samples.",
                )

    @staticmethod
    def _check_conservation(node: Node, data: NodeData, bins: int, warnings: WarningCollector) -> None:
        if data.attempts is None or data.served is None:
            return
        for index in range(bins):
            attempts = value_at(data.attempts, index)
            served = value_at(data.served, index)
            failures = failures_at(data, index)
            if attempts is None or served is None or failures is None:
                continue
            delta = attempts - (served + failures)
            if abs(delta) > CONSERVATION_TOLERANCE:
                warnings.add_node(
                    node.id,
                    "attempts_conservation_mismatch",
                    f"Attempts ({attempts:g}) differ from served + failures ({served + failures:g}) "
                    f"at bin {index} on node '{node.id}'.",
                )
                return

    # ------------------------------------------------------------------
    # Computed nodes
    # ------------------------------------------------------------------

    @staticmethod
    def _load_computed_nodes(model: ModelDefinition, topology: Topology, bins: int,
                             reader: RunArtifactReader, model_directory: str,
                             warnings: WarningCollector) -> Tuple[ComputedNode, ...]:
        topology_ids = set(topology.node_ids())
        computed: List[ComputedNode] = []
        for definition in model.nodes:
            if definition.id in topology_ids:
                continue
            try:
                kind = NodeKind.parse(definition.kind)
            except ModelParseError:
                continue
            if not kind.is_computed:
                continue

            values: Optional[List[float]] = None
            if definition.values is not None:
                values = pad_series(definition.values, bins).tolist()
            if values is None:
                values = reader.read_node_series(definition.id, bins)
            if values is None and definition.source and is_file_uri(definition.source):
                path = resolve_file_path(definition.source, model_directory)
                if os.path.isfile(path):
                    values = read_time_series(path, bins)

            if values is None:
                message = f"No value series could be resolved for computed node '{definition.id}'."
                warnings.add_node(definition.id, "value_series_missing", message)
                warnings.add_global("value_series_missing", message, node_id=definition.id)
                continue

            computed.append(ComputedNode(
                id=definition.id,
                kind=kind,
                values=[float(v) if v is not None else math.nan for v in values],
            ))
        return tuple(computed)

"""
Metrics Service

Per-service SLA aggregation over a bin range.

Resolution strategies (chosen by the run's manifest mode):
    telemetry / other : state window (operational), falling back to model
                        evaluation when the run is missing (404) or a
                        source uses an unsupported URI scheme
    simulation        : direct model evaluation (GraphEvaluator)

Both strategies produce ResolvedNodeSeries and share compute_service_metrics:
    ratio = clamp(served / arrivals, 0, 1)   (arrivals <= 0 counts as met)
    met   = ratio >= SLA_THRESHOLD
    slaPct = binsMet / binsEvaluated          (1.0 when nothing was evaluated)
"""

from __future__ import annotations
import logging
import math
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import yaml

from flowstate.core.exceptions import (
    ConflictError,
    InternalError,
    InvalidRequestError,
    ModelParseError,
    NotFoundError,
    PreconditionFailedError,
    StateQueryError,
)
from flowstate.core.models import NodeKind
from flowstate.core.numeric import normalize
from flowstate.datasources.csv_reader import read_time_series
from flowstate.datasources.uri_resolver import is_file_uri, resolve_file_path
from flowstate.modeling.evaluator import GraphEvaluator
from flowstate.modeling.model_parser import ModelDefinition, parse_model, parse_topology
from flowstate.state.context import GraphQueryMode, resolve_model_path
from flowstate.state.contracts import StateWindowResponse, format_utc
from flowstate.state.service import StateQueryService
from flowstate.timetravel.manifest_reader import RunManifestReader
from flowstate.timetravel.run_reader import RunArtifactReader, RunManifest

SLA_THRESHOLD = 0.95
DEFAULT_WINDOW_BINS = 12

Series = Optional[List[Optional[float]]]


# =============================================================================
# Contracts
# =============================================================================

@dataclass
class ServiceMetrics:
    id: str
    sla_pct: float
    bins_met: int
    bins_total: int
    mini: List[Optional[float]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "slaPct": self.sla_pct,
            "binsMet": self.bins_met,
            "binsTotal": self.bins_total,
            "mini": list(self.mini),
        }


@dataclass
class MetricsResponse:
    bin_minutes: float
    bins: int
    window_start: Optional[datetime] = None
    timezone: Optional[str] = None
    services: List[ServiceMetrics] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "window": {"start": format_utc(self.window_start), "timezone": self.timezone},
            "grid": {"binMinutes": self.bin_minutes, "bins": self.bins},
            "services": [s.to_dict() for s in self.services],
        }


@dataclass
class ResolvedNodeSeries:
    id: str
    kind: NodeKind
    arrivals: Series = None
    served: Series = None
    errors: Series = None
    queue: Series = None
    capacity: Series = None


@dataclass
class MetricsResolution:
    bin_minutes: float
    bin_count: int
    nodes: List[ResolvedNodeSeries]
    window_start: Optional[datetime] = None
    timezone: Optional[str] = None


# =============================================================================
# SLA computation (pure function)
# =============================================================================

def compute_service_metrics(resolution: MetricsResolution,
                            threshold: float = SLA_THRESHOLD) -> List[ServiceMetrics]:
    services = []
    for node in resolution.nodes:
        if not node.kind.is_flow or node.arrivals is None or node.served is None:
            continue

        ratios: List[float] = []
        bins_met = 0
        bins_evaluated = 0
        for i in range(resolution.bin_count):
            arrivals = node.arrivals[i] if i < len(node.arrivals) else None
            served = node.served[i] if i < len(node.served) else None
            if arrivals is None or served is None:
                ratios.append(0.0)
                continue

            ratio = 1.0 if arrivals <= 0 else served / arrivals
            if not math.isfinite(ratio):
                ratio = 0.0
            ratio = min(max(ratio, 0.0), 1.0)

            ratios.append(ratio)
            bins_evaluated += 1
            if ratio >= threshold:
                bins_met += 1

        sla_pct = bins_met / bins_evaluated if bins_evaluated > 0 else 1.0
        services.append(ServiceMetrics(
            id=node.id,
            sla_pct=normalize(min(max(sla_pct, 0.0), 1.0)),
            bins_met=bins_met,
            bins_total=bins_evaluated,
            mini=[normalize(r) for r in ratios],
        ))
    return services


# =============================================================================
# Service
# =============================================================================

class MetricsService:

    def __init__(
        self,
        data_dir: str,
        state_service: Optional[StateQueryService] = None,
        manifest_reader: Optional[RunManifestReader] = None,
        default_window_bins: int = DEFAULT_WINDOW_BINS,
    ):
        self.data_dir = data_dir
        self.manifest_reader = manifest_reader or RunManifestReader()
        self.state_service = state_service or StateQueryService(data_dir, self.manifest_reader)
        self.default_window_bins = default_window_bins
        self.logger = logging.getLogger(__name__)

    def get_metrics(self, run_id: str, start_bin: Optional[int] = None,
                    end_bin: Optional[int] = None) -> MetricsResponse:
        if run_id is None or not run_id.strip():
            raise InvalidRequestError("runId must be provided.")
        if "/" in run_id or "\\" in run_id or ".." in run_id:
            raise InvalidRequestError(f"runId '{run_id}' is not a valid run identifier.")

        run_directory = os.path.join(self.data_dir, run_id)
        if not os.path.isdir(run_directory):
            raise NotFoundError(f"Run '{run_id}' not found.")

        try:
            manifest = RunArtifactReader(run_directory).read_run_info()
        except FileNotFoundError:
            raise NotFoundError(f"run.json missing for run '{run_id}'.")
        except ValueError as e:
            self.logger.error(f"Failed to read run manifest for run {run_id}: {e}")
            raise InternalError(f"Failed to read run manifest: {e}")

        total_bins = manifest.grid.bins
        if total_bins <= 0:
            raise ConflictError(f"Run '{run_id}' does not define a positive bin count.")

        start, end = self.normalize_range(start_bin, end_bin, total_bins)
        resolution = self._resolve(run_id, run_directory, manifest, start, end)
        services = compute_service_metrics(resolution)

        if not services:
            self.logger.debug(f"No service nodes with arrivals/served semantics found for run {run_id}")
        self.logger.info(
            f"Resolved metrics for run {run_id} over bins {start}..{end} ({len(services)} services)"
        )

        return MetricsResponse(
            window_start=resolution.window_start,
            timezone=resolution.timezone,
            bin_minutes=resolution.bin_minutes,
            bins=resolution.bin_count,
            services=services,
        )

    def normalize_range(self, start_bin: Optional[int], end_bin: Optional[int],
                        total_bins: int) -> Tuple[int, int]:
        if start_bin is not None and start_bin < 0:
            raise InvalidRequestError("startBin must be greater than or equal to zero.")
        if end_bin is not None and end_bin < 0:
            raise InvalidRequestError("endBin must be greater than or equal to zero.")
        if start_bin is not None and start_bin >= total_bins:
            raise InvalidRequestError(f"startBin must be less than total bins ({total_bins}).")
        if end_bin is not None and end_bin >= total_bins:
            raise InvalidRequestError(f"endBin must be less than total bins ({total_bins}).")

        if start_bin is not None and end_bin is not None:
            start, end = start_bin, end_bin
        elif start_bin is not None:
            start, end = start_bin, total_bins - 1
        elif end_bin is not None:
            start, end = max(0, end_bin - (self.default_window_bins - 1)), end_bin
        else:
            start, end = max(0, total_bins - self.default_window_bins), total_bins - 1

        if end < start:
            raise InvalidRequestError("endBin must be greater than or equal to startBin.")
        return start, end

    # ------------------------------------------------------------------
    # Resolution strategies
    # ------------------------------------------------------------------

    def _resolve(self, run_id: str, run_directory: str, manifest: RunManifest,
                 start: int, end: int) -> MetricsResolution:
        model_directory = os.path.join(run_directory, "model")
        try:
            mode = self.manifest_reader.read(model_directory).mode
        except (OSError, ValueError, yaml.YAMLError) as e:
            self.logger.warning(f"Failed to read manifest metadata for run {run_id}, assuming simulation: {e}")
            mode = "simulation"

        if mode != "simulation":
            try:
                window = self.state_service.get_state_window(run_id, start, end, GraphQueryMode.OPERATIONAL)
                return self._from_state_window(window, manifest, end - start + 1)
            except StateQueryError as e:
                self.logger.warning(
                    f"State window resolution failed for run {run_id}, falling back to model evaluation: {e.message}"
                )
                if e.status_code != 404 and "unsupported uri scheme" not in e.message.lower():
                    raise StateQueryError.from_status(e.status_code, e.message, e.error_code)

        return self._from_model(run_id, run_directory, manifest, start, end)

    @staticmethod
    def _from_state_window(window: StateWindowResponse, manifest: RunManifest,
                           bin_count: int) -> MetricsResolution:
        nodes = []
        for node in window.nodes:
            nodes.append(ResolvedNodeSeries(
                id=node.id,
                kind=NodeKind.parse(node.kind),
                arrivals=_clip(node.series.get("arrivals"), bin_count),
                served=_clip(node.series.get("served"), bin_count),
                errors=_clip(node.series.get("errors"), bin_count),
                queue=_clip(node.series.get("queue"), bin_count),
                capacity=_clip(node.series.get("capacity"), bin_count),
            ))
        return MetricsResolution(
            window_start=window.timestamps_utc[0] if window.timestamps_utc else None,
            timezone=manifest.grid.timezone,
            bin_minutes=manifest.grid.bin_minutes,
            bin_count=bin_count,
            nodes=nodes,
        )

    def _from_model(self, run_id: str, run_directory: str, manifest: RunManifest,
                    start: int, end: int) -> MetricsResolution:
        try:
            model_path = resolve_model_path(run_directory)
        except FileNotFoundError:
            raise NotFoundError(f"Model for run '{run_id}' was not found.")

        with open(model_path, "r", encoding="utf-8") as f:
            model_yaml = f.read()
        model_directory = os.path.dirname(model_path)

        try:
            model = parse_model(model_yaml)
            topology = parse_topology(model.topology) if model.topology is not None else None
            evaluation = GraphEvaluator(model, model_directory).evaluate() if topology is not None else {}
        except ModelParseError as e:
            self.logger.error(f"Failed to parse model for metrics evaluation {run_id}: {e}")
            raise ConflictError(f"Model for run '{run_id}' could not be parsed: {e}")
        except FileNotFoundError as e:
            raise NotFoundError(f"Model source for run '{run_id}' was not found: {e}")
        except ValueError as e:
            self.logger.error(f"Failed to evaluate model for run {run_id}: {e}")
            raise InternalError(f"Model for run '{run_id}' could not be evaluated: {e}")

        if topology is None:
            raise PreconditionFailedError(
                f"Run '{run_id}' does not include topology information required for metrics."
            )

        total_bins = model.grid.bins
        nodes = []
        for node in topology.nodes:
            def resolve(attr: str) -> Series:
                return self._resolve_slice(
                    node.semantics.reference(attr), evaluation, model_directory, start, end, total_bins
                )

            nodes.append(ResolvedNodeSeries(
                id=node.id,
                kind=node.kind,
                arrivals=resolve("arrivals"),
                served=resolve("served"),
                errors=resolve("errors"),
                queue=resolve("queue_depth"),
                capacity=resolve("capacity"),
            ))

        return MetricsResolution(
            window_start=_model_start(model),
            timezone=manifest.grid.timezone,
            bin_minutes=manifest.grid.bin_minutes,
            bin_count=end - start + 1,
            nodes=nodes,
        )

    def _resolve_slice(self, ref: Optional[str], evaluation: Dict[str, np.ndarray],
                       model_directory: str, start: int, end: int, total_bins: int) -> Series:
        if not ref:
            return None

        values: Optional[List[float]] = None
        if is_file_uri(ref):
            try:
                values = read_time_series(resolve_file_path(ref, model_directory), total_bins)
            except (OSError, ValueError) as e:
                self.logger.warning(f"Could not read metrics source {ref}: {e}")
                return None
        elif ref in evaluation:
            values = evaluation[ref].tolist()

        if values is None:
            return None
        window = values[start:end + 1]
        return [None if v is None or math.isnan(v) else float(v) for v in window]


def _clip(series: Series, bin_count: int) -> Series:
    if series is None:
        return None
    if len(series) == bin_count:
        return list(series)
    clipped: List[Optional[float]] = [None] * bin_count
    length = min(bin_count, len(series))
    clipped[:length] = series[:length]
    return clipped


def _model_start(model: ModelDefinition) -> Optional[datetime]:
    return model.grid.start_time_utc if model.grid is not None else None

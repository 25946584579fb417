"""
Run Artifact Reader

Reads ``run.json`` and ``series/index.json`` from a run directory and
resolves recorded series by the model node that produced them.
"""

from __future__ import annotations
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from flowstate.datasources.csv_reader import read_time_series

logger = logging.getLogger(__name__)

_UNIT_MINUTES = {"minutes": 1, "hours": 60, "days": 1440, "weeks": 10080}


@dataclass
class TimeGrid:
    bins: int
    bin_size: int
    bin_unit: str = "minutes"
    timezone: str = "UTC"
    align: str = "left"

    @property
    def bin_minutes(self) -> int:
        unit = self.bin_unit.lower()
        if unit not in _UNIT_MINUTES:
            raise ValueError(f"Unknown time unit: {self.bin_unit}")
        return self.bin_size * _UNIT_MINUTES[unit]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeGrid":
        if "binSize" in data:
            bin_size = int(data["binSize"])
            bin_unit = data.get("binUnit", "minutes")
        else:
            bin_size = int(data["binMinutes"])
            bin_unit = "minutes"
        return cls(
            bins=int(data["bins"]),
            bin_size=bin_size,
            bin_unit=bin_unit,
            timezone=data.get("timezone") or "UTC",
            align=data.get("align") or "left",
        )


@dataclass
class SeriesReference:
    id: str
    path: str
    unit: str = ""

    @property
    def node_id(self) -> str:
        return self.id.split("@", 1)[0]


@dataclass
class SeriesMetadata(SeriesReference):
    kind: str = ""
    component_id: str = ""
    series_class: str = ""
    points: int = 0
    hash: str = ""


@dataclass
class SeriesIndex:
    schema_version: int
    grid: TimeGrid
    series: List[SeriesMetadata] = field(default_factory=list)


@dataclass
class RunManifest:
    """High-level run summary from run.json."""
    schema_version: int
    run_id: str
    grid: TimeGrid
    engine_version: str = ""
    source: str = ""
    model_hash: Optional[str] = None
    scenario_hash: str = ""
    created_utc: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    series: List[SeriesReference] = field(default_factory=list)


class RunArtifactReader:
    """
    File-based reader for run artifacts. The manifest and index are cached
    after first load.
    """

    def __init__(self, run_directory: str):
        self.run_directory = run_directory
        self._manifest: Optional[RunManifest] = None
        self._index: Optional[SeriesIndex] = None
        self._index_loaded = False

    def read_run_info(self) -> RunManifest:
        """
        Raises:
            FileNotFoundError: run.json is missing.
            ValueError: run.json is malformed.
        """
        if self._manifest is not None:
            return self._manifest

        path = os.path.join(self.run_directory, "run.json")
        if not os.path.isfile(path):
            raise FileNotFoundError(f"run.json not found at {path}")

        with open(path, "r", encoding="utf-8") as f:
            root = json.load(f)

        try:
            self._manifest = RunManifest(
                schema_version=int(root.get("schemaVersion", 1)),
                run_id=root["runId"],
                grid=TimeGrid.from_dict(root["grid"]),
                engine_version=root.get("engineVersion", ""),
                source=root.get("source", ""),
                model_hash=root.get("modelHash"),
                scenario_hash=root.get("scenarioHash", ""),
                created_utc=root.get("createdUtc"),
                warnings=[_warning_text(w) for w in root.get("warnings") or []],
                series=[
                    SeriesReference(id=s["id"], path=s["path"], unit=s.get("unit", ""))
                    for s in root.get("series") or []
                ],
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"run.json at {path} is malformed: missing {e}")
        return self._manifest

    def read_index(self) -> Optional[SeriesIndex]:
        """series/index.json, or None when the run has no index."""
        if self._index_loaded:
            return self._index

        self._index_loaded = True
        path = os.path.join(self.run_directory, "series", "index.json")
        if not os.path.isfile(path):
            logger.debug(f"No series index at {path}")
            return None

        with open(path, "r", encoding="utf-8") as f:
            root = json.load(f)

        self._index = SeriesIndex(
            schema_version=int(root.get("schemaVersion", 1)),
            grid=TimeGrid.from_dict(root["grid"]),
            series=[
                SeriesMetadata(
                    id=s["id"],
                    path=s["path"],
                    unit=s.get("unit", ""),
                    kind=s.get("kind", ""),
                    component_id=s.get("componentId", ""),
                    series_class=s.get("class", ""),
                    points=int(s.get("points", 0)),
                    hash=s.get("hash", ""),
                )
                for s in root.get("series") or []
            ],
        )
        return self._index

    def find_series_path(self, node_id: str) -> Optional[str]:
        """Absolute path of the first recorded series produced by ``node_id``."""
        candidates: List[SeriesReference] = []
        index = self.read_index()
        if index is not None:
            candidates.extend(index.series)
        candidates.extend(self.read_run_info().series)

        for ref in candidates:
            if ref.node_id == node_id or ref.id == node_id:
                return os.path.join(self.run_directory, ref.path)
        return None

    def read_node_series(self, node_id: str, total_bins: int) -> Optional[List[float]]:
        """Recorded series for a model node, or None when the run has none."""
        path = self.find_series_path(node_id)
        if path is None or not os.path.isfile(path):
            return None
        return read_time_series(path, total_bins)


def _warning_text(warning: Any) -> str:
    if isinstance(warning, dict):
        return str(warning.get("message") or warning.get("code") or "")
    return str(warning)

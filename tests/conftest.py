"""
Test Configuration and Fixtures
================================

Shared pytest fixtures that materialise run directories under tmp_path:

    <data_dir>/<run_id>/run.json
    <data_dir>/<run_id>/series/index.json + series CSVs
    <data_dir>/<run_id>/model/model.yaml, metadata.json, telemetry CSVs

Usage:
    pytest tests/                    # Run all tests
    pytest tests/ -k "window"        # Run only window tests
"""

import json
import math
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).parent.parent))


# =============================================================================
# Helpers
# =============================================================================

def write_series(path: Path, values: List[float], header: str = "bin_index,value") -> None:
    """Write a CSV time series; NaN samples are written as ``NaN``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [header]
    for index, value in enumerate(values):
        text = "NaN" if value is None or (isinstance(value, float) and math.isnan(value)) else repr(float(value))
        lines.append(f"{index},{text}")
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def service_node(node_id: str, **semantics: Any) -> Dict[str, Any]:
    return {"id": node_id, "kind": "service", "semantics": semantics}


def queue_node(node_id: str, **semantics: Any) -> Dict[str, Any]:
    return {"id": node_id, "kind": "queue", "semantics": semantics}


class RunBuilder:
    """Writes run directories for tests."""

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir

    def create(
        self,
        run_id: str = "run_test",
        *,
        bins: int = 4,
        bin_size: int = 60,
        topology_nodes: Optional[List[Dict[str, Any]]] = None,
        edges: Optional[List[Dict[str, Any]]] = None,
        model_nodes: Optional[List[Dict[str, Any]]] = None,
        model_files: Optional[Dict[str, List[float]]] = None,
        run_series: Optional[Dict[str, List[float]]] = None,
        mode: str = "simulation",
        start_time: Optional[str] = "2025-01-01T00:00:00Z",
        run_warnings: Optional[List[str]] = None,
        model_hash: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        write_metadata: bool = True,
        include_topology: bool = True,
        model_text: Optional[str] = None,
    ) -> Path:
        run_dir = self.data_dir / run_id
        model_dir = run_dir / "model"
        model_dir.mkdir(parents=True, exist_ok=True)

        series_refs = []
        for series_id, values in (run_series or {}).items():
            rel_path = f"series/{series_id.replace('@', '_')}.csv"
            write_series(run_dir / rel_path, values, header="t,value")
            series_refs.append({"id": series_id, "path": rel_path, "unit": "entities/bin"})

        grid = {"bins": bins, "binSize": bin_size, "binUnit": "minutes", "timezone": "UTC"}
        run_info = {
            "schemaVersion": 1,
            "runId": run_id,
            "engineVersion": "0.6.0",
            "source": "engine",
            "grid": grid,
            "scenarioHash": "sha256:scenario",
            "createdUtc": "2025-01-01T00:00:00Z",
            "warnings": run_warnings or [],
            "series": series_refs,
        }
        if model_hash is not None:
            run_info["modelHash"] = model_hash
        (run_dir / "run.json").write_text(json.dumps(run_info), encoding="utf-8")

        if series_refs:
            index = {
                "schemaVersion": 1,
                "grid": grid,
                "series": [
                    {**ref, "kind": "flow", "componentId": ref["id"].split("@")[0], "points": bins}
                    for ref in series_refs
                ],
            }
            (run_dir / "series" / "index.json").write_text(json.dumps(index), encoding="utf-8")

        for name, values in (model_files or {}).items():
            write_series(model_dir / name, values)

        if model_text is None:
            grid_doc: Dict[str, Any] = {"bins": bins, "binSize": bin_size, "binUnit": "minutes"}
            if start_time is not None:
                grid_doc["startTimeUtc"] = start_time
            document: Dict[str, Any] = {
                "schemaVersion": 1,
                "mode": mode,
                "metadata": {"id": "test-template", "title": "Test Template", "version": "1.0.0"},
                "grid": grid_doc,
                "nodes": model_nodes or [],
            }
            if include_topology:
                document["topology"] = {"nodes": topology_nodes or [], "edges": edges or []}
            model_text = yaml.safe_dump(document, sort_keys=False)
        (model_dir / "model.yaml").write_text(model_text, encoding="utf-8")

        if write_metadata:
            meta = {"templateId": "test-template", "schemaVersion": 1, "mode": mode}
            meta.update(metadata or {})
            (model_dir / "metadata.json").write_text(json.dumps(meta), encoding="utf-8")

        return run_dir

    def create_standard(self, run_id: str = "run_test", **overrides: Any) -> Path:
        """
        Two-node run: ``ingest`` (service) -> ``buffer`` (queue), 4 bins of 60 minutes.
        """
        files = {
            "ingest_arrivals.csv": [100, 100, 100, 100],
            "ingest_served.csv": [96, 94, 99, 100],
            "ingest_errors.csv": [4, 6, 1, 0],
            "ingest_capacity.csv": [200, 100, 100, 100],
            "buffer_arrivals.csv": [96, 94, 99, 100],
            "buffer_served.csv": [90, 90, 90, 90],
            "buffer_queue.csv": [15, 15, 30, 60],
        }
        files.update(overrides.pop("model_files", {}))
        nodes = [
            service_node(
                "ingest",
                arrivals="file:ingest_arrivals.csv",
                served="file:ingest_served.csv",
                errors="file:ingest_errors.csv",
                capacity="file:ingest_capacity.csv",
                aliases={"served": "Orders processed"},
            ),
            queue_node(
                "buffer",
                arrivals="file:buffer_arrivals.csv",
                served="file:buffer_served.csv",
                queueDepth="file:buffer_queue.csv",
                slaMinutes=30,
            ),
        ]
        nodes.extend(overrides.pop("extra_topology_nodes", []))
        return self.create(
            run_id,
            topology_nodes=overrides.pop("topology_nodes", nodes),
            edges=overrides.pop("edges", [{"id": "ingest_to_buffer", "from": "ingest:out", "to": "buffer:in"}]),
            model_files=files,
            **overrides,
        )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def data_dir(tmp_path) -> Path:
    path = tmp_path / "runs"
    path.mkdir()
    return path


@pytest.fixture
def run_builder(data_dir) -> RunBuilder:
    return RunBuilder(data_dir)

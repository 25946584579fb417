"""
Unit Tests for CSV series, file: URIs, the semantic loader and run artifacts
"""
import json
import math
import os

import pytest

from flowstate.core.exceptions import CsvFormatError
from flowstate.core.models import Node, NodeKind, NodeSemantics
from flowstate.datasources import SemanticLoader, is_file_uri, read_time_series, resolve_file_path
from flowstate.timetravel.run_reader import RunArtifactReader

from conftest import write_series


class TestReadTimeSeries:

    def test_reads_and_pads_with_nan(self, tmp_path):
        path = tmp_path / "s.csv"
        write_series(path, [1, 2])

        values = read_time_series(str(path), 4)

        assert values[:2] == [1.0, 2.0]
        assert math.isnan(values[2]) and math.isnan(values[3])

    def test_accepts_run_series_header(self, tmp_path):
        path = tmp_path / "s.csv"
        write_series(path, [5], header="t,value")

        assert read_time_series(str(path), 1) == [5.0]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_time_series(str(tmp_path / "nope.csv"), 2)

    @pytest.mark.parametrize("content", [
        "time,value\n0,1\n",
        "bin_index,value\n5,1\n",
        "bin_index,value\n0,1\n0,2\n",
        "bin_index,value\nx,1\n",
        "bin_index,value\n0,abc\n",
        "bin_index,value\n0,1,2\n",
        "",
    ])
    def test_malformed(self, tmp_path, content):
        path = tmp_path / "bad.csv"
        path.write_text(content, encoding="utf-8")

        with pytest.raises(CsvFormatError):
            read_time_series(str(path), 2)

    def test_nan_literal_and_blank_rows(self, tmp_path):
        path = tmp_path / "s.csv"
        path.write_text("bin_index,value\n0,NaN\n\n1,3\n", encoding="utf-8")

        values = read_time_series(str(path), 2)

        assert math.isnan(values[0])
        assert values[1] == 3.0


class TestUriResolver:

    def test_is_file_uri(self):
        assert is_file_uri("file:a.csv")
        assert is_file_uri(" FILE://a.csv")
        assert not is_file_uri("svc_arrivals")
        assert not is_file_uri(None)

    def test_relative_resolves_against_model_directory(self, tmp_path):
        resolved = resolve_file_path("file:data/a.csv", str(tmp_path))

        assert resolved == os.path.normpath(os.path.join(str(tmp_path), "data", "a.csv"))

    def test_absolute_and_double_slash(self, tmp_path):
        absolute = str(tmp_path / "a.csv")

        assert resolve_file_path(f"file:{absolute}", None) == absolute
        assert resolve_file_path("file://a.csv", str(tmp_path)) == os.path.join(str(tmp_path), "a.csv")

    def test_rejects_other_schemes(self):
        with pytest.raises(ValueError):
            resolve_file_path("http://example.com/a.csv", "/tmp")
        with pytest.raises(ValueError):
            resolve_file_path("file:a.csv", None)


class TestSemanticLoader:

    def test_loads_file_references_and_leaves_node_ids(self, tmp_path):
        write_series(tmp_path / "arrivals.csv", [1, 2, 3])
        node = Node("svc", NodeKind.SERVICE, NodeSemantics(
            arrivals="file:arrivals.csv", served="svc_served", retry_kernel=[0.0, 1.0],
        ))

        data = SemanticLoader(str(tmp_path)).load_node_data(node, 3)

        assert data.arrivals == [1.0, 2.0, 3.0]
        assert data.served is None
        assert data.retry_kernel == [0.0, 1.0]

    def test_missing_file_raises(self, tmp_path):
        node = Node("svc", semantics=NodeSemantics(arrivals="file:missing.csv"))

        with pytest.raises(FileNotFoundError):
            SemanticLoader(str(tmp_path)).load_node_data(node, 3)

    def test_unsupported_scheme(self, tmp_path):
        node = Node("svc", semantics=NodeSemantics(arrivals="s3://bucket/a.csv"))

        with pytest.raises(ValueError, match="Unsupported URI scheme"):
            SemanticLoader(str(tmp_path)).load_node_data(node, 3)


class TestRunArtifactReader:

    def test_reads_manifest_and_series(self, run_builder):
        run_dir = run_builder.create(
            "run_a", run_series={"svc@arrivals": [4, 5, 6, 7]}, run_warnings=["partial run"],
        )
        reader = RunArtifactReader(str(run_dir))

        manifest = reader.read_run_info()
        assert manifest.run_id == "run_a"
        assert manifest.grid.bin_minutes == 60
        assert manifest.warnings == ["partial run"]

        index = reader.read_index()
        assert index is not None
        assert index.series[0].component_id == "svc"

        assert reader.read_node_series("svc", 4) == [4.0, 5.0, 6.0, 7.0]
        assert reader.read_node_series("other", 4) is None

    def test_missing_run_json(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            RunArtifactReader(str(tmp_path)).read_run_info()

    def test_malformed_run_json(self, tmp_path):
        (tmp_path / "run.json").write_text(json.dumps({"runId": "x"}), encoding="utf-8")

        with pytest.raises(ValueError):
            RunArtifactReader(str(tmp_path)).read_run_info()

    def test_no_index(self, run_builder):
        run_dir = run_builder.create("run_b")

        assert RunArtifactReader(str(run_dir)).read_index() is None

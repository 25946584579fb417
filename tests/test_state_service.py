"""
Integration Tests for StateQueryService

Runs are materialised on disk by the ``run_builder`` fixture; see conftest.py
for the standard ingest -> buffer scenario.
"""
from unittest.mock import patch

import pytest

from flowstate.core.exceptions import (
    ConflictError,
    InternalError,
    InvalidRequestError,
    NotFoundError,
    PayloadTooLargeError,
    PreconditionFailedError,
    UnprocessableEntityError,
)
from flowstate.state import GraphQueryMode, StateQueryService
from flowstate.timetravel.mode_validator import ModeValidationResult, ModeValidator

from conftest import queue_node, service_node


@pytest.fixture
def service(data_dir):
    return StateQueryService(str(data_dir))


def _node(response, node_id):
    for node in response["nodes"]:
        if node["id"] == node_id:
            return node
    raise AssertionError(f"node {node_id} missing from response")


def _codes(warnings):
    return [w["code"] for w in warnings]


def _retry_run(run_builder, run_id, *, attempts, served, failures, kernel=None, edges=None):
    """Service ``svc`` with recorded retries feeding a plain service ``db``."""
    bins = len(attempts)
    semantics = dict(
        arrivals="file:svc_arrivals.csv",
        served="file:svc_served.csv",
        attempts="file:svc_attempts.csv",
        failures="file:svc_failures.csv",
        maxAttempts=3,
    )
    if kernel is not None:
        semantics["retryKernel"] = kernel
    return run_builder.create(
        run_id,
        bins=bins,
        topology_nodes=[
            service_node("svc", **semantics),
            service_node("db", arrivals="file:db_arrivals.csv", served="file:db_served.csv"),
        ],
        edges=edges or [],
        model_files={
            "svc_arrivals.csv": list(served),
            "svc_served.csv": served,
            "svc_attempts.csv": attempts,
            "svc_failures.csv": failures,
            "db_arrivals.csv": [10] * bins,
            "db_served.csv": [10] * bins,
        },
    )


# =============================================================================
# Snapshot
# =============================================================================

class TestSnapshot:

    def test_standard_snapshot(self, run_builder, service):
        run_builder.create_standard()

        response = service.get_state("run_test", 0).to_dict()

        assert response["metadata"]["runId"] == "run_test"
        assert response["metadata"]["templateId"] == "test-template"
        assert response["metadata"]["mode"] == "simulation"
        assert response["bin"] == {
            "index": 0,
            "startUtc": "2025-01-01T00:00:00Z",
            "endUtc": "2025-01-01T01:00:00Z",
            "durationMinutes": 60.0,
        }
        assert response["warnings"] == []

        ingest = _node(response, "ingest")
        assert ingest["kind"] == "service"
        assert ingest["metrics"]["arrivals"] == 100.0
        assert ingest["metrics"]["served"] == 96.0
        assert ingest["metrics"]["errors"] == 4.0
        assert ingest["metrics"]["attempts"] is None
        assert ingest["derived"]["utilization"] == 0.48
        assert ingest["derived"]["throughputRatio"] == 0.96
        assert ingest["derived"]["retryTax"] is None
        assert ingest["derived"]["flowLatencyMs"] is None
        assert ingest["derived"]["color"] == "green"
        assert ingest["aliases"] == {"served": "Orders processed"}
        assert "file:ingest_arrivals.csv" in ingest["telemetry"]["sources"]

        buffer = _node(response, "buffer")
        assert buffer["kind"] == "queue"
        assert buffer["metrics"]["queue"] == 15.0
        assert buffer["derived"]["latencyMinutes"] == 10.0
        assert buffer["derived"]["flowLatencyMs"] == 600000.0
        assert buffer["derived"]["utilization"] is None
        assert buffer["derived"]["color"] == "green"

    @pytest.mark.parametrize("bin_index,ingest_color,buffer_color", [
        (0, "green", "green"),
        (1, "red", "green"),
        (3, "red", "yellow"),
    ])
    def test_colors(self, run_builder, service, bin_index, ingest_color, buffer_color):
        run_builder.create_standard()

        response = service.get_state("run_test", bin_index).to_dict()

        assert _node(response, "ingest")["derived"]["color"] == ingest_color
        assert _node(response, "buffer")["derived"]["color"] == buffer_color

    def test_retry_metrics(self, run_builder, service):
        _retry_run(run_builder, "run_retry", attempts=[5, 6, 7], served=[4, 5, 5], failures=[1, 1, 2])

        svc = _node(service.get_state("run_retry", 1).to_dict(), "svc")

        assert svc["metrics"]["attempts"] == 6.0
        assert svc["metrics"]["failures"] == 1.0
        assert svc["metrics"]["retryEcho"] == 0.6
        assert svc["metrics"]["maxAttempts"] == 3
        assert svc["derived"]["retryTax"] == 0.166667

        warnings = svc["telemetry"]["warnings"]
        assert _codes(warnings) == ["retry_kernel_policy"]
        assert warnings[0]["severity"] == "info"
        assert svc["telemetry"]["sources"] == []

    def test_run_warnings_come_first(self, run_builder, service):
        run_builder.create_standard(run_warnings=["Engine clipped demand"])

        warnings = service.get_state("run_test", 0).to_dict()["warnings"]

        assert warnings[0] == {
            "code": "run_warning",
            "message": "Engine clipped demand",
            "severity": "info",
            "nodeId": None,
        }

    def test_snapshot_without_start_time(self, run_builder, service):
        run_builder.create_standard(start_time=None)

        response = service.get_state("run_test", 2).to_dict()

        assert response["bin"]["startUtc"] is None
        assert response["bin"]["endUtc"] is None


# =============================================================================
# Window
# =============================================================================

class TestWindow:

    def test_standard_window(self, run_builder, service):
        run_builder.create_standard()

        response = service.get_state_window("run_test", 0, 3).to_dict()

        assert response["window"] == {"startBin": 0, "endBin": 3, "binCount": 4}
        assert response["timestampsUtc"] == [
            "2025-01-01T00:00:00Z",
            "2025-01-01T01:00:00Z",
            "2025-01-01T02:00:00Z",
            "2025-01-01T03:00:00Z",
        ]
        assert response["edges"] == []

        ingest = _node(response, "ingest")["series"]
        assert ingest["utilization"] == [0.48, 0.94, 0.99, 1.0]
        assert ingest["throughputRatio"] == [0.96, 0.94, 0.99, 1.0]
        assert "attempts" not in ingest
        assert "latencyMinutes" not in ingest

        buffer = _node(response, "buffer")["series"]
        assert buffer["latencyMinutes"] == [10.0, 10.0, 20.0, 40.0]
        assert buffer["flowLatencyMs"] == [600000.0, 600000.0, 1200000.0, 2400000.0]
        assert buffer["throughputRatio"] == [0.9375, 0.957447, 0.909091, 0.9]
        assert buffer["errors"] == [None, None, None, None]

    def test_flow_latency_reported_for_non_flow_topology_nodes(self, run_builder, service):
        run_builder.create_standard(
            extra_topology_nodes=[{"id": "sink", "kind": "const"}],
            edges=[
                {"id": "ingest_to_buffer", "from": "ingest:out", "to": "buffer:in"},
                {"id": "buffer_to_sink", "from": "buffer:out", "to": "sink:in"},
            ],
        )

        snapshot = service.get_state("run_test", 0).to_dict()
        window = service.get_state_window("run_test", 0, 1).to_dict()

        assert _node(snapshot, "sink")["derived"]["flowLatencyMs"] == 600000.0
        assert _node(window, "sink")["series"]["flowLatencyMs"] == [600000.0, 600000.0]

    def test_partial_window(self, run_builder, service):
        run_builder.create_standard()

        response = service.get_state_window("run_test", 2, 3)

        assert response.get_node("buffer").series["queue"] == [30.0, 60.0]
        assert response.timestamps_utc[0].hour == 2

    def test_window_size_cap(self, run_builder, data_dir):
        bins = 501
        run_builder.create(
            "run_long",
            bins=bins,
            bin_size=5,
            topology_nodes=[service_node("svc", arrivals="file:a.csv", served="file:s.csv")],
            model_files={"a.csv": [1] * bins, "s.csv": [1] * bins},
        )
        service = StateQueryService(str(data_dir))

        with pytest.raises(PayloadTooLargeError) as exc_info:
            service.get_state_window("run_long", 0, 500)
        assert exc_info.value.status_code == 413

        response = service.get_state_window("run_long", 0, 499)
        assert response.window.bin_count == 500

    def test_edge_series_lag(self, run_builder, service):
        _retry_run(
            run_builder, "run_edges",
            attempts=[5, 6, 7], served=[4, 5, 5], failures=[1, 1, 2],
            edges=[{"id": "svc_db", "from": "svc:out", "to": "db:in",
                    "field": "attempts", "multiplier": 2, "lag": 1}],
        )

        response = service.get_state_window("run_edges", 0, 2).to_dict()

        edge = response["edges"][0]
        assert edge["id"] == "svc_db"
        assert edge["from"] == "svc:out"
        assert edge["to"] == "db:in"
        assert edge["lag"] == 1
        assert edge["series"]["attemptsLoad"] == [None, 10.0, 12.0]
        assert edge["series"]["failuresLoad"] == [None, 2.0, 2.0]
        assert edge["series"]["retryRate"] == [None, 0.2, 0.166667]
        assert "exhaustedFailuresLoad" not in edge["series"]

    def test_edge_series_invalid_multiplier_and_lag_use_defaults(self, run_builder, service):
        _retry_run(
            run_builder, "run_edge_defaults",
            attempts=[5, 6, 7], served=[4, 5, 5], failures=[1, 1, 2],
            edges=[{"id": "svc_db", "from": "svc:out", "to": "db:in", "field": "attempts",
                    "weight": float("nan"), "multiplier": -2, "lag": -3}],
        )

        edge = service.get_state_window("run_edge_defaults", 0, 2).to_dict()["edges"][0]

        assert edge["lag"] == 0
        assert edge["series"]["attemptsLoad"] == [5.0, 6.0, 7.0]
        assert edge["series"]["failuresLoad"] == [1.0, 1.0, 2.0]

    def test_retry_node_series(self, run_builder, service):
        _retry_run(run_builder, "run_retry", attempts=[5, 6, 7], served=[4, 5, 5], failures=[1, 1, 2])

        svc = service.get_state_window("run_retry", 0, 2).get_node("svc").series

        assert svc["attempts"] == [5.0, 6.0, 7.0]
        assert svc["failures"] == [1.0, 1.0, 2.0]
        assert svc["retryEcho"] == [0.0, 0.6, 0.9]
        assert svc["retryTax"] == [0.2, 0.166667, 0.285714]

    def test_window_requires_start_time(self, run_builder, service):
        run_builder.create_standard(start_time=None)

        with pytest.raises(ConflictError):
            service.get_state_window("run_test", 0, 1)

    @pytest.mark.parametrize("start,end", [(-1, 2), (0, 4), (3, 1), (4, 4)])
    def test_invalid_ranges(self, run_builder, service, start, end):
        run_builder.create_standard()

        with pytest.raises(InvalidRequestError):
            service.get_state_window("run_test", start, end)

    def test_full_mode_includes_computed_nodes(self, run_builder, service):
        run_builder.create_standard(model_nodes=[
            {"id": "demand", "kind": "const", "values": [1, 2]},
            {"id": "orphan", "kind": "expr", "expr": "demand * 2"},
        ])

        full = service.get_state_window("run_test", 0, 3, GraphQueryMode.FULL).to_dict()

        demand = _node(full, "demand")
        assert demand["kind"] == "const"
        assert demand["series"] == {"values": [1.0, 2.0, None, None]}
        assert all(n["id"] != "orphan" for n in full["nodes"])

        missing = [w for w in full["warnings"] if w["code"] == "value_series_missing"]
        assert len(missing) == 1
        assert missing[0]["nodeId"] == "orphan"

        operational = service.get_state_window("run_test", 0, 3).to_dict()
        assert [n["id"] for n in operational["nodes"]] == ["ingest", "buffer"]
        assert "value_series_missing" not in _codes(operational["warnings"])

    def test_node_references_resolve_from_run_and_model(self, run_builder, service):
        run_builder.create(
            "run_refs",
            topology_nodes=[service_node("svc", arrivals="demand", served="svc_served")],
            model_nodes=[{"id": "demand", "kind": "const", "values": [10, 10, 10, 10]}],
            run_series={"svc_served@DEFAULT": [9, 8, 10, 10]},
        )

        series = service.get_state_window("run_refs", 0, 3).get_node("svc").series

        assert series["arrivals"] == [10.0, 10.0, 10.0, 10.0]
        assert series["served"] == [9.0, 8.0, 10.0, 10.0]


# =============================================================================
# Data-quality warnings
# =============================================================================

class TestDataQuality:

    def test_telemetry_missing_file_zero_fills(self, run_builder, service):
        run_dir = run_builder.create_standard(mode="telemetry")
        (run_dir / "model" / "ingest_arrivals.csv").unlink()

        response = service.get_state_window("run_test", 0, 3).to_dict()

        ingest = _node(response, "ingest")
        assert ingest["series"]["arrivals"] == [0.0, 0.0, 0.0, 0.0]
        assert ingest["series"]["served"] == [0.0, 0.0, 0.0, 0.0]
        assert _codes(ingest["telemetry"]["warnings"]) == ["telemetry_sources_unresolved"]
        assert _codes(response["warnings"]).count("telemetry_sources_missing") == 1
        assert _node(response, "buffer")["series"]["queue"] == [15.0, 15.0, 30.0, 60.0]

    def test_simulation_missing_file_is_internal_error(self, run_builder, service):
        run_dir = run_builder.create_standard()
        (run_dir / "model" / "ingest_arrivals.csv").unlink()

        with pytest.raises(InternalError) as exc_info:
            service.get_state("run_test", 0)
        assert exc_info.value.status_code == 500

    def test_attempts_conservation_single_warning(self, run_builder, service):
        _retry_run(run_builder, "run_cons", attempts=[10, 10], served=[6, 6], failures=[3, 3])

        svc = _node(service.get_state("run_cons", 0).to_dict(), "svc")

        codes = _codes(svc["telemetry"]["warnings"])
        assert codes.count("attempts_conservation_mismatch") == 1
        message = next(w["message"] for w in svc["telemetry"]["warnings"]
                       if w["code"] == "attempts_conservation_mismatch")
        assert "bin 0" in message

    def test_invalid_kernel_warning(self, run_builder, service):
        _retry_run(run_builder, "run_kernel", attempts=[5, 6], served=[4, 5], failures=[1, 1], kernel=[-1, 2])

        svc = _node(service.get_state("run_kernel", 0).to_dict(), "svc")

        policy = [w for w in svc["telemetry"]["warnings"] if w["code"] == "retry_kernel_policy"]
        assert len(policy) == 1
        assert policy[0]["severity"] == "warning"

    def test_series_without_samples(self, run_builder, service):
        run_builder.create_standard(model_files={"ingest_errors.csv": [float("nan")] * 4})

        ingest = _node(service.get_state("run_test", 0).to_dict(), "ingest")

        assert _codes(ingest["telemetry"]["warnings"]) == ["errors_series_missing"]
        assert ingest["metrics"]["errors"] is None


# =============================================================================
# Errors
# =============================================================================

class TestErrors:

    @pytest.mark.parametrize("run_id", ["", "   ", "../etc", "a/b", "a\\b"])
    def test_invalid_run_id(self, service, run_id):
        with pytest.raises(InvalidRequestError):
            service.get_state(run_id, 0)

    def test_unknown_run(self, service):
        with pytest.raises(NotFoundError):
            service.get_state("missing", 0)

    def test_missing_run_json(self, run_builder, service):
        run_dir = run_builder.create_standard()
        (run_dir / "run.json").unlink()

        with pytest.raises(NotFoundError):
            service.get_state("run_test", 0)

    def test_missing_model(self, run_builder, service):
        run_dir = run_builder.create_standard()
        (run_dir / "model" / "model.yaml").unlink()

        with pytest.raises(NotFoundError):
            service.get_state("run_test", 0)

    def test_unparseable_model(self, run_builder, service):
        run_builder.create("run_bad", model_text="grid: [unclosed\n")

        with pytest.raises(ConflictError):
            service.get_state("run_bad", 0)

    def test_edge_to_unknown_node_rejected(self, run_builder, service):
        run_builder.create_standard(
            edges=[{"id": "ghost_edge", "from": "ghost:out", "to": "buffer:in", "field": "attempts"}],
        )

        with pytest.raises(ConflictError):
            service.get_state_window("run_test", 0, 1)

    def test_missing_metadata_json(self, run_builder, service):
        run_builder.create_standard(write_metadata=False)

        with pytest.raises(ConflictError):
            service.get_state("run_test", 0)

    def test_provenance_mismatch(self, run_builder, service):
        run_builder.create_standard(model_hash="sha256:not-the-model")

        with pytest.raises(ConflictError) as exc_info:
            service.get_state("run_test", 0)
        assert exc_info.value.error_code == "provenance_mismatch"

    def test_provenance_match(self, run_builder, service):
        run_builder.create_standard(model_hash="SHA256:ABC", metadata={"modelHash": "sha256:abc"})

        assert service.get_state("run_test", 0).metadata.provenance_hash == "sha256:abc"

    def test_no_topology(self, run_builder, service):
        run_builder.create("run_flat", include_topology=False)

        with pytest.raises(PreconditionFailedError) as exc_info:
            service.get_state("run_flat", 0)
        assert exc_info.value.status_code == 412

    def test_mode_validation_failure(self, run_builder, service):
        run_builder.create(
            "run_partial",
            topology_nodes=[service_node("svc", arrivals="file:a.csv")],
            model_files={"a.csv": [1, 2, 3, 4]},
        )

        with pytest.raises(UnprocessableEntityError) as exc_info:
            service.get_state("run_partial", 0)
        assert exc_info.value.error_code == "mode_validation_failed"

    def test_range_checked_before_validation(self, run_builder, service):
        run_builder.create(
            "run_partial",
            topology_nodes=[queue_node("q", arrivals="file:a.csv")],
            model_files={"a.csv": [1, 2, 3, 4]},
        )

        with pytest.raises(InvalidRequestError):
            service.get_state("run_partial", 9)

    def test_validator_error_code_is_surfaced(self, run_builder, service):
        run_builder.create_standard()

        with patch.object(ModeValidator, "validate",
                          return_value=ModeValidationResult.with_error("custom_check", "Rejected")):
            with pytest.raises(UnprocessableEntityError) as exc_info:
                service.get_state_window("run_test", 0, 1)

        assert exc_info.value.error_code == "custom_check"
        assert exc_info.value.message == "Rejected"

    @pytest.mark.parametrize("bin_index", [-1, 4])
    def test_bin_out_of_range(self, run_builder, service, bin_index):
        run_builder.create_standard()

        with pytest.raises(InvalidRequestError):
            service.get_state("run_test", bin_index)

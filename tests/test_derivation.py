"""
Unit Tests for series derivation and coloring rules
"""
import math

import pytest

from flowstate.core.models import NodeData, NodeKind
from flowstate.state.coloring import pick_color, pick_queue_color, pick_service_color
from flowstate.state.derivation import (
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


class TestRetrySignals:

    def test_attempts_derived_from_served_and_failures(self):
        data = NodeData("svc", served=[10, 20], failures=[2, 0])

        assert [attempts_at(data, i) for i in range(2)] == [12, 20]

    def test_attempts_recorded_wins(self):
        data = NodeData("svc", served=[10], failures=[2], attempts=[15])

        assert attempts_at(data, 0) == 15

    def test_attempts_not_derived_when_disallowed(self):
        data = NodeData("svc", served=[10], failures=[2])

        assert attempts_at(data, 0, allow_derived=False) is None

    def test_failures_fall_back_to_errors(self):
        data = NodeData("svc", served=[10], errors=[3])

        assert failures_at(data, 0) == 3
        assert attempts_at(data, 0) == 13

    def test_attempts_none_when_inputs_missing(self):
        data = NodeData("svc", served=[math.nan])

        assert attempts_at(data, 0) is None

    def test_retry_echo_convolves_failures(self):
        data = NodeData("svc", failures=[10, 20, 30])
        kernel = [0.0, 0.6, 0.3, 0.1]

        assert retry_echo_at(data, 0, kernel) == 0.0
        assert retry_echo_at(data, 1, kernel) == pytest.approx(6.0)
        assert retry_echo_at(data, 2, kernel) == pytest.approx(12.0 + 3.0)

    def test_retry_echo_recorded_and_missing(self):
        assert retry_echo_at(NodeData("svc", retry_echo=[4.0]), 0, [1.0]) == 4.0
        assert retry_echo_at(NodeData("svc"), 0, [0.0, 1.0]) is None
        assert retry_echo_at(NodeData("svc", failures=[1.0]), 0, None) is None


class TestScalarFormulas:

    def test_utilization(self):
        assert utilization(50, 100) == 0.5
        assert utilization(50, 0) is None
        assert utilization(None, 100) is None

    def test_queue_latency(self):
        assert queue_latency_minutes(15, 90, 60) == pytest.approx(10.0)
        assert queue_latency_minutes(15, 0, 60) is None

    def test_utilization_rejects_negative_capacity(self):
        assert utilization(50, -100) is None

    def test_queue_latency_rejects_negative_served(self):
        assert queue_latency_minutes(10, -5, 60) is None

    def test_service_time(self):
        assert service_time_ms(1000, 4) == 250
        assert service_time_ms(0, 0) == 0.0
        assert service_time_ms(500, 0) == 500
        assert service_time_ms(None, 4) is None

    def test_throughput_ratio_zero_arrivals_is_none(self):
        assert throughput_ratio(0, 5) is None
        assert throughput_ratio(100, 96) == pytest.approx(0.96)

    def test_retry_tax_boundaries(self):
        assert retry_tax(0, 0) is None
        assert retry_tax(10, 10) == 0.0
        assert retry_tax(10, 12) == 0.0
        assert retry_tax(10, 8) == pytest.approx(0.2)

    def test_series_helpers_normalize(self):
        assert slice_series([1.0, math.nan, 3.0000001], 1, 3) == [None, 3.0, None]
        assert series_over(lambda i: i / 3, 0, 2) == [0.0, 0.333333]


class TestColoring:

    @pytest.mark.parametrize("util,expected", [
        (None, "gray"), (0.5, "green"), (0.7, "yellow"), (0.89, "yellow"), (0.9, "red"),
    ])
    def test_service_bands(self, util, expected):
        assert pick_service_color(util) == expected

    @pytest.mark.parametrize("latency,sla,expected", [
        (10, 30, "green"), (30, 30, "green"), (45, 30, "yellow"), (46, 30, "red"),
        (None, 30, "gray"), (10, None, "gray"), (10, 0, "gray"),
    ])
    def test_queue_bands(self, latency, sla, expected):
        assert pick_queue_color(latency, sla) == expected

    def test_computed_kinds_are_gray(self):
        assert pick_color(NodeKind.EXPR, 0.1, None, None) == "gray"
        assert pick_color(NodeKind.QUEUE, None, 5, 10) == "green"

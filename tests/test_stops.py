"""Tests for the two-state stop detector."""

from __future__ import annotations

import logging

import pytest

from conftest import T0, make_sample, scenario_samples
from fleet_telemetry.errors import InvalidInputError
from fleet_telemetry.models import StopType
from fleet_telemetry.route import reconstruct_route
from fleet_telemetry.stops import detect_stops, trailing_stop_start


def _ten_minute_stop():
    return reconstruct_route(
        [
            make_sample(35.0, 139.0, -60, 30.0),
            make_sample(35.0, 139.0, 0, 0.0),
            make_sample(35.0, 139.0, 300, 0.0),
            make_sample(35.0, 139.0, 600, 0.0),
            make_sample(35.001, 139.0, 660, 30.0),
        ],
        "V1",
    )


def test_ten_minute_stop_is_detected_once() -> None:
    stops = detect_stops(_ten_minute_stop(), speed_threshold_kmh=5, min_duration_s=300)
    assert len(stops) == 1
    stop = stops[0]
    assert stop.duration_minutes == pytest.approx(10.0)
    assert stop.arrival_time == T0
    assert stop.stop_type is StopType.UNPLANNED
    assert stop.position == (35.0, 139.0)


def test_same_pattern_with_fifteen_minute_minimum_yields_nothing(caplog) -> None:
    with caplog.at_level(logging.DEBUG, logger="fleet_telemetry.stops"):
        stops = detect_stops(_ten_minute_stop(), speed_threshold_kmh=5, min_duration_s=900)
    assert stops == []
    assert "Discarded 1 short stationary runs" in caplog.text


def test_scenario_stop_spans_zero_to_six_hundred_seconds() -> None:
    stops = detect_stops(reconstruct_route(scenario_samples(), "V1"))
    assert len(stops) == 1
    assert (stops[0].departure_time - stops[0].arrival_time).total_seconds() == 600.0


def test_unterminated_run_is_not_emitted_but_reported_separately() -> None:
    route = reconstruct_route(
        [
            make_sample(35.0, 139.0, 0, 40.0),
            make_sample(35.01, 139.0, 60, 3.0),
            make_sample(35.01, 139.0, 1200, 0.0),
        ],
        "V1",
    )
    assert detect_stops(route) == []
    assert trailing_stop_start(route) == T0.replace(minute=1)


def test_trailing_stop_start_is_none_when_moving() -> None:
    route = reconstruct_route(scenario_samples(), "V1")
    assert trailing_stop_start(route) is None


def test_speed_at_threshold_counts_as_moving() -> None:
    route = reconstruct_route(
        [
            make_sample(35.0, 139.0, 0, 5.0),
            make_sample(35.0, 139.0, 600, 5.0),
            make_sample(35.0, 139.0, 1200, 5.0),
        ],
        "V1",
    )
    assert detect_stops(route) == []


def test_classifier_assigns_stop_type() -> None:
    stops = detect_stops(_ten_minute_stop(), classifier=lambda stop: StopType.LOADING)
    assert [s.stop_type for s in stops] == [StopType.LOADING]


def test_invalid_parameters_raise() -> None:
    with pytest.raises(InvalidInputError):
        detect_stops(_ten_minute_stop(), speed_threshold_kmh=0)
    with pytest.raises(InvalidInputError):
        detect_stops(_ten_minute_stop(), min_duration_s=-1)

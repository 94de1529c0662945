"""End-to-end tests for FleetAnalyticsService over the in-memory store."""

from __future__ import annotations

import logging
import threading
from datetime import timedelta

import pytest

from conftest import NOW, T0, make_sample, scenario_samples
from fleet_telemetry.errors import (
    ConfigurationError,
    InvalidInputError,
    QueryCancelledError,
    StoreUnavailableError,
    TelemetryError,
)
from fleet_telemetry.geodesy import distance_km
from fleet_telemetry.geofence import CircleGeofence
from fleet_telemetry.models import EventType, RejectionReason, TimeRange, TrackingStatus
from fleet_telemetry.queries import (
    AreaQuery,
    FleetQuery,
    GeofenceScanQuery,
    HeatmapQuery,
    RouteQuery,
    StatisticsQuery,
    VisitQuery,
)
from fleet_telemetry.services import FleetAnalyticsService
from fleet_telemetry.settings import AnalyticsSettings
from fleet_telemetry.store import InMemoryGeofenceCatalog, InMemoryVehicleCatalog


def _load(service, samples):
    results = service.ingest_many(samples)
    assert all(r.accepted for r in results)


def test_end_to_end_scenario(service, day_window) -> None:
    _load(service, scenario_samples())
    route = service.reconstruct_route(RouteQuery("V1", day_window))
    stops = service.detect_stops(RouteQuery("V1", day_window))
    assert len(stops) == 1
    assert stops[0].arrival_time == T0
    assert stops[0].departure_time == T0 + timedelta(seconds=600)
    assert stops[0].duration_minutes == pytest.approx(10.0)
    assert route.total_distance_km == pytest.approx(
        distance_km((35.0, 139.0), (35.01, 139.0))
    )
    assert route.points[2].speed_calculated_kmh > 0


def test_ingest_accepts_raw_payloads_and_reports_rejections(service, sample_store, caplog) -> None:
    payload = {
        "vehicleId": "V1",
        "latitude": 35.0,
        "longitude": 139.0,
        "speedKmh": 12.5,
        "recordedAt": T0.isoformat(),
    }
    assert service.ingest(payload).accepted
    with caplog.at_level(logging.WARNING):
        rejected = service.ingest(make_sample(lat=100.0))
    assert rejected.rejection is RejectionReason.INVALID_COORDINATES
    assert "INVALID_COORDINATES" in caplog.text
    assert len(sample_store) == 1
    with pytest.raises(InvalidInputError):
        service.ingest({"vehicleId": "V1", "recordedAt": T0.isoformat()})


def test_ingest_stamps_received_at(service, sample_store, day_window) -> None:
    result = service.ingest(make_sample(35.0, 139.0, 0, 10.0))
    assert result.sample.received_at == NOW
    payload = {
        "vehicleId": "V1",
        "latitude": 35.001,
        "longitude": 139.0,
        "recordedAt": (T0 + timedelta(seconds=60)).isoformat(),
        "createdAt": (T0 + timedelta(seconds=65)).isoformat(),
    }
    assert service.ingest(payload).accepted
    stored = sample_store.query("V1", day_window)
    assert [s.received_at for s in stored] == [NOW, T0 + timedelta(seconds=65)]


def test_ingest_rejects_samples_before_registration(service) -> None:
    early = make_sample(offset_s=-500 * 86400)
    assert service.ingest(early).rejection is RejectionReason.INVALID_TIMESTAMP


def test_statistics_and_period_summaries(service, day_window) -> None:
    _load(service, scenario_samples())
    stats = service.compute_statistics(StatisticsQuery("V1", day_window, fuel_consumed_l=0.1))
    assert stats.stop_count == 1
    assert stats.fuel_efficiency_km_per_l == pytest.approx(stats.total_distance_km / 0.1)
    summaries = service.summarize_periods(StatisticsQuery("V1", day_window, period="day"))
    assert len(summaries) == 1
    assert summaries[0].statistics.sample_count == 3


def test_period_summaries_use_vehicle_timezone(service) -> None:
    # V2 is catalogued in Asia/Tokyo: 14:50 and 15:10 UTC straddle local midnight.
    base = (T0 - timedelta(days=1)).replace(hour=14, minute=50)
    for offset in (0, 1200):
        moment = (base - T0).total_seconds() + offset
        assert service.ingest(make_sample(35.0, 139.0, moment, 10.0, vehicle_id="V2")).accepted
    window = TimeRange(base - timedelta(hours=1), base + timedelta(hours=1))
    tokyo = service.summarize_periods(StatisticsQuery("V2", window))
    assert [s.period_start.isoformat() for s in tokyo] == [
        "2024-02-29T00:00:00+09:00",
        "2024-03-01T00:00:00+09:00",
    ]
    utc = service.summarize_periods(StatisticsQuery("V2", window, timezone="UTC"))
    assert len(utc) == 1


def test_geofence_scan_and_parallel_analysis(sample_store, vehicle_catalog, settings, day_window, caplog) -> None:
    depot = CircleGeofence("G1", "Depot", (35.01, 139.0), 0.5)
    service = FleetAnalyticsService(
        sample_store,
        vehicle_catalog,
        InMemoryGeofenceCatalog([depot]),
        settings=settings,
        clock=lambda: NOW,
    )
    _load(service, scenario_samples() + [make_sample(35.02, 139.0, 960, 95.0)])

    with caplog.at_level(logging.INFO, logger="FleetAnalyticsService"):
        events = service.scan_geofence_violations(GeofenceScanQuery("V1", day_window))
    assert [e.event_type for e in events] == [EventType.ENTER, EventType.EXIT, EventType.SPEEDING]
    assert "produced 3 geofence events" in caplog.text

    only_other = service.scan_geofence_violations(
        GeofenceScanQuery("V1", day_window, geofence_ids=("nope",))
    )
    assert [e.event_type for e in only_other] == [EventType.SPEEDING]

    analysis = service.analyze_route(StatisticsQuery("V1", day_window))
    assert analysis.statistics.sample_count == 4
    assert len(analysis.stops) == 1
    assert [e.event_type for e in analysis.events] == [e.event_type for e in events]
    assert analysis.route.total_distance_km == pytest.approx(analysis.statistics.total_distance_km)


def test_analyze_route_detects_stops_once(service, day_window, monkeypatch) -> None:
    import fleet_telemetry.services.analytics_service as analytics_module

    _load(service, scenario_samples())
    calls = []
    real_detect = analytics_module.detect_stops

    def counting_detect(*args, **kwargs):
        calls.append(args)
        return real_detect(*args, **kwargs)

    monkeypatch.setattr(analytics_module, "detect_stops", counting_detect)
    monkeypatch.setattr("fleet_telemetry.statistics.detect_stops", counting_detect)
    monkeypatch.setattr("fleet_telemetry.geofence.detect_stops", counting_detect)
    analysis = service.analyze_route(StatisticsQuery("V1", day_window))
    assert len(calls) == 1
    assert analysis.statistics.stop_count == len(analysis.stops) == 1


def test_fleet_statistics_and_violations(service, day_window) -> None:
    _load(service, scenario_samples() + [make_sample(35.02, 139.0, 960, 95.0)])
    _load(
        service,
        [
            make_sample(35.5, 139.0, 0, 90.0, vehicle_id="V2"),
            make_sample(35.51, 139.0, 60, 50.0, vehicle_id="V2"),
        ],
    )
    fleet = service.fleet_statistics(FleetQuery(day_window))
    assert fleet.vehicle_count == 2
    assert sorted(fleet.per_vehicle) == ["V1", "V2"]
    assert fleet.sample_count == 6
    assert fleet.max_speed_kmh == 95.0
    assert fleet.stop_count == 1

    only_v2 = service.fleet_statistics(FleetQuery(day_window, vehicle_ids=("V2",)))
    assert list(only_v2.per_vehicle) == ["V2"]
    assert only_v2.sample_count == 2

    events = service.scan_fleet_violations(FleetQuery(day_window))
    assert [(e.vehicle_id, e.event_type) for e in events] == [
        ("V2", EventType.SPEEDING),
        ("V1", EventType.SPEEDING),
    ]


def test_fleet_positions_report_every_vehicle(service) -> None:
    _load(
        service,
        [
            make_sample(35.0, 139.0, 7000, 20.0),
            make_sample(35.1, 139.0, 0, vehicle_id="V2"),
        ],
    )
    positions = service.fleet_positions()
    assert [(p.vehicle_id, p.plate_label, p.status) for p in positions] == [
        ("V1", "ABC-123", TrackingStatus.ACTIVE),
        ("V2", "XYZ-987", TrackingStatus.LOST_SIGNAL),
    ]
    assert positions[0].seconds_since_update == pytest.approx(200.0)
    assert positions[1].last_sample.latitude == 35.1

    requested = service.fleet_positions(vehicle_ids=["V9", "V1"])
    assert [p.vehicle_id for p in requested] == ["V1", "V9"]
    assert requested[1].last_sample is None
    assert requested[1].status is TrackingStatus.LOST_SIGNAL


def test_area_query_and_visit_plan(service, day_window) -> None:
    _load(
        service,
        [
            make_sample(35.001, 139.0, 0, vehicle_id="V1"),
            make_sample(35.5, 139.0, 0, vehicle_id="V2"),
        ],
    )
    near = service.find_vehicles_near(AreaQuery((35.0, 139.0), 2.0, day_window))
    assert [(n.vehicle_id, n.plate_label) for n in near] == [("V1", "ABC-123")]
    plan = service.optimize_visit_order(VisitQuery((35.0, 139.0), [(35.2, 139.0), (35.1, 139.0)]))
    assert plan.order == [1, 0]
    assert plan.estimated_minutes == pytest.approx(plan.total_distance_km / 36.0 * 60.0)


def test_heatmap_and_frequent_areas(service, day_window) -> None:
    _load(service, [make_sample(35.0012, 139.0012, i) for i in range(5)])
    _load(service, [make_sample(35.0512, 139.0012, i, vehicle_id="V2") for i in range(2)])
    fleet = service.build_heatmap(HeatmapQuery(day_window))
    assert [c.intensity for c in fleet] == [5, 2]
    single = service.build_heatmap(HeatmapQuery(day_window, vehicle_id="V2"))
    assert [c.intensity for c in single] == [2]
    areas = service.frequent_areas(HeatmapQuery(day_window, limit=1))
    assert len(areas) == 1
    assert areas[0].frequency == pytest.approx(5 / 7)


def test_tracking_info(service) -> None:
    _load(service, [make_sample(35.0, 139.0, 7000, 20.0)])
    info = service.tracking_info("V1", now=NOW)
    assert info.status is TrackingStatus.ACTIVE
    assert info.plate_label == "ABC-123"
    silent = service.tracking_info("V2", now=NOW)
    assert silent.status is TrackingStatus.LOST_SIGNAL


def test_tracking_info_falls_back_to_last_known_fix(service) -> None:
    _load(service, [make_sample(35.0, 139.0, -86400 * 2, 0.0)])
    info = service.tracking_info("V1", now=NOW)
    assert info.last_sample is not None
    assert info.status is TrackingStatus.LOST_SIGNAL
    assert info.seconds_since_update == pytest.approx(86400 * 2 + 7200)


def test_apply_retention(service, sample_store) -> None:
    _load(service, [make_sample(offset_s=0)])
    sample_store.append(make_sample(offset_s=-400 * 86400))
    assert service.apply_retention() == 1
    assert len(sample_store) == 1


def test_zero_retention_disables_purging(sample_store, vehicle_catalog) -> None:
    service = FleetAnalyticsService(
        sample_store,
        vehicle_catalog,
        InMemoryGeofenceCatalog(),
        settings=AnalyticsSettings(retention_days=0),
        clock=lambda: NOW,
    )
    _load(service, [make_sample(offset_s=0)])
    sample_store.append(make_sample(offset_s=-400 * 86400, vehicle_id="V2"))
    assert service.apply_retention() == 0
    assert len(sample_store) == 2
    assert service.tracking_info("V2").last_sample is not None


class _DownStore:
    def append(self, sample):
        raise ConnectionRefusedError("db down")

    def query(self, vehicle_id, time_range):
        raise TimeoutError("query timed out")

    def query_by_box(self, box, time_range):
        raise StoreUnavailableError("replica unavailable")

    def latest(self, vehicle_id, time_range):
        return None


def test_store_failures_surface_as_store_unavailable(vehicle_catalog, day_window, caplog) -> None:
    service = FleetAnalyticsService(
        _DownStore(), vehicle_catalog, InMemoryGeofenceCatalog(), clock=lambda: NOW
    )
    with caplog.at_level(logging.WARNING, logger="FleetAnalyticsService"):
        with pytest.raises(StoreUnavailableError):
            service.ingest(make_sample())
        with pytest.raises(StoreUnavailableError):
            service.reconstruct_route(RouteQuery("V1", day_window))
        with pytest.raises(StoreUnavailableError):
            service.find_vehicles_near(AreaQuery((35.0, 139.0), 1.0, day_window))
    assert "Store unavailable during append" in caplog.text
    with pytest.raises(TelemetryError):
        service.apply_retention()


def test_cancelled_queries_raise(service, day_window) -> None:
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(QueryCancelledError):
        service.reconstruct_route(RouteQuery("V1", day_window), cancel_event=cancel)
    with pytest.raises(QueryCancelledError):
        service.analyze_route(StatisticsQuery("V1", day_window), cancel_event=cancel)


def test_invalid_worker_count() -> None:
    with pytest.raises(ConfigurationError):
        FleetAnalyticsService(
            None, InMemoryVehicleCatalog(), InMemoryGeofenceCatalog(), max_workers=-1
        )


def test_fleet_listing_needs_store_support_or_explicit_ids(vehicle_catalog) -> None:
    service = FleetAnalyticsService(
        _DownStore(), vehicle_catalog, InMemoryGeofenceCatalog(), clock=lambda: NOW
    )
    with pytest.raises(TelemetryError):
        service.fleet_positions()
    positions = service.fleet_positions(vehicle_ids=["V1"])
    assert positions[0].status is TrackingStatus.LOST_SIGNAL

"""Tests for the in-memory store, catalogs and the cached vehicle catalog."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from conftest import T0, make_sample
from fleet_telemetry.geodesy import bounding_box
from fleet_telemetry.geofence import CircleGeofence
from fleet_telemetry.models import RejectionReason, TimeRange, VehicleInfo
from fleet_telemetry.store import (
    CachedVehicleCatalog,
    GeofenceCatalog,
    InMemoryGeofenceCatalog,
    InMemorySampleStore,
    InMemoryVehicleCatalog,
    SampleStore,
    VehicleCatalog,
)


def _window(start_s: float, end_s: float) -> TimeRange:
    return TimeRange(T0 + timedelta(seconds=start_s), T0 + timedelta(seconds=end_s))


def test_reference_implementations_satisfy_protocols() -> None:
    assert isinstance(InMemorySampleStore(), SampleStore)
    assert isinstance(InMemoryVehicleCatalog(), VehicleCatalog)
    assert isinstance(CachedVehicleCatalog(InMemoryVehicleCatalog()), VehicleCatalog)
    assert isinstance(InMemoryGeofenceCatalog(), GeofenceCatalog)


def test_query_is_time_ordered_and_windowed() -> None:
    store = InMemorySampleStore()
    for offset in (300, 0, 600, 120):
        assert store.append(make_sample(offset_s=offset)) is None
    store.append(make_sample(offset_s=60, vehicle_id="V2"))
    result = store.query("V1", _window(0, 300))
    assert [s.recorded_at for s in result] == [
        T0,
        T0 + timedelta(seconds=120),
        T0 + timedelta(seconds=300),
    ]
    assert store.query("missing", _window(0, 600)) == []
    assert len(store) == 5
    assert store.vehicle_ids() == ["V1", "V2"]


def test_invalid_samples_are_rejected() -> None:
    store = InMemorySampleStore()
    assert store.append(make_sample(lat=120.0)) is RejectionReason.INVALID_COORDINATES
    assert len(store) == 0


def test_box_query_and_latest() -> None:
    store = InMemorySampleStore(
        [
            make_sample(35.0, 139.0, 0),
            make_sample(35.5, 139.0, 60),
            make_sample(35.001, 139.0, 30, vehicle_id="V2"),
        ]
    )
    box = bounding_box((35.0, 139.0), 2.0)
    ids = sorted(s.vehicle_id for s in store.query_by_box(box, _window(0, 600)))
    assert ids == ["V1", "V2"]
    assert store.latest("V1", _window(0, 600)).latitude == 35.5
    assert store.latest("V1", _window(0, 30)).latitude == 35.0
    assert store.latest("V3", _window(0, 600)) is None


def test_purge_older_than() -> None:
    store = InMemorySampleStore(
        [make_sample(offset_s=s) for s in (0, 60, 120)] + [make_sample(offset_s=10, vehicle_id="V2")]
    )
    removed = store.purge_older_than(T0 + timedelta(seconds=61))
    assert removed == 3
    assert len(store) == 1
    assert store.vehicle_ids() == ["V1"]


def test_concurrent_appends_are_all_kept() -> None:
    store = InMemorySampleStore()
    with ThreadPoolExecutor(max_workers=8) as executor:
        list(executor.map(lambda i: store.append(make_sample(offset_s=i)), range(400)))
    result = store.query("V1", _window(0, 400))
    assert len(result) == 400
    times = [s.recorded_at for s in result]
    assert times == sorted(times)


def test_cached_catalog_hits_backend_once() -> None:
    calls = []

    class _Backend:
        def lookup(self, vehicle_id):
            calls.append(vehicle_id)
            return VehicleInfo(vehicle_id, "PLATE") if vehicle_id == "V1" else None

    cached = CachedVehicleCatalog(_Backend(), maxsize=4, ttl=60)
    assert cached.lookup("V1").plate_label == "PLATE"
    assert cached.lookup("V1").plate_label == "PLATE"
    assert cached.lookup("V9") is None
    assert cached.lookup("V9") is None
    assert calls == ["V1", "V9"]
    cached.invalidate("V1")
    cached.lookup("V1")
    assert calls == ["V1", "V9", "V1"]


def test_geofence_catalog_lists_active_only() -> None:
    active = CircleGeofence("G1", "Depot", (35.0, 139.0), 1.0)
    inactive = CircleGeofence("G2", "Old", (35.0, 139.0), 1.0, active=False)
    catalog = InMemoryGeofenceCatalog([active, inactive])
    assert list(catalog.list_active()) == [active]
    catalog.upsert(CircleGeofence("G2", "Old", (35.0, 139.0), 1.0))
    assert len(catalog.list_active()) == 2

"""Global pytest fixtures & helpers.

Adds project root to path and provides a fixed clock plus in-memory store,
catalog and service fixtures shared by the analytics tests.
"""
from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone
import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from fleet_telemetry.models import PositionSample, TimeRange, VehicleInfo
from fleet_telemetry.services import FleetAnalyticsService
from fleet_telemetry.settings import AnalyticsSettings
from fleet_telemetry.store import (
    InMemoryGeofenceCatalog,
    InMemorySampleStore,
    InMemoryVehicleCatalog,
)

T0 = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)
NOW = T0 + timedelta(hours=2)


# --- Factory helpers -------------------------------------------------
def make_sample(
    lat: float = 35.0,
    lon: float = 139.0,
    offset_s: float = 0.0,
    speed: float | None = None,
    vehicle_id: str = "V1",
    **extra,
) -> PositionSample:
    return PositionSample(
        vehicle_id=vehicle_id,
        latitude=lat,
        longitude=lon,
        recorded_at=T0 + timedelta(seconds=offset_s),
        speed_kmh=speed,
        **extra,
    )


def scenario_samples() -> list[PositionSample]:
    """Two stationary fixes ten minutes apart, then a move north at 40 km/h."""
    return [
        make_sample(35.0, 139.0, 0, 0.0),
        make_sample(35.0, 139.0, 600, 0.0),
        make_sample(35.01, 139.0, 900, 40.0),
    ]


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def sample_factory():
    return make_sample


@pytest.fixture
def settings() -> AnalyticsSettings:
    return AnalyticsSettings()


@pytest.fixture
def day_window() -> TimeRange:
    return TimeRange(T0 - timedelta(hours=1), T0 + timedelta(hours=3))


@pytest.fixture
def sample_store() -> InMemorySampleStore:
    return InMemorySampleStore()


@pytest.fixture
def vehicle_catalog() -> InMemoryVehicleCatalog:
    return InMemoryVehicleCatalog(
        [
            VehicleInfo("V1", "ABC-123", registration_date=datetime(2023, 1, 1)),
            VehicleInfo("V2", "XYZ-987", timezone="Asia/Tokyo"),
        ]
    )


@pytest.fixture
def geofence_catalog() -> InMemoryGeofenceCatalog:
    return InMemoryGeofenceCatalog()


@pytest.fixture
def service(sample_store, vehicle_catalog, geofence_catalog, settings):
    return FleetAnalyticsService(
        sample_store,
        vehicle_catalog,
        geofence_catalog,
        settings=settings,
        clock=lambda: NOW,
    )

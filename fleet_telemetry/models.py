"""Dataclasses and enums shared by every analytics component."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import math
from typing import Optional, Tuple

from .errors import InvalidInputError
from .utils import to_utc_aware

LatLon = Tuple[float, float]

MIN_LATITUDE = -90.0
MAX_LATITUDE = 90.0
MIN_LONGITUDE = -180.0
MAX_LONGITUDE = 180.0


def coordinates_in_range(latitude: float, longitude: float) -> bool:
    """True when both values are finite and inside the WGS84 ranges."""

    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return False
    return MIN_LATITUDE <= lat <= MAX_LATITUDE and MIN_LONGITUDE <= lon <= MAX_LONGITUDE


class RejectionReason(str, Enum):
    INVALID_COORDINATES = "INVALID_COORDINATES"
    INVALID_TIMESTAMP = "INVALID_TIMESTAMP"
    INVALID_MEASUREMENT = "INVALID_MEASUREMENT"
    LOW_ACCURACY = "LOW_ACCURACY"


class StopType(str, Enum):
    PLANNED = "PLANNED"
    UNPLANNED = "UNPLANNED"
    BREAK = "BREAK"
    LOADING = "LOADING"
    UNLOADING = "UNLOADING"


class EventType(str, Enum):
    ENTER = "ENTER"
    EXIT = "EXIT"
    SPEEDING = "SPEEDING"
    IDLE = "IDLE"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class TrackingStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    LOST_SIGNAL = "LOST_SIGNAL"


class QueryMode(str, Enum):
    """Which sample of a vehicle must fall inside a spatial query."""

    LATEST = "LATEST"
    ANY = "ANY"


@dataclass(frozen=True, slots=True)
class PositionSample:
    """One GPS fix as captured by a vehicle.

    Immutable once created; the store only appends and purges by age.
    ``recorded_at`` is the capture time, ``received_at`` the ingestion time.
    """

    vehicle_id: str
    latitude: float
    longitude: float
    recorded_at: datetime
    received_at: Optional[datetime] = None
    operation_id: Optional[str] = None
    altitude_m: Optional[float] = None
    speed_kmh: Optional[float] = None
    heading_deg: Optional[float] = None
    accuracy_m: Optional[float] = None

    def __post_init__(self) -> None:
        if not isinstance(self.recorded_at, datetime):
            raise InvalidInputError(
                f"recorded_at must be a datetime, got {type(self.recorded_at).__name__}"
            )
        if self.received_at is not None and not isinstance(self.received_at, datetime):
            raise InvalidInputError(
                f"received_at must be a datetime, got {type(self.received_at).__name__}"
            )
        object.__setattr__(self, "recorded_at", to_utc_aware(self.recorded_at))
        if self.received_at is not None:
            object.__setattr__(self, "received_at", to_utc_aware(self.received_at))

    @property
    def position(self) -> LatLon:
        return (self.latitude, self.longitude)

    @property
    def is_valid(self) -> bool:
        return coordinates_in_range(self.latitude, self.longitude)


@dataclass(frozen=True, slots=True)
class TimeRange:
    """Inclusive capture-time window."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        start = to_utc_aware(self.start)
        end = to_utc_aware(self.end)
        if start > end:
            raise InvalidInputError(f"Time range start {start} is after end {end}")
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    def contains(self, moment: datetime) -> bool:
        return self.start <= to_utc_aware(moment) <= self.end

    @property
    def duration_s(self) -> float:
        return (self.end - self.start).total_seconds()


@dataclass(frozen=True, slots=True)
class VehicleInfo:
    """Catalog entry used for labelling and validation bounds only."""

    vehicle_id: str
    plate_label: str
    registration_date: Optional[datetime] = None
    timezone: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Stop:
    vehicle_id: str
    latitude: float
    longitude: float
    arrival_time: datetime
    departure_time: datetime
    duration_s: float
    stop_type: StopType = StopType.UNPLANNED

    @property
    def position(self) -> LatLon:
        return (self.latitude, self.longitude)

    @property
    def duration_minutes(self) -> float:
        return self.duration_s / 60.0


@dataclass(frozen=True, slots=True)
class GeofenceEvent:
    """An alert derived from a vehicle's samples.

    ``geofence_id`` is ``None`` for fleet-wide speeding and idle events.
    ``magnitude`` is the quantity the severity was computed from (km/h over
    the limit, minutes over the idle ceiling, 0 for transitions).
    """

    vehicle_id: str
    event_type: EventType
    recorded_at: datetime
    latitude: float
    longitude: float
    severity: Severity
    geofence_id: Optional[str] = None
    geofence_name: Optional[str] = None
    speed_kmh: Optional[float] = None
    magnitude: float = 0.0
    message: str = ""


__all__ = [
    "LatLon",
    "PositionSample",
    "TimeRange",
    "VehicleInfo",
    "Stop",
    "GeofenceEvent",
    "RejectionReason",
    "StopType",
    "EventType",
    "Severity",
    "TrackingStatus",
    "QueryMode",
    "coordinates_in_range",
]

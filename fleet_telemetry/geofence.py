"""Geofence shapes and the violation scanner.

Circles test containment with the haversine distance. Polygons use the
even-odd ray-casting rule on raw (lat, lon) pairs treated as planar, which
holds up for fences spanning a few tens of kilometres and degrades beyond.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from shapely.geometry import Polygon
from shapely.validation import explain_validity

from .errors import InvalidInputError
from .geodesy import distance_km, is_valid_point, validate_point
from .models import EventType, GeofenceEvent, LatLon, Severity, Stop
from .route import Route, RoutePoint
from .settings import AnalyticsSettings
from .stops import detect_stops


class Geofence(ABC):
    """Named region evaluated against vehicle positions."""

    __slots__ = ()

    geofence_id: str
    name: str
    active: bool
    speed_limit_kmh: Optional[float]

    @abstractmethod
    def contains(self, point: LatLon) -> bool:
        raise NotImplementedError


def _check_identity(geofence_id: str, speed_limit_kmh: Optional[float]) -> None:
    if not geofence_id:
        raise InvalidInputError("Geofence requires an identifier")
    if speed_limit_kmh is not None and (
        not math.isfinite(speed_limit_kmh) or speed_limit_kmh <= 0
    ):
        raise InvalidInputError(
            f"Geofence {geofence_id} speed limit must be positive: {speed_limit_kmh}"
        )


@dataclass(frozen=True, slots=True)
class CircleGeofence(Geofence):
    geofence_id: str
    name: str
    center: LatLon
    radius_km: float
    active: bool = True
    speed_limit_kmh: Optional[float] = None

    def __post_init__(self) -> None:
        _check_identity(self.geofence_id, self.speed_limit_kmh)
        object.__setattr__(
            self, "center", validate_point(self.center, f"geofence {self.geofence_id} center")
        )
        if not math.isfinite(self.radius_km) or self.radius_km <= 0:
            raise InvalidInputError(
                f"Geofence {self.geofence_id} radius must be positive: {self.radius_km}"
            )

    def contains(self, point: LatLon) -> bool:
        return distance_km(point, self.center) <= self.radius_km


@dataclass(frozen=True, slots=True)
class PolygonGeofence(Geofence):
    """Simple polygon given as ordered (lat, lon) vertices.

    A closing vertex equal to the first one is accepted and dropped.
    """

    geofence_id: str
    name: str
    vertices: Tuple[LatLon, ...]
    active: bool = True
    speed_limit_kmh: Optional[float] = None

    def __post_init__(self) -> None:
        _check_identity(self.geofence_id, self.speed_limit_kmh)
        ring = [validate_point(v, f"geofence {self.geofence_id} vertex") for v in self.vertices]
        if len(ring) > 1 and ring[0] == ring[-1]:
            ring.pop()
        if len(ring) < 3:
            raise InvalidInputError(
                f"Geofence {self.geofence_id} needs at least 3 distinct vertices"
            )
        shape = Polygon([(lon, lat) for lat, lon in ring])
        if not shape.is_valid or shape.area <= 0:
            raise InvalidInputError(
                f"Geofence {self.geofence_id} polygon is malformed: {explain_validity(shape)}"
            )
        object.__setattr__(self, "vertices", tuple(ring))

    def contains(self, point: LatLon) -> bool:
        lat, lon = point
        inside = False
        j = len(self.vertices) - 1
        for i, (lat_i, lon_i) in enumerate(self.vertices):
            lat_j, lon_j = self.vertices[j]
            if (lat_i > lat) != (lat_j > lat):
                crossing = (lon_j - lon_i) * (lat - lat_i) / (lat_j - lat_i) + lon_i
                if lon < crossing:
                    inside = not inside
            j = i
        return inside


class GeofenceEngine:
    """Derive ENTER/EXIT, SPEEDING and IDLE events from one route.

    Containment is seeded from the first sample; only changes between
    consecutive samples emit transitions. Speeding uses the reported speed
    of each sample, so fixes without a speed reading never speed.
    """

    def __init__(self, settings: AnalyticsSettings | None = None) -> None:
        self.settings = settings or AnalyticsSettings()
        self._log = logging.getLogger(self.__class__.__name__)

    def scan(
        self,
        route: Route,
        geofences: Iterable[Geofence],
        stops: Sequence[Stop] | None = None,
    ) -> List[GeofenceEvent]:
        active = [g for g in geofences if g.active]
        events: List[GeofenceEvent] = []
        inside: Dict[str, bool] = {}

        for index, point in enumerate(route.points):
            for fence in active:
                now_inside = fence.contains(point.position)
                if index > 0 and now_inside != inside[fence.geofence_id]:
                    events.append(self._transition(route, point, fence, now_inside))
                inside[fence.geofence_id] = now_inside
            events.extend(self._speeding(route, point, active, inside))

        if stops is None:
            stops = detect_stops(
                route,
                speed_threshold_kmh=self.settings.stop_speed_threshold_kmh,
                min_duration_s=self.settings.min_stop_duration_s,
            )
        events.extend(self._idle(stop) for stop in stops if self._is_idle(stop))

        events.sort(key=lambda event: event.recorded_at)
        self._log.debug(
            "Scanned vehicle=%s against %d geofences: %d events",
            route.vehicle_id,
            len(active),
            len(events),
        )
        return events

    def _transition(
        self, route: Route, point: RoutePoint, fence: Geofence, entered: bool
    ) -> GeofenceEvent:
        event_type = EventType.ENTER if entered else EventType.EXIT
        return GeofenceEvent(
            vehicle_id=route.vehicle_id,
            event_type=event_type,
            recorded_at=point.recorded_at,
            latitude=point.sample.latitude,
            longitude=point.sample.longitude,
            severity=Severity.LOW,
            geofence_id=fence.geofence_id,
            geofence_name=fence.name,
            speed_kmh=point.sample.speed_kmh,
            message=f"{event_type.value.lower()} {fence.name}",
        )

    def _speeding(
        self,
        route: Route,
        point: RoutePoint,
        fences: Sequence[Geofence],
        inside: Dict[str, bool],
    ) -> List[GeofenceEvent]:
        speed = point.sample.speed_kmh
        if speed is None:
            return []
        limits: List[Tuple[Optional[Geofence], float]] = [
            (None, self.settings.speeding_ceiling_kmh)
        ]
        limits.extend(
            (fence, fence.speed_limit_kmh)
            for fence in fences
            if fence.speed_limit_kmh is not None and inside.get(fence.geofence_id)
        )
        events = []
        for fence, limit in limits:
            if speed <= limit:
                continue
            excess = speed - limit
            events.append(
                GeofenceEvent(
                    vehicle_id=route.vehicle_id,
                    event_type=EventType.SPEEDING,
                    recorded_at=point.recorded_at,
                    latitude=point.sample.latitude,
                    longitude=point.sample.longitude,
                    severity=self.settings.speeding_severity.classify(excess),
                    geofence_id=fence.geofence_id if fence else None,
                    geofence_name=fence.name if fence else None,
                    speed_kmh=speed,
                    magnitude=excess,
                    message=f"{speed:.1f} km/h over limit {limit:.1f} km/h",
                )
            )
        return events

    def _is_idle(self, stop: Stop) -> bool:
        return stop.duration_s > self.settings.idle_ceiling_s

    def _idle(self, stop: Stop) -> GeofenceEvent:
        minutes_over = (stop.duration_s - self.settings.idle_ceiling_s) / 60.0
        return GeofenceEvent(
            vehicle_id=stop.vehicle_id,
            event_type=EventType.IDLE,
            recorded_at=stop.arrival_time,
            latitude=stop.latitude,
            longitude=stop.longitude,
            severity=self.settings.idle_severity.classify(minutes_over),
            speed_kmh=0.0,
            magnitude=minutes_over,
            message=f"idle for {stop.duration_minutes:.1f} min",
        )


def fences_containing(point: LatLon, geofences: Iterable[Geofence]) -> List[Geofence]:
    """Active geofences whose region holds ``point``."""

    if not is_valid_point(point):
        raise InvalidInputError(f"Invalid point: {point!r}")
    return [g for g in geofences if g.active and g.contains(point)]


__all__ = [
    "CircleGeofence",
    "Geofence",
    "GeofenceEngine",
    "PolygonGeofence",
    "fences_containing",
]

"""Plain parameter structs accepted by ``FleetAnalyticsService``."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

from .models import LatLon, QueryMode, TimeRange


@dataclass(frozen=True, slots=True)
class RouteQuery:
    vehicle_id: str
    time_range: TimeRange
    operation_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class StatisticsQuery:
    """Route statistics, optionally bucketed by ``period`` (day/week/month).

    ``timezone`` overrides the vehicle's catalog zone for bucketing.
    """

    vehicle_id: str
    time_range: TimeRange
    operation_id: Optional[str] = None
    fuel_consumed_l: Optional[float] = None
    period: Optional[str] = None
    timezone: Optional[str] = None


@dataclass(frozen=True, slots=True)
class GeofenceScanQuery:
    """Scan against ``geofence_ids`` only, or every active geofence if empty."""

    vehicle_id: str
    time_range: TimeRange
    geofence_ids: Tuple[str, ...] = ()
    operation_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class FleetQuery:
    """Several vehicles over one window, each reduced on its own.

    An empty ``vehicle_ids`` means every vehicle the store knows about.
    ``geofence_ids`` narrows geofence scans as in ``GeofenceScanQuery``.
    """

    time_range: TimeRange
    vehicle_ids: Tuple[str, ...] = ()
    geofence_ids: Tuple[str, ...] = ()
    operation_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class AreaQuery:
    center: LatLon
    radius_km: float
    time_range: TimeRange
    mode: QueryMode = QueryMode.LATEST


@dataclass(frozen=True, slots=True)
class VisitQuery:
    start: LatLon
    destinations: Sequence[LatLon] = field(default_factory=tuple)
    planning_speed_kmh: Optional[float] = None


@dataclass(frozen=True, slots=True)
class HeatmapQuery:
    time_range: TimeRange
    vehicle_id: Optional[str] = None
    grid_size_deg: Optional[float] = None
    limit: Optional[int] = None


__all__ = [
    "AreaQuery",
    "FleetQuery",
    "GeofenceScanQuery",
    "HeatmapQuery",
    "RouteQuery",
    "StatisticsQuery",
    "VisitQuery",
]

"""Distance, speed and efficiency rollups over routes and calendar periods.

Pure reductions over already-validated samples. Speed aggregates only use
samples moving faster than 0 km/h so parked time does not drag the average
down. Periodic summaries bucket samples on calendar boundaries in the
vehicle's timezone (via pandas) and reduce each bucket independently, so
the distance between the last fix of one day and the first fix of the next
belongs to neither.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from .errors import InvalidInputError
from .models import PositionSample, Stop
from .route import Route, route_efficiency
from .settings import AnalyticsSettings, zone_info
from .stops import detect_stops

_LOG = logging.getLogger(__name__)

PERIOD_CODES = {"day": "D", "week": "W", "month": "M"}


@dataclass(slots=True)
class DataQuality:
    samples_with_speed: int = 0
    samples_with_accuracy: int = 0
    average_accuracy_m: Optional[float] = None
    low_accuracy_count: int = 0
    discarded_invalid: int = 0
    skipped_jumps: int = 0


@dataclass(slots=True)
class RouteStatistics:
    """Rollup for one route or one calendar bucket.

    ``insufficient_data`` is set when fewer than two valid samples exist;
    averages are then ``None`` rather than a misleading zero.
    """

    vehicle_id: str
    sample_count: int
    total_distance_km: float
    total_duration_s: float
    average_speed_kmh: Optional[float]
    max_speed_kmh: Optional[float]
    min_speed_kmh: Optional[float]
    stop_count: int
    idle_minutes: float
    estimated_idle_fuel_l: float
    efficiency: float
    fuel_efficiency_km_per_l: Optional[float] = None
    insufficient_data: bool = False
    data_quality: DataQuality = field(default_factory=DataQuality)

    @property
    def total_duration_minutes(self) -> float:
        return self.total_duration_s / 60.0


@dataclass(slots=True)
class FleetStatistics:
    """Totals over several vehicles, with each vehicle's own rollup."""

    vehicle_count: int
    sample_count: int
    total_distance_km: float
    average_speed_kmh: Optional[float]
    max_speed_kmh: Optional[float]
    stop_count: int
    idle_minutes: float
    per_vehicle: Dict[str, RouteStatistics] = field(default_factory=dict)


@dataclass(slots=True)
class PeriodSummary:
    period: str
    period_start: datetime
    period_end: datetime
    statistics: RouteStatistics


@dataclass(slots=True)
class HeatmapCell:
    latitude: float
    longitude: float
    intensity: int
    weight: float


@dataclass(slots=True)
class AreaVisit:
    latitude: float
    longitude: float
    visit_count: int
    frequency: float


def _data_quality(
    route: Route, settings: AnalyticsSettings, skipped_jumps: int = 0
) -> DataQuality:
    accuracies = [s.accuracy_m for s in route.samples if s.accuracy_m is not None]
    return DataQuality(
        samples_with_speed=sum(1 for s in route.samples if s.speed_kmh is not None),
        samples_with_accuracy=len(accuracies),
        average_accuracy_m=float(np.mean(accuracies)) if accuracies else None,
        low_accuracy_count=sum(
            1 for value in accuracies if value > settings.low_accuracy_ceiling_m
        ),
        discarded_invalid=route.discarded_count,
        skipped_jumps=skipped_jumps,
    )


def _moving_speeds(route: Route) -> np.ndarray:
    return np.asarray(
        [
            speed
            for speed in (p.effective_speed_kmh for p in route.points)
            if speed is not None and speed > 0
        ],
        dtype=float,
    )


def travelled_distance_km(route: Route, max_segment_km: float) -> tuple[float, int]:
    """Sum of segment lengths, skipping jumps of ``max_segment_km`` or more.

    Returns the distance and the number of skipped segments.
    """

    segments = np.asarray(
        [p.distance_from_previous_km for p in route.points[1:]], dtype=float
    )
    jumps = segments >= max_segment_km
    return float(segments[~jumps].sum()), int(jumps.sum())


def compute_statistics(
    route: Route,
    stops: Sequence[Stop] | None = None,
    fuel_consumed_l: float | None = None,
    settings: AnalyticsSettings | None = None,
) -> RouteStatistics:
    """Reduce ``route`` to its distance, speed, stop and efficiency figures.

    ``stops`` may be passed when the caller already ran the detector;
    otherwise it runs here with the thresholds from ``settings``.
    ``fuel_consumed_l`` is external fuel data; without a positive value the
    fuel efficiency stays ``None``.
    """

    settings = settings or AnalyticsSettings()
    if stops is None:
        stops = detect_stops(
            route,
            speed_threshold_kmh=settings.stop_speed_threshold_kmh,
            min_duration_s=settings.min_stop_duration_s,
        )

    moving = _moving_speeds(route)
    if moving.size:
        average = float(moving.mean())
        fastest = float(moving.max())
        slowest = float(moving.min())
    else:
        average = fastest = slowest = None

    idle_minutes = sum(stop.duration_minutes for stop in stops)
    distance, skipped = travelled_distance_km(route, settings.max_segment_km)
    if skipped:
        _LOG.debug(
            "Skipped %d GPS jumps >= %.1fkm for vehicle=%s",
            skipped,
            settings.max_segment_km,
            route.vehicle_id,
        )
    fuel_efficiency = None
    if fuel_consumed_l is not None and fuel_consumed_l > 0:
        fuel_efficiency = distance / fuel_consumed_l

    return RouteStatistics(
        vehicle_id=route.vehicle_id,
        sample_count=len(route.samples),
        total_distance_km=distance,
        total_duration_s=route.duration_s,
        average_speed_kmh=average,
        max_speed_kmh=fastest,
        min_speed_kmh=slowest,
        stop_count=len(stops),
        idle_minutes=idle_minutes,
        estimated_idle_fuel_l=idle_minutes * settings.idle_fuel_burn_l_per_min,
        efficiency=route_efficiency(distance, route.direct_distance_km),
        fuel_efficiency_km_per_l=fuel_efficiency,
        insufficient_data=not route.has_sufficient_data,
        data_quality=_data_quality(route, settings, skipped),
    )


def summarize_fleet(
    routes: Iterable[Route],
    settings: AnalyticsSettings | None = None,
) -> FleetStatistics:
    """Per-vehicle rollups plus fleet totals over several routes.

    Speed aggregates pool every vehicle's moving samples; distance and idle
    time are sums of the per-vehicle figures.
    """

    settings = settings or AnalyticsSettings()
    routes = list(routes)
    per_vehicle = {
        route.vehicle_id: compute_statistics(route, settings=settings)
        for route in routes
    }
    pooled = [_moving_speeds(route) for route in routes]
    moving = np.concatenate(pooled) if pooled else np.empty(0, dtype=float)
    return FleetStatistics(
        vehicle_count=sum(1 for route in routes if route.samples),
        sample_count=sum(s.sample_count for s in per_vehicle.values()),
        total_distance_km=sum(s.total_distance_km for s in per_vehicle.values()),
        average_speed_kmh=float(moving.mean()) if moving.size else None,
        max_speed_kmh=float(moving.max()) if moving.size else None,
        stop_count=sum(s.stop_count for s in per_vehicle.values()),
        idle_minutes=sum(s.idle_minutes for s in per_vehicle.values()),
        per_vehicle=per_vehicle,
    )


def _localize(moment: pd.Timestamp, tz_name: str) -> datetime:
    localized = moment.tz_localize(
        tz_name, ambiguous=False, nonexistent="shift_forward"
    )
    return localized.to_pydatetime()


def summarize_by_period(
    samples: Iterable[PositionSample],
    vehicle_id: str,
    period: str = "day",
    timezone: str | None = None,
    settings: AnalyticsSettings | None = None,
) -> List[PeriodSummary]:
    """Bucket a vehicle's samples by calendar ``period`` and reduce each.

    ``period`` is ``day``, ``week`` (Monday to Sunday) or ``month``;
    ``timezone`` defaults to the configured default zone.
    """

    code = PERIOD_CODES.get(period)
    if code is None:
        raise InvalidInputError(
            f"Unknown period '{period}' (expected one of {sorted(PERIOD_CODES)})"
        )
    settings = settings or AnalyticsSettings()
    tz_name = timezone or settings.default_timezone
    zone_info(tz_name)

    valid = sorted(
        (s for s in samples if s.vehicle_id == vehicle_id and s.is_valid),
        key=lambda s: s.recorded_at,
    )
    if not valid:
        return []

    frame = pd.DataFrame(
        {
            "position": np.arange(len(valid)),
            "recorded_at": pd.to_datetime([s.recorded_at for s in valid], utc=True),
        }
    )
    local = frame["recorded_at"].dt.tz_convert(tz_name).dt.tz_localize(None)
    frame["bucket"] = local.dt.to_period(code)

    summaries: List[PeriodSummary] = []
    for bucket, group in frame.groupby("bucket", sort=True):
        members = tuple(valid[int(i)] for i in group["position"])
        route = Route(vehicle_id=vehicle_id, samples=members)
        summaries.append(
            PeriodSummary(
                period=period,
                period_start=_localize(bucket.start_time, tz_name),
                period_end=_localize((bucket + 1).start_time, tz_name),
                statistics=compute_statistics(route, settings=settings),
            )
        )
    _LOG.debug(
        "Summarised %d samples for vehicle=%s into %d %s buckets (%s)",
        len(valid),
        vehicle_id,
        len(summaries),
        period,
        tz_name,
    )
    return summaries


def _grid_counts(
    samples: Iterable[PositionSample], grid_size_deg: float
) -> tuple[np.ndarray, np.ndarray, int]:
    if grid_size_deg <= 0:
        raise InvalidInputError(f"Grid size must be positive: {grid_size_deg}")
    positions = [s.position for s in samples if s.is_valid]
    if not positions:
        return np.empty((0, 2), dtype=np.int64), np.empty(0, dtype=np.int64), 0
    cells = np.floor(np.asarray(positions, dtype=float) / grid_size_deg).astype(np.int64)
    keys, counts = np.unique(cells, axis=0, return_counts=True)
    # Busiest cells first; np.unique already sorted the ties by cell.
    order = np.argsort(-counts, kind="stable")
    return keys[order], counts[order], len(positions)


def build_heatmap(
    samples: Iterable[PositionSample], grid_size_deg: float = 0.01
) -> List[HeatmapCell]:
    """Sample density per grid cell, keyed by the cell's south-west corner."""

    keys, counts, _ = _grid_counts(samples, grid_size_deg)
    return [
        HeatmapCell(
            latitude=round(float(lat) * grid_size_deg, 6),
            longitude=round(float(lon) * grid_size_deg, 6),
            intensity=int(count),
            weight=min(int(count) / 10.0, 1.0),
        )
        for (lat, lon), count in zip(keys, counts)
    ]


def frequent_areas(
    samples: Iterable[PositionSample],
    limit: int = 20,
    grid_size_deg: float = 0.01,
) -> List[AreaVisit]:
    """Most visited grid cells with their share of all samples."""

    if limit <= 0:
        raise InvalidInputError(f"Limit must be positive: {limit}")
    keys, counts, total = _grid_counts(samples, grid_size_deg)
    return [
        AreaVisit(
            latitude=round(float(lat) * grid_size_deg, 6),
            longitude=round(float(lon) * grid_size_deg, 6),
            visit_count=int(count),
            frequency=int(count) / total,
        )
        for (lat, lon), count in zip(keys[:limit], counts[:limit])
    ]


__all__ = [
    "AreaVisit",
    "DataQuality",
    "FleetStatistics",
    "HeatmapCell",
    "PeriodSummary",
    "RouteStatistics",
    "build_heatmap",
    "compute_statistics",
    "frequent_areas",
    "summarize_by_period",
    "summarize_fleet",
    "travelled_distance_km",
]

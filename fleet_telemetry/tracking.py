"""Telemetry freshness and the live tracking snapshot of one vehicle.

Nothing here is stored; the status is recomputed from the last capture
time on every query.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .models import PositionSample, TrackingStatus, VehicleInfo
from .route import Route
from .settings import AnalyticsSettings
from .statistics import compute_statistics
from .stops import trailing_stop_start
from .utils import seconds_between, to_utc_aware


@dataclass(slots=True)
class VehicleTrackingInfo:
    vehicle_id: str
    status: TrackingStatus
    plate_label: Optional[str] = None
    last_sample: Optional[PositionSample] = None
    seconds_since_update: Optional[float] = None
    is_moving: bool = False
    today_distance_km: float = 0.0
    today_average_speed_kmh: Optional[float] = None
    today_max_speed_kmh: Optional[float] = None
    efficiency: float = 100.0
    stopped_since: Optional[datetime] = None


@dataclass(slots=True)
class VehiclePosition:
    """Latest known fix and freshness of one vehicle in a fleet listing."""

    vehicle_id: str
    status: TrackingStatus
    plate_label: Optional[str] = None
    last_sample: Optional[PositionSample] = None
    seconds_since_update: Optional[float] = None


def classify_tracking_status(
    last_seen: datetime | None,
    now: datetime,
    settings: AnalyticsSettings | None = None,
) -> TrackingStatus:
    """ACTIVE, INACTIVE or LOST_SIGNAL from the age of the last sample."""

    settings = settings or AnalyticsSettings()
    if last_seen is None:
        return TrackingStatus.LOST_SIGNAL
    age = seconds_between(to_utc_aware(last_seen), to_utc_aware(now))
    if age < settings.active_threshold_s:
        return TrackingStatus.ACTIVE
    if age < settings.inactive_threshold_s:
        return TrackingStatus.INACTIVE
    return TrackingStatus.LOST_SIGNAL


def build_tracking_info(
    route: Route,
    now: datetime,
    vehicle: VehicleInfo | None = None,
    settings: AnalyticsSettings | None = None,
) -> VehicleTrackingInfo:
    """Snapshot of ``route`` (normally today's samples) as seen at ``now``.

    ``is_moving`` looks at the recent window only; ``stopped_since`` is the
    start of a below-threshold run still open at the last sample.
    """

    settings = settings or AnalyticsSettings()
    now = to_utc_aware(now)
    last = route.samples[-1] if route.samples else None
    info = VehicleTrackingInfo(
        vehicle_id=route.vehicle_id,
        status=classify_tracking_status(last.recorded_at if last else None, now, settings),
        plate_label=vehicle.plate_label if vehicle is not None else None,
        last_sample=last,
    )
    if last is None:
        return info

    info.seconds_since_update = seconds_between(last.recorded_at, now)
    window_start = now - timedelta(seconds=settings.moving_window_s)
    info.is_moving = any(
        point.recorded_at >= window_start
        and (point.effective_speed_kmh or 0.0) > settings.stop_speed_threshold_kmh
        for point in route.points
    )
    stats = compute_statistics(route, settings=settings)
    info.today_distance_km = stats.total_distance_km
    info.today_average_speed_kmh = stats.average_speed_kmh
    info.today_max_speed_kmh = stats.max_speed_kmh
    info.efficiency = stats.efficiency
    info.stopped_since = trailing_stop_start(route, settings.stop_speed_threshold_kmh)
    return info


def build_vehicle_position(
    vehicle_id: str,
    last_sample: PositionSample | None,
    now: datetime,
    vehicle: VehicleInfo | None = None,
    settings: AnalyticsSettings | None = None,
) -> VehiclePosition:
    now = to_utc_aware(now)
    last_seen = last_sample.recorded_at if last_sample is not None else None
    return VehiclePosition(
        vehicle_id=vehicle_id,
        status=classify_tracking_status(last_seen, now, settings),
        plate_label=vehicle.plate_label if vehicle is not None else None,
        last_sample=last_sample,
        seconds_since_update=(
            seconds_between(last_seen, now) if last_seen is not None else None
        ),
    )


__all__ = [
    "VehiclePosition",
    "VehicleTrackingInfo",
    "build_tracking_info",
    "build_vehicle_position",
    "classify_tracking_status",
]

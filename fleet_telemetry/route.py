"""Route reconstruction from ordered position samples."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from functools import cached_property
import logging
from typing import Iterable, List, Optional, Tuple

import polyline

from .geodesy import distance_km
from .models import LatLon, PositionSample, TimeRange

_LOG = logging.getLogger(__name__)


def route_efficiency(total_distance_km: float, direct_distance_km: float) -> float:
    """Direct distance as a percentage of the travelled path, capped at 100.

    A stationary route (no travelled distance) is 100 by convention.
    """

    if total_distance_km <= 0:
        return 100.0
    return max(0.0, min(100.0, direct_distance_km / total_distance_km * 100.0))


@dataclass(frozen=True, slots=True)
class RoutePoint:
    """A sample annotated with the segment leading to it."""

    sample: PositionSample
    distance_from_previous_km: float = 0.0
    time_from_previous_s: float = 0.0
    speed_calculated_kmh: Optional[float] = None

    @property
    def position(self) -> LatLon:
        return self.sample.position

    @property
    def recorded_at(self) -> datetime:
        return self.sample.recorded_at

    @property
    def effective_speed_kmh(self) -> Optional[float]:
        """Reported speed, falling back to the speed derived from the segment."""

        if self.sample.speed_kmh is not None:
            return self.sample.speed_kmh
        return self.speed_calculated_kmh


@dataclass(frozen=True)
class Route:
    """Time-ordered valid samples of one vehicle.

    Invalid samples are dropped on construction and the rest stably sorted
    by capture time. Segment metrics are folded lazily on first access and
    cached for the lifetime of this instance.
    """

    vehicle_id: str
    samples: Tuple[PositionSample, ...]
    operation_id: Optional[str] = None
    time_range: Optional[TimeRange] = None
    discarded_count: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        raw = tuple(self.samples)
        valid = [s for s in raw if s.is_valid]
        ordered = tuple(sorted(valid, key=lambda s: s.recorded_at))
        object.__setattr__(self, "samples", ordered)
        object.__setattr__(self, "discarded_count", len(raw) - len(ordered))

    @cached_property
    def points(self) -> List[RoutePoint]:
        points: List[RoutePoint] = []
        previous: PositionSample | None = None
        for sample in self.samples:
            if previous is None:
                points.append(RoutePoint(sample=sample))
            else:
                dist = distance_km(previous.position, sample.position)
                elapsed = (sample.recorded_at - previous.recorded_at).total_seconds()
                speed = dist / elapsed * 3600.0 if elapsed > 0 else None
                points.append(
                    RoutePoint(
                        sample=sample,
                        distance_from_previous_km=dist,
                        time_from_previous_s=elapsed,
                        speed_calculated_kmh=speed,
                    )
                )
            previous = sample
        return points

    @property
    def has_sufficient_data(self) -> bool:
        return len(self.samples) >= 2

    @property
    def positions(self) -> List[LatLon]:
        return [s.position for s in self.samples]

    @property
    def start_time(self) -> Optional[datetime]:
        return self.samples[0].recorded_at if self.samples else None

    @property
    def end_time(self) -> Optional[datetime]:
        return self.samples[-1].recorded_at if self.samples else None

    @cached_property
    def total_distance_km(self) -> float:
        return sum(p.distance_from_previous_km for p in self.points)

    @cached_property
    def direct_distance_km(self) -> float:
        if not self.has_sufficient_data:
            return 0.0
        return distance_km(self.samples[0].position, self.samples[-1].position)

    @cached_property
    def duration_s(self) -> float:
        if not self.has_sufficient_data:
            return 0.0
        return (self.samples[-1].recorded_at - self.samples[0].recorded_at).total_seconds()

    @cached_property
    def efficiency(self) -> float:
        return route_efficiency(self.total_distance_km, self.direct_distance_km)

    @cached_property
    def average_speed_kmh(self) -> Optional[float]:
        """Distance over elapsed time; ``None`` when it cannot be defined."""

        if not self.has_sufficient_data or self.duration_s <= 0:
            return None
        return self.total_distance_km / self.duration_s * 3600.0

    def simplified(self, keep_every: int = 10, min_points: int = 100) -> "Route":
        """Thin long routes for display, always keeping the final sample."""

        if keep_every <= 1 or len(self.samples) <= min_points:
            return self
        last = len(self.samples) - 1
        kept = tuple(
            s for i, s in enumerate(self.samples) if i % keep_every == 0 or i == last
        )
        return Route(
            vehicle_id=self.vehicle_id,
            samples=kept,
            operation_id=self.operation_id,
            time_range=self.time_range,
        )

    def encoded_polyline(self, precision: int = 5) -> str:
        """Google encoded polyline of the route geometry."""

        if not self.samples:
            return ""
        return polyline.encode(self.positions, precision)


def reconstruct_route(
    samples: Iterable[PositionSample],
    vehicle_id: str,
    operation_id: str | None = None,
    time_range: TimeRange | None = None,
) -> Route:
    """Assemble the route of ``vehicle_id`` from an arbitrary sample stream.

    Samples of other vehicles, other operations or outside the window are
    ignored; invalid samples are discarded by ``Route`` itself.
    """

    selected = []
    for sample in samples:
        if sample.vehicle_id != vehicle_id:
            continue
        if operation_id is not None and sample.operation_id != operation_id:
            continue
        if time_range is not None and not time_range.contains(sample.recorded_at):
            continue
        selected.append(sample)
    route = Route(
        vehicle_id=vehicle_id,
        samples=tuple(selected),
        operation_id=operation_id,
        time_range=time_range,
    )
    if route.discarded_count:
        _LOG.debug(
            "Discarded %d invalid samples for vehicle=%s",
            route.discarded_count,
            vehicle_id,
        )
    return route


__all__ = ["Route", "RoutePoint", "reconstruct_route", "route_efficiency"]

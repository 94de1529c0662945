"""Greedy nearest-neighbour ordering for multi-stop visits.

Quadratic in the number of destinations and meant for tens of stops, not
thousands. It is a heuristic; the plan is not guaranteed optimal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import List, Sequence

from .config import PLANNING_SPEED_KMH
from .errors import InvalidInputError
from .geodesy import distance_km, validate_point
from .models import LatLon

_LOG = logging.getLogger(__name__)


@dataclass(slots=True)
class VisitPlan:
    """Visiting order as indices into the input destinations.

    ``legs_km[i]`` is the distance travelled to reach ``stops[i]``.
    """

    start: LatLon
    order: List[int] = field(default_factory=list)
    stops: List[LatLon] = field(default_factory=list)
    legs_km: List[float] = field(default_factory=list)
    total_distance_km: float = 0.0
    estimated_minutes: float = 0.0


def optimize_visit_order(
    start: LatLon,
    destinations: Sequence[LatLon],
    planning_speed_kmh: float = PLANNING_SPEED_KMH,
) -> VisitPlan:
    """Visit the nearest unvisited destination next, ties to input order."""

    start = validate_point(start, "start")
    points = [validate_point(p, f"destination {i}") for i, p in enumerate(destinations)]
    if planning_speed_kmh <= 0:
        raise InvalidInputError(f"Planning speed must be positive: {planning_speed_kmh}")

    plan = VisitPlan(start=start)
    remaining = list(range(len(points)))
    current = start
    while remaining:
        best_index = remaining[0]
        best_distance = distance_km(current, points[best_index])
        for candidate in remaining[1:]:
            dist = distance_km(current, points[candidate])
            # Strict comparison keeps the earlier input on ties.
            if dist < best_distance:
                best_index, best_distance = candidate, dist
        remaining.remove(best_index)
        plan.order.append(best_index)
        plan.stops.append(points[best_index])
        plan.legs_km.append(best_distance)
        current = points[best_index]

    plan.total_distance_km = sum(plan.legs_km)
    plan.estimated_minutes = plan.total_distance_km / planning_speed_kmh * 60.0
    _LOG.debug(
        "Planned %d stops over %.2fkm (~%.0f min)",
        len(plan.order),
        plan.total_distance_km,
        plan.estimated_minutes,
    )
    return plan


__all__ = ["VisitPlan", "optimize_visit_order"]

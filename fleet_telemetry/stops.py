"""Stop detection over a reconstructed route.

A single forward scan with two states. The vehicle enters ``STOPPED`` on
the first point below the speed threshold and leaves it on the first point
at or above it. The run spans its first to last stationary fix and is
emitted as a ``Stop`` only when it lasted at least the minimum duration.
A run still open when the route ends has no departure time and is not
emitted; ``trailing_stop_start`` answers that question separately.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from enum import Enum
import logging
from typing import Callable, List, Optional

from .config import MIN_STOP_DURATION_SECONDS, STOP_SPEED_THRESHOLD_KMH
from .errors import InvalidInputError
from .models import Stop, StopType
from .route import Route, RoutePoint

_LOG = logging.getLogger(__name__)

StopClassifier = Callable[[Stop], StopType]


class MotionState(Enum):
    MOVING = "MOVING"
    STOPPED = "STOPPED"


def _is_below(point: RoutePoint, threshold_kmh: float) -> bool:
    # Missing speed counts as stationary, matching how devices report idling.
    speed = point.effective_speed_kmh
    return (speed or 0.0) < threshold_kmh


def detect_stops(
    route: Route,
    speed_threshold_kmh: float = STOP_SPEED_THRESHOLD_KMH,
    min_duration_s: float = MIN_STOP_DURATION_SECONDS,
    classifier: StopClassifier | None = None,
) -> List[Stop]:
    """Return the terminated stops of ``route`` in chronological order."""

    if speed_threshold_kmh <= 0:
        raise InvalidInputError(f"Speed threshold must be positive: {speed_threshold_kmh}")
    if min_duration_s < 0:
        raise InvalidInputError(f"Minimum duration must be >= 0: {min_duration_s}")

    stops: List[Stop] = []
    state = MotionState.MOVING
    run_start: RoutePoint | None = None
    run_last: RoutePoint | None = None
    discarded = 0

    for point in route.points:
        below = _is_below(point, speed_threshold_kmh)
        if state is MotionState.MOVING:
            if below:
                state = MotionState.STOPPED
                run_start = run_last = point
            continue
        if below:
            run_last = point
            continue
        assert run_start is not None and run_last is not None
        # The run spans its stationary fixes; the moving fix only closes it.
        duration = (run_last.recorded_at - run_start.recorded_at).total_seconds()
        if duration >= min_duration_s:
            stop = Stop(
                vehicle_id=route.vehicle_id,
                latitude=run_start.sample.latitude,
                longitude=run_start.sample.longitude,
                arrival_time=run_start.recorded_at,
                departure_time=run_last.recorded_at,
                duration_s=duration,
            )
            if classifier is not None:
                stop = _classified(stop, classifier)
            stops.append(stop)
        else:
            discarded += 1
        state = MotionState.MOVING
        run_start = run_last = None

    if discarded:
        _LOG.debug(
            "Discarded %d short stationary runs for vehicle=%s (min %.0fs)",
            discarded,
            route.vehicle_id,
            min_duration_s,
        )
    return stops


def trailing_stop_start(
    route: Route, speed_threshold_kmh: float = STOP_SPEED_THRESHOLD_KMH
) -> Optional[datetime]:
    """Start of the below-threshold run still open at the end of the route."""

    start: Optional[datetime] = None
    for point in reversed(route.points):
        if not _is_below(point, speed_threshold_kmh):
            break
        start = point.recorded_at
    return start


def _classified(stop: Stop, classifier: StopClassifier) -> Stop:
    stop_type = classifier(stop)
    if stop_type is stop.stop_type:
        return stop
    return replace(stop, stop_type=stop_type)


__all__ = ["MotionState", "StopClassifier", "detect_stops", "trailing_stop_start"]

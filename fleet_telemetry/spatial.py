"""Area queries: which vehicles were within a radius of a point.

Two phases, always both: the store narrows candidates with a bounding-box
range scan, then an exact haversine filter removes the box's corner false
positives.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math
import threading
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from .errors import InvalidInputError, QueryCancelledError
from .geodesy import (
    bearing_degrees,
    bearing_to_compass,
    bounding_box,
    distances_km_from,
    is_valid_point,
    validate_point,
)
from .models import LatLon, PositionSample, QueryMode, TimeRange
from .store.base import SampleStore, VehicleCatalog


@dataclass(slots=True)
class NearbyVehicle:
    vehicle_id: str
    sample: PositionSample
    distance_km: float
    plate_label: Optional[str] = None


@dataclass(slots=True)
class NearbyPoint:
    point: LatLon
    index: int
    distance_km: float
    bearing_deg: float
    compass: str


class SpatialIndex:
    """Radius search over a ``SampleStore`` with a box-capable range scan."""

    def __init__(
        self,
        store: SampleStore,
        vehicle_catalog: VehicleCatalog | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._catalog = vehicle_catalog
        self._log = logger or logging.getLogger(self.__class__.__name__)

    def find_vehicles_near(
        self,
        center: LatLon,
        radius_km: float,
        time_range: TimeRange,
        mode: QueryMode = QueryMode.LATEST,
        cancel_event: threading.Event | None = None,
    ) -> List[NearbyVehicle]:
        """Vehicles whose latest (or any) sample in the window is in range.

        Results are sorted by distance, then vehicle id.
        """

        center = validate_point(center, "center")
        if not isinstance(radius_km, (int, float)) or not math.isfinite(radius_km) or radius_km < 0:
            raise InvalidInputError(f"Radius must be a non-negative number: {radius_km!r}")
        mode = QueryMode(mode)

        box = bounding_box(center, radius_km)
        candidates = [s for s in self._store.query_by_box(box, time_range) if s.is_valid]
        _check_cancelled(cancel_event)

        if mode is QueryMode.LATEST:
            matches = self._latest_matches(center, radius_km, time_range, candidates, cancel_event)
        else:
            matches = _closest_matches(center, radius_km, candidates)

        results = [
            NearbyVehicle(
                vehicle_id=sample.vehicle_id,
                sample=sample,
                distance_km=dist,
                plate_label=self._plate(sample.vehicle_id),
            )
            for sample, dist in matches.values()
        ]
        results.sort(key=lambda item: (item.distance_km, item.vehicle_id))
        self._log.debug(
            "Area query center=%s radius=%.3fkm mode=%s: %d box candidates, %d vehicles",
            center,
            radius_km,
            mode.value,
            len(candidates),
            len(results),
        )
        return results

    def _latest_matches(
        self,
        center: LatLon,
        radius_km: float,
        time_range: TimeRange,
        candidates: Sequence[PositionSample],
        cancel_event: threading.Event | None,
    ) -> Dict[str, tuple[PositionSample, float]]:
        # Only vehicles with a box hit can have their latest fix in range.
        vehicle_ids = sorted({s.vehicle_id for s in candidates})
        latest: List[PositionSample] = []
        for vehicle_id in vehicle_ids:
            _check_cancelled(cancel_event)
            sample = self._store.latest(vehicle_id, time_range)
            if sample is not None and sample.is_valid:
                latest.append(sample)
        return _closest_matches(center, radius_km, latest)

    def _plate(self, vehicle_id: str) -> Optional[str]:
        if self._catalog is None:
            return None
        info = self._catalog.lookup(vehicle_id)
        return info.plate_label if info is not None else None


def _closest_matches(
    center: LatLon, radius_km: float, samples: Sequence[PositionSample]
) -> Dict[str, tuple[PositionSample, float]]:
    if not samples:
        return {}
    distances = distances_km_from(center, [s.position for s in samples])
    best: Dict[str, tuple[PositionSample, float]] = {}
    for index in np.flatnonzero(distances <= radius_km):
        sample = samples[int(index)]
        dist = float(distances[index])
        current = best.get(sample.vehicle_id)
        if current is None or dist < current[1]:
            best[sample.vehicle_id] = (sample, dist)
    return best


def _check_cancelled(cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise QueryCancelledError("Area query cancelled")


def nearest_points(
    target: LatLon, candidates: Iterable[LatLon], limit: int = 10
) -> List[NearbyPoint]:
    """Closest ``limit`` candidates to ``target`` with distance and bearing.

    Invalid candidates are skipped; ``index`` refers to the input order.
    """

    target = validate_point(target, "target")
    if limit <= 0:
        raise InvalidInputError(f"Limit must be positive: {limit}")
    indexed = [(i, validate_point(p)) for i, p in enumerate(candidates) if is_valid_point(p)]
    if not indexed:
        return []
    distances = distances_km_from(target, [p for _, p in indexed])
    order = np.argsort(distances, kind="stable")[:limit]
    results = []
    for position in order:
        index, point = indexed[int(position)]
        bearing = bearing_degrees(target, point)
        results.append(
            NearbyPoint(
                point=point,
                index=index,
                distance_km=float(distances[position]),
                bearing_deg=bearing,
                compass=bearing_to_compass(bearing),
            )
        )
    return results


__all__ = ["NearbyPoint", "NearbyVehicle", "SpatialIndex", "nearest_points"]

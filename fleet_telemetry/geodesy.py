"""Spherical geodesy helpers: distance, bearing and bounding boxes.

Pure functions over ``(lat, lon)`` tuples in degrees. Distances use the
haversine formula on a sphere of radius 6371 km; bounding boxes use the
flat-earth ``111.32 km per degree`` approximation and are deliberately
permissive so a range scan never misses a point inside the radius.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Iterable, Sequence

import numpy as np
from numpy.typing import NDArray

from .errors import InvalidInputError
from .models import (
    LatLon,
    MAX_LATITUDE,
    MAX_LONGITUDE,
    MIN_LATITUDE,
    MIN_LONGITUDE,
    coordinates_in_range,
)

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE = 111.32

# Widens the flat-earth deltas to cover the gap between 111.32 km/degree and
# the 6371 km haversine sphere (about 0.1%).
_BOX_PADDING = 1.01
# Below this cos(lat) the longitude delta is unbounded; use the full span.
_POLAR_COS_FLOOR = 1e-6

_COMPASS_16 = (
    "N", "NNE", "NE", "ENE", "E", "ESE", "SE", "SSE",
    "S", "SSW", "SW", "WSW", "W", "WNW", "NW", "NNW",
)
_COMPASS_8 = ("N", "NE", "E", "SE", "S", "SW", "W", "NW")


@dataclass(frozen=True, slots=True)
class BoundingBox:
    """Latitude/longitude rectangle with inclusive edges."""

    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, point: LatLon) -> bool:
        lat, lon = point
        return (
            self.min_lat <= lat <= self.max_lat
            and self.min_lon <= lon <= self.max_lon
        )

    @property
    def spans_all_longitudes(self) -> bool:
        return self.min_lon <= MIN_LONGITUDE and self.max_lon >= MAX_LONGITUDE


def is_valid_point(point: object) -> bool:
    try:
        lat, lon = point  # type: ignore[misc]
    except (TypeError, ValueError):
        return False
    return coordinates_in_range(lat, lon)


def validate_point(point: object, label: str = "point") -> LatLon:
    """Return ``point`` as floats or raise ``InvalidInputError``."""

    if not is_valid_point(point):
        raise InvalidInputError(f"Invalid {label} coordinates: {point!r}")
    lat, lon = point  # type: ignore[misc]
    return (float(lat), float(lon))


def distance_km(a: LatLon, b: LatLon) -> float:
    """Great-circle distance between two points in kilometres."""

    lat1, lon1 = a
    lat2, lon2 = b
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    sin_half_lat = math.sin((lat2_rad - lat1_rad) / 2.0)
    sin_half_lon = math.sin(math.radians(lon2 - lon1) / 2.0)
    h = sin_half_lat**2 + math.cos(lat1_rad) * math.cos(lat2_rad) * sin_half_lon**2
    # Rounding can push h a hair above 1 for antipodal points.
    h = min(1.0, max(0.0, h))
    return EARTH_RADIUS_KM * 2.0 * math.atan2(math.sqrt(h), math.sqrt(1.0 - h))


def distances_km_from(
    origin: LatLon, points: Sequence[LatLon] | NDArray[np.float64]
) -> NDArray[np.float64]:
    """Vectorised haversine distance from ``origin`` to every point."""

    array = np.asarray(points, dtype=float)
    if array.size == 0:
        return np.empty(0, dtype=float)
    if array.ndim != 2 or array.shape[1] != 2:
        raise ValueError("Expected a sequence of (lat, lon) pairs")
    lat1 = math.radians(origin[0])
    lon1 = math.radians(origin[1])
    lat2 = np.radians(array[:, 0])
    lon2 = np.radians(array[:, 1])
    h = (
        np.sin((lat2 - lat1) / 2.0) ** 2
        + math.cos(lat1) * np.cos(lat2) * np.sin((lon2 - lon1) / 2.0) ** 2
    )
    h = np.clip(h, 0.0, 1.0)
    return EARTH_RADIUS_KM * 2.0 * np.arctan2(np.sqrt(h), np.sqrt(1.0 - h))


def bearing_degrees(a: LatLon, b: LatLon) -> float:
    """Initial bearing from ``a`` to ``b``, clockwise from north, in [0, 360)."""

    lat1 = math.radians(a[0])
    lat2 = math.radians(b[0])
    delta_lon = math.radians(b[1] - a[1])
    y = math.sin(delta_lon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(
        delta_lon
    )
    bearing = math.degrees(math.atan2(y, x)) % 360.0
    # -0.0 % 360 and tiny negatives can round up to exactly 360.0
    return 0.0 if bearing >= 360.0 else bearing


def bearing_to_compass(bearing: float, points: int = 16) -> str:
    """Convert a bearing into a 16- or 8-point compass label."""

    if points == 16:
        labels = _COMPASS_16
    elif points == 8:
        labels = _COMPASS_8
    else:
        raise InvalidInputError(f"Compass must have 8 or 16 points, got {points}")
    step = 360.0 / len(labels)
    return labels[int(round((bearing % 360.0) / step)) % len(labels)]


def bounding_box(center: LatLon, radius_km: float) -> BoundingBox:
    """Return a rectangle containing every point within ``radius_km``.

    Permissive by construction: it may include points farther than the
    radius (near the poles or for large radii), so callers must apply an
    exact ``distance_km`` filter afterwards.
    """

    lat, lon = validate_point(center, "center")
    if radius_km is None or not math.isfinite(radius_km) or radius_km < 0:
        raise InvalidInputError(f"Invalid radius: {radius_km!r} km")

    lat_delta = radius_km / KM_PER_DEGREE * _BOX_PADDING
    min_lat = max(MIN_LATITUDE, lat - lat_delta)
    max_lat = min(MAX_LATITUDE, lat + lat_delta)

    full_span = (MIN_LONGITUDE, MAX_LONGITUDE)
    cos_lat = math.cos(math.radians(lat))
    angular = radius_km / EARTH_RADIUS_KM
    if (
        min_lat <= MIN_LATITUDE
        or max_lat >= MAX_LATITUDE
        or cos_lat < _POLAR_COS_FLOOR
        or math.sin(min(angular, math.pi / 2)) >= cos_lat
    ):
        min_lon, max_lon = full_span
    else:
        flat = radius_km / (KM_PER_DEGREE * cos_lat) * _BOX_PADDING
        exact = math.degrees(math.asin(math.sin(angular) / cos_lat))
        lon_delta = max(flat, exact)
        min_lon, max_lon = lon - lon_delta, lon + lon_delta
        if lon_delta >= 180.0 or min_lon < MIN_LONGITUDE or max_lon > MAX_LONGITUDE:
            # Crossing the antimeridian: widen rather than split the box.
            min_lon, max_lon = full_span
    return BoundingBox(min_lat=min_lat, max_lat=max_lat, min_lon=min_lon, max_lon=max_lon)


def bounding_box_of(points: Iterable[LatLon]) -> BoundingBox:
    """Tight rectangle around a collection of valid points."""

    valid = [p for p in points if is_valid_point(p)]
    if not valid:
        raise InvalidInputError("No valid coordinates to bound")
    lats = [p[0] for p in valid]
    lons = [p[1] for p in valid]
    return BoundingBox(min(lats), max(lats), min(lons), max(lons))


def center_point(points: Iterable[LatLon]) -> LatLon:
    """Arithmetic mean of valid points (adequate for local clusters)."""

    valid = [p for p in points if is_valid_point(p)]
    if not valid:
        raise InvalidInputError("No valid coordinates to average")
    array = np.asarray(valid, dtype=float)
    mean = array.mean(axis=0)
    return (float(mean[0]), float(mean[1]))


def path_length_km(points: Sequence[LatLon]) -> float:
    """Sum of haversine distances between consecutive points."""

    total = 0.0
    for previous, current in zip(points, points[1:]):
        total += distance_km(previous, current)
    return total


__all__ = [
    "EARTH_RADIUS_KM",
    "KM_PER_DEGREE",
    "BoundingBox",
    "bearing_degrees",
    "bearing_to_compass",
    "bounding_box",
    "bounding_box_of",
    "center_point",
    "distance_km",
    "distances_km_from",
    "is_valid_point",
    "path_length_km",
    "validate_point",
]

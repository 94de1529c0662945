"""Versioned payload adapters for the ingestion boundary.

Clients in the field still send three generations of the GPS payload:

* ``v1`` legacy: ``lat``/``lng``, ``speed``, ``accuracy``, ``timestamp``
* ``v2`` camelCase: ``vehicleId``, ``speedKmh``, ``accuracyMeters``,
  ``recordedAt``
* ``v3`` snake_case: ``vehicle_id``, ``speed_kmh``, ``accuracy_meters``,
  ``recorded_at``

Each generation is mapped onto the single canonical ``PositionSample``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Mapping, Tuple

from .errors import InvalidInputError
from .models import PositionSample
from .utils import coerce_float, parse_timestamp

# canonical field -> keys per payload generation, newest first
_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "vehicle_id": ("vehicle_id", "vehicleId"),
    "operation_id": ("operation_id", "operationId"),
    "latitude": ("latitude", "lat"),
    "longitude": ("longitude", "lng", "lon"),
    "altitude_m": ("altitude", "altitude_m"),
    "speed_kmh": ("speed_kmh", "speedKmh", "speed"),
    "heading_deg": ("heading", "heading_deg"),
    "accuracy_m": ("accuracy_meters", "accuracyMeters", "accuracy"),
    "recorded_at": ("recorded_at", "recordedAt", "timestamp"),
    "received_at": ("created_at", "createdAt", "received_at", "receivedAt"),
}

_SCHEMA_MARKERS: Dict[str, Tuple[str, ...]] = {
    "v3": ("vehicle_id", "recorded_at", "speed_kmh", "accuracy_meters"),
    "v2": ("vehicleId", "recordedAt", "speedKmh", "accuracyMeters"),
    "v1": ("lat", "lng", "timestamp"),
}


def detect_schema_version(payload: Mapping[str, Any]) -> str:
    """Return ``v1``/``v2``/``v3`` for the naming generation of ``payload``."""

    for version, markers in _SCHEMA_MARKERS.items():
        if any(key in payload for key in markers):
            return version
    raise InvalidInputError(
        f"Unrecognised GPS payload keys: {sorted(map(str, payload))}"
    )


def _pick(payload: Mapping[str, Any], field: str) -> Any:
    for key in _FIELD_ALIASES[field]:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def _optional_float(payload: Mapping[str, Any], field: str) -> float | None:
    raw = _pick(payload, field)
    if raw is None:
        return None
    value = coerce_float(raw)
    if value is None:
        raise InvalidInputError(f"Field '{field}' is not numeric: {raw!r}")
    return value


def _required_timestamp(payload: Mapping[str, Any], field: str) -> datetime:
    raw = _pick(payload, field)
    parsed = parse_timestamp(raw)
    if parsed is None:
        raise InvalidInputError(f"Field '{field}' is not a timestamp: {raw!r}")
    return parsed


def sample_from_payload(
    payload: Mapping[str, Any], vehicle_id: str | None = None
) -> PositionSample:
    """Map a raw payload of any supported generation to a ``PositionSample``.

    ``vehicle_id`` overrides the payload value for transports that carry the
    vehicle in the URL or session instead of the body. Coordinates are
    coerced but not range-checked; range checks belong to
    ``SampleValidator`` so out-of-range fixes are reported, not dropped.
    """

    if not isinstance(payload, Mapping):
        raise InvalidInputError(f"GPS payload must be a mapping, got {type(payload).__name__}")
    detect_schema_version(payload)

    resolved_vehicle = vehicle_id or _pick(payload, "vehicle_id")
    if resolved_vehicle is None or str(resolved_vehicle).strip() == "":
        raise InvalidInputError("GPS payload has no vehicle identifier")

    latitude = _optional_float(payload, "latitude")
    longitude = _optional_float(payload, "longitude")
    if latitude is None or longitude is None:
        raise InvalidInputError("GPS payload requires both latitude and longitude")

    received_raw = _pick(payload, "received_at")
    received_at = parse_timestamp(received_raw) if received_raw is not None else None
    operation = _pick(payload, "operation_id")

    return PositionSample(
        vehicle_id=str(resolved_vehicle),
        latitude=latitude,
        longitude=longitude,
        recorded_at=_required_timestamp(payload, "recorded_at"),
        received_at=received_at,
        operation_id=str(operation) if operation is not None else None,
        altitude_m=_optional_float(payload, "altitude_m"),
        speed_kmh=_optional_float(payload, "speed_kmh"),
        heading_deg=_optional_float(payload, "heading_deg"),
        accuracy_m=_optional_float(payload, "accuracy_m"),
    )


__all__ = ["detect_schema_version", "sample_from_payload"]

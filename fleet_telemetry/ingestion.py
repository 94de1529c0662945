"""Sample validation at the ingestion boundary.

Classifies a candidate ``PositionSample`` as accepted (optionally flagged)
or rejected with a ``RejectionReason``. Nothing is persisted here; callers
hand accepted samples to the sample store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
import math
from typing import Callable, FrozenSet

from .models import PositionSample, RejectionReason, VehicleInfo, coordinates_in_range
from .settings import AnalyticsSettings
from .store.base import VehicleCatalog
from .utils import to_utc_aware

_LOG = logging.getLogger(__name__)

MIN_ALTITUDE_M = -500.0
MAX_ALTITUDE_M = 10_000.0

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class IngestionResult:
    """Outcome of validating one candidate sample."""

    sample: PositionSample | None
    rejection: RejectionReason | None = None
    detail: str = ""
    flags: FrozenSet[RejectionReason] = field(default_factory=frozenset)

    @property
    def accepted(self) -> bool:
        return self.rejection is None and self.sample is not None

    @property
    def low_accuracy(self) -> bool:
        return RejectionReason.LOW_ACCURACY in self.flags


class SampleValidator:
    """Validate candidate samples against coordinate, time and sensor bounds."""

    def __init__(
        self,
        settings: AnalyticsSettings | None = None,
        vehicle_catalog: VehicleCatalog | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.settings = settings or AnalyticsSettings()
        self._catalog = vehicle_catalog
        self._clock = clock or _utc_now

    def validate(self, sample: PositionSample) -> IngestionResult:
        if not coordinates_in_range(sample.latitude, sample.longitude):
            return self._reject(
                sample,
                RejectionReason.INVALID_COORDINATES,
                f"lat={sample.latitude!r} lon={sample.longitude!r} out of range",
            )

        timestamp_problem = self._timestamp_problem(sample)
        if timestamp_problem:
            return self._reject(
                sample, RejectionReason.INVALID_TIMESTAMP, timestamp_problem
            )

        measurement_problem = _measurement_problem(sample)
        if measurement_problem:
            return self._reject(
                sample, RejectionReason.INVALID_MEASUREMENT, measurement_problem
            )

        flags: set[RejectionReason] = set()
        if (
            sample.accuracy_m is not None
            and sample.accuracy_m > self.settings.low_accuracy_ceiling_m
        ):
            flags.add(RejectionReason.LOW_ACCURACY)
            _LOG.debug(
                "Low accuracy fix vehicle=%s accuracy=%.1fm ceiling=%.1fm",
                sample.vehicle_id,
                sample.accuracy_m,
                self.settings.low_accuracy_ceiling_m,
            )
        return IngestionResult(sample=sample, flags=frozenset(flags))

    def _timestamp_problem(self, sample: PositionSample) -> str | None:
        now = to_utc_aware(self._clock())
        tolerance = timedelta(seconds=self.settings.clock_skew_tolerance_s)
        if sample.recorded_at > now + tolerance:
            return f"capture time {sample.recorded_at.isoformat()} is in the future"
        vehicle = self._lookup(sample.vehicle_id)
        if vehicle is not None and vehicle.registration_date is not None:
            registered = to_utc_aware(vehicle.registration_date)
            if sample.recorded_at < registered:
                return (
                    f"capture time {sample.recorded_at.isoformat()} precedes "
                    f"registration {registered.isoformat()}"
                )
        return None

    def _lookup(self, vehicle_id: str) -> VehicleInfo | None:
        if self._catalog is None:
            return None
        return self._catalog.lookup(vehicle_id)

    @staticmethod
    def _reject(
        sample: PositionSample, reason: RejectionReason, detail: str
    ) -> IngestionResult:
        _LOG.warning(
            "Rejected sample vehicle=%s reason=%s: %s",
            sample.vehicle_id,
            reason.value,
            detail,
        )
        return IngestionResult(sample=None, rejection=reason, detail=detail)


def _measurement_problem(sample: PositionSample) -> str | None:
    checks = (
        ("speed_kmh", sample.speed_kmh, 0.0, math.inf),
        ("heading_deg", sample.heading_deg, 0.0, 360.0),
        ("accuracy_m", sample.accuracy_m, 0.0, math.inf),
        ("altitude_m", sample.altitude_m, MIN_ALTITUDE_M, MAX_ALTITUDE_M),
    )
    for name, value, lower, upper in checks:
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return f"{name}={value!r} is not numeric"
        if not math.isfinite(value) or not lower <= value <= upper:
            return f"{name}={value!r} outside [{lower}, {upper}]"
    return None


__all__ = ["IngestionResult", "SampleValidator"]

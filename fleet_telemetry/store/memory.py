"""Thread-safe in-memory reference implementations of the store interfaces."""

from __future__ import annotations

from bisect import bisect_left, bisect_right, insort
from datetime import datetime
import logging
from threading import RLock
from typing import Dict, Iterable, List, Mapping, Sequence

from ..geodesy import BoundingBox
from ..geofence import Geofence
from ..models import PositionSample, RejectionReason, TimeRange, VehicleInfo
from ..utils import to_utc_aware

_LOG = logging.getLogger(__name__)


def _capture_time(sample: PositionSample) -> datetime:
    return sample.recorded_at


class InMemorySampleStore:
    """Append-only sample log keyed by vehicle, each list sorted by capture time.

    Samples with equal capture times keep their insertion order.
    """

    def __init__(self, samples: Iterable[PositionSample] = ()) -> None:
        self._lock = RLock()
        self._by_vehicle: Dict[str, List[PositionSample]] = {}
        for sample in samples:
            self.append(sample)

    def append(self, sample: PositionSample) -> RejectionReason | None:
        if not sample.is_valid:
            return RejectionReason.INVALID_COORDINATES
        with self._lock:
            bucket = self._by_vehicle.setdefault(sample.vehicle_id, [])
            insort(bucket, sample, key=_capture_time)
        return None

    def _window(self, vehicle_id: str, time_range: TimeRange) -> List[PositionSample]:
        bucket = self._by_vehicle.get(vehicle_id, [])
        lo = bisect_left(bucket, time_range.start, key=_capture_time)
        hi = bisect_right(bucket, time_range.end, key=_capture_time)
        return bucket[lo:hi]

    def query(self, vehicle_id: str, time_range: TimeRange) -> List[PositionSample]:
        with self._lock:
            return list(self._window(vehicle_id, time_range))

    def query_by_box(
        self, box: BoundingBox, time_range: TimeRange
    ) -> List[PositionSample]:
        with self._lock:
            return [
                sample
                for vehicle_id in self._by_vehicle
                for sample in self._window(vehicle_id, time_range)
                if box.contains(sample.position)
            ]

    def latest(self, vehicle_id: str, time_range: TimeRange) -> PositionSample | None:
        with self._lock:
            window = self._window(vehicle_id, time_range)
            return window[-1] if window else None

    def vehicle_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._by_vehicle)

    def purge_older_than(self, cutoff: datetime) -> int:
        """Drop samples captured before ``cutoff``; return how many went."""

        cutoff = to_utc_aware(cutoff)
        removed = 0
        with self._lock:
            for vehicle_id in list(self._by_vehicle):
                bucket = self._by_vehicle[vehicle_id]
                index = bisect_left(bucket, cutoff, key=_capture_time)
                if not index:
                    continue
                removed += index
                del bucket[:index]
                if not bucket:
                    del self._by_vehicle[vehicle_id]
        if removed:
            _LOG.info("Purged %d samples captured before %s", removed, cutoff.isoformat())
        return removed

    def __len__(self) -> int:
        with self._lock:
            return sum(len(bucket) for bucket in self._by_vehicle.values())


class InMemoryVehicleCatalog:
    def __init__(self, vehicles: Iterable[VehicleInfo] = ()) -> None:
        self._lock = RLock()
        self._vehicles: Dict[str, VehicleInfo] = {v.vehicle_id: v for v in vehicles}

    def lookup(self, vehicle_id: str) -> VehicleInfo | None:
        with self._lock:
            return self._vehicles.get(vehicle_id)

    def register(self, vehicle: VehicleInfo) -> None:
        with self._lock:
            self._vehicles[vehicle.vehicle_id] = vehicle

    @classmethod
    def from_mapping(cls, plates: Mapping[str, str]) -> "InMemoryVehicleCatalog":
        return cls(VehicleInfo(vehicle_id=k, plate_label=v) for k, v in plates.items())


class InMemoryGeofenceCatalog:
    def __init__(self, geofences: Iterable[Geofence] = ()) -> None:
        self._lock = RLock()
        self._geofences: Dict[str, Geofence] = {g.geofence_id: g for g in geofences}

    def list_active(self) -> Sequence[Geofence]:
        with self._lock:
            return [g for g in self._geofences.values() if g.active]

    def upsert(self, geofence: Geofence) -> None:
        with self._lock:
            self._geofences[geofence.geofence_id] = geofence


__all__ = ["InMemoryGeofenceCatalog", "InMemorySampleStore", "InMemoryVehicleCatalog"]

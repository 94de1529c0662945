"""Interfaces of the external collaborators consumed by the core.

Implementations live outside this package (a database, an HTTP client);
``memory`` provides thread-safe reference versions for embedding and tests.
"""

from __future__ import annotations

from typing import Iterable, Protocol, Sequence, runtime_checkable

from ..geodesy import BoundingBox
from ..models import PositionSample, RejectionReason, TimeRange, VehicleInfo
from ..geofence import Geofence


@runtime_checkable
class SampleStore(Protocol):
    """Append-only, range-queryable log of position samples.

    Implementations raise ``StoreUnavailableError`` (or let connection and
    timeout ``OSError`` subclasses escape) when the backend is unreachable.
    """

    def append(self, sample: PositionSample) -> RejectionReason | None:
        """Persist ``sample``; return a rejection reason or ``None``."""

    def query(self, vehicle_id: str, time_range: TimeRange) -> Iterable[PositionSample]:
        """Samples of one vehicle ordered by capture time ascending."""

    def query_by_box(
        self, box: BoundingBox, time_range: TimeRange
    ) -> Iterable[PositionSample]:
        """Samples of any vehicle inside ``box``, in no particular order."""

    def latest(self, vehicle_id: str, time_range: TimeRange) -> PositionSample | None:
        """Most recent sample of one vehicle in the window."""


@runtime_checkable
class VehicleCatalog(Protocol):
    def lookup(self, vehicle_id: str) -> VehicleInfo | None:
        """Catalog entry for labelling and validation bounds."""


@runtime_checkable
class GeofenceCatalog(Protocol):
    def list_active(self) -> Sequence[Geofence]:
        """Geofences whose active flag is set."""


__all__ = ["SampleStore", "VehicleCatalog", "GeofenceCatalog"]

"""TTL cache in front of a vehicle catalog."""

from __future__ import annotations

from threading import RLock

from cachetools import TTLCache

from ..config import VEHICLE_CACHE_SIZE, VEHICLE_CACHE_TTL_SECONDS
from ..models import VehicleInfo
from .base import VehicleCatalog


class CachedVehicleCatalog:
    """Memoise ``lookup`` results, misses included, for ``ttl`` seconds.

    Catalog entries only label vehicles and bound validation, so a few
    minutes of staleness is acceptable.
    """

    def __init__(
        self,
        catalog: VehicleCatalog,
        maxsize: int = VEHICLE_CACHE_SIZE,
        ttl: float = VEHICLE_CACHE_TTL_SECONDS,
    ) -> None:
        self._catalog = catalog
        self._lock = RLock()
        self._cache: TTLCache[str, VehicleInfo | None] = TTLCache(
            maxsize=max(1, maxsize), ttl=ttl
        )

    def lookup(self, vehicle_id: str) -> VehicleInfo | None:
        with self._lock:
            if vehicle_id in self._cache:
                return self._cache[vehicle_id]
        info = self._catalog.lookup(vehicle_id)
        with self._lock:
            self._cache[vehicle_id] = info
        return info

    def invalidate(self, vehicle_id: str | None = None) -> None:
        with self._lock:
            if vehicle_id is None:
                self._cache.clear()
            else:
                self._cache.pop(vehicle_id, None)

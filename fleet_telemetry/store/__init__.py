"""Store interfaces and their in-memory reference implementations."""

from .base import GeofenceCatalog, SampleStore, VehicleCatalog
from .cache import CachedVehicleCatalog
from .memory import InMemoryGeofenceCatalog, InMemorySampleStore, InMemoryVehicleCatalog

__all__ = [
    "CachedVehicleCatalog",
    "GeofenceCatalog",
    "InMemoryGeofenceCatalog",
    "InMemorySampleStore",
    "InMemoryVehicleCatalog",
    "SampleStore",
    "VehicleCatalog",
]

"""GPS telemetry ingestion and fleet analytics."""

from .errors import (
    ConfigurationError,
    InvalidInputError,
    QueryCancelledError,
    StoreUnavailableError,
    TelemetryError,
)
from .geofence import CircleGeofence, GeofenceEngine, PolygonGeofence
from .models import (
    EventType,
    GeofenceEvent,
    PositionSample,
    QueryMode,
    RejectionReason,
    Severity,
    Stop,
    StopType,
    TimeRange,
    TrackingStatus,
    VehicleInfo,
)
from .queries import (
    AreaQuery,
    FleetQuery,
    GeofenceScanQuery,
    HeatmapQuery,
    RouteQuery,
    StatisticsQuery,
    VisitQuery,
)
from .route import Route, reconstruct_route
from .services import FleetAnalyticsService, RouteAnalysis
from .settings import AnalyticsSettings, SeverityScale

__all__ = [
    "AnalyticsSettings",
    "AreaQuery",
    "CircleGeofence",
    "ConfigurationError",
    "EventType",
    "FleetAnalyticsService",
    "FleetQuery",
    "GeofenceEngine",
    "GeofenceEvent",
    "GeofenceScanQuery",
    "HeatmapQuery",
    "InvalidInputError",
    "PolygonGeofence",
    "PositionSample",
    "QueryCancelledError",
    "QueryMode",
    "RejectionReason",
    "Route",
    "RouteAnalysis",
    "RouteQuery",
    "Severity",
    "SeverityScale",
    "StatisticsQuery",
    "Stop",
    "StopType",
    "StoreUnavailableError",
    "TelemetryError",
    "TimeRange",
    "TrackingStatus",
    "VehicleInfo",
    "VisitQuery",
    "reconstruct_route",
]

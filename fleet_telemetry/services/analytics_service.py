"""Fleet analytics service (application layer).

Wires the pure analytics components to the store and catalogs handed in at
construction. Construct one instance at startup and pass it down; the
service holds no hidden module-level state.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, TypeVar

from ..adapters import sample_from_payload
from ..config import ANALYSIS_MAX_WORKERS
from ..errors import (
    ConfigurationError,
    QueryCancelledError,
    StoreUnavailableError,
    TelemetryError,
)
from ..geodesy import BoundingBox
from ..geofence import Geofence, GeofenceEngine
from ..ingestion import Clock, IngestionResult, SampleValidator
from ..models import (
    MAX_LATITUDE,
    MAX_LONGITUDE,
    MIN_LATITUDE,
    MIN_LONGITUDE,
    GeofenceEvent,
    PositionSample,
    Stop,
    TimeRange,
    VehicleInfo,
)
from ..optimizer import VisitPlan, optimize_visit_order
from ..queries import (
    AreaQuery,
    FleetQuery,
    GeofenceScanQuery,
    HeatmapQuery,
    RouteQuery,
    StatisticsQuery,
    VisitQuery,
)
from ..route import Route, reconstruct_route
from ..settings import AnalyticsSettings, zone_info
from ..spatial import NearbyVehicle, SpatialIndex
from ..statistics import (
    AreaVisit,
    FleetStatistics,
    HeatmapCell,
    PeriodSummary,
    RouteStatistics,
    build_heatmap,
    compute_statistics,
    frequent_areas,
    summarize_by_period,
    summarize_fleet,
)
from ..stops import StopClassifier, detect_stops
from ..store.base import GeofenceCatalog, SampleStore, VehicleCatalog
from ..tracking import (
    VehiclePosition,
    VehicleTrackingInfo,
    build_tracking_info,
    build_vehicle_position,
    classify_tracking_status,
)
from ..utils import to_utc_aware

T = TypeVar("T")

_WHOLE_WORLD = BoundingBox(MIN_LATITUDE, MAX_LATITUDE, MIN_LONGITUDE, MAX_LONGITUDE)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class RouteAnalysis:
    """Joined output of the independent route aggregations."""

    route: Route
    statistics: RouteStatistics
    stops: List[Stop] = field(default_factory=list)
    events: List[GeofenceEvent] = field(default_factory=list)


class FleetAnalyticsService:
    def __init__(
        self,
        store: SampleStore,
        vehicle_catalog: VehicleCatalog,
        geofence_catalog: GeofenceCatalog,
        settings: AnalyticsSettings | None = None,
        logger: logging.Logger | None = None,
        clock: Clock | None = None,
        max_workers: int | None = None,
    ) -> None:
        self.settings = settings or AnalyticsSettings()
        self.max_workers = max_workers or ANALYSIS_MAX_WORKERS
        if self.max_workers <= 0:
            raise ConfigurationError("max_workers must be positive")
        self._store = store
        self._vehicles = vehicle_catalog
        self._geofences = geofence_catalog
        self._log = logger or logging.getLogger(self.__class__.__name__)
        self._clock = clock or _utc_now
        self._validator = SampleValidator(self.settings, vehicle_catalog, self._clock)
        self._engine = GeofenceEngine(self.settings)
        self._spatial = SpatialIndex(store, vehicle_catalog, self._log)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------
    def ingest(
        self,
        candidate: PositionSample | Mapping[str, Any],
        cancel_event: threading.Event | None = None,
    ) -> IngestionResult:
        """Validate one sample (or raw payload of any generation) and append it.

        Malformed payloads raise ``InvalidInputError``; range and timestamp
        problems come back as a rejected ``IngestionResult``.
        """

        self._check_cancelled(cancel_event, "ingest")
        sample = (
            candidate
            if isinstance(candidate, PositionSample)
            else sample_from_payload(candidate)
        )
        result = self._validator.validate(sample)
        if not result.accepted:
            return result
        if sample.received_at is None:
            sample = replace(sample, received_at=self._clock())
            result = replace(result, sample=sample)
        rejection = self._call_store("append", self._store.append, sample)
        if rejection is not None:
            self._log.warning(
                "Store rejected sample vehicle=%s reason=%s",
                sample.vehicle_id,
                rejection.value,
            )
            return IngestionResult(
                sample=None, rejection=rejection, detail="rejected by sample store"
            )
        return result

    def ingest_many(
        self,
        candidates: Iterable[PositionSample | Mapping[str, Any]],
        cancel_event: threading.Event | None = None,
    ) -> List[IngestionResult]:
        results = [self.ingest(candidate, cancel_event) for candidate in candidates]
        accepted = sum(1 for r in results if r.accepted)
        self._log.info("Ingested %d/%d samples", accepted, len(results))
        return results

    # ------------------------------------------------------------------
    # Route analytics
    # ------------------------------------------------------------------
    def reconstruct_route(
        self, query: RouteQuery, cancel_event: threading.Event | None = None
    ) -> Route:
        self._check_cancelled(cancel_event, f"route for {query.vehicle_id}")
        samples = self._call_store(
            "query",
            lambda: list(self._store.query(query.vehicle_id, query.time_range)),
        )
        self._check_cancelled(cancel_event, f"route for {query.vehicle_id}")
        route = reconstruct_route(
            samples,
            query.vehicle_id,
            operation_id=query.operation_id,
            time_range=query.time_range,
        )
        self._log.debug(
            "Reconstructed route vehicle=%s samples=%d distance=%.3fkm",
            query.vehicle_id,
            len(route.samples),
            route.total_distance_km,
        )
        return route

    def compute_statistics(
        self, query: StatisticsQuery, cancel_event: threading.Event | None = None
    ) -> RouteStatistics:
        route = self.reconstruct_route(_route_query(query), cancel_event)
        return compute_statistics(
            route, fuel_consumed_l=query.fuel_consumed_l, settings=self.settings
        )

    def summarize_periods(
        self, query: StatisticsQuery, cancel_event: threading.Event | None = None
    ) -> List[PeriodSummary]:
        """Calendar rollups in the query's, vehicle's or default timezone."""

        route = self.reconstruct_route(_route_query(query), cancel_event)
        return summarize_by_period(
            route.samples,
            query.vehicle_id,
            period=query.period or "day",
            timezone=self._timezone_for(query.vehicle_id, query.timezone),
            settings=self.settings,
        )

    def detect_stops(
        self,
        query: RouteQuery,
        classifier: StopClassifier | None = None,
        cancel_event: threading.Event | None = None,
    ) -> List[Stop]:
        route = self.reconstruct_route(query, cancel_event)
        return self._detect(route, classifier)

    def scan_geofence_violations(
        self, query: GeofenceScanQuery, cancel_event: threading.Event | None = None
    ) -> List[GeofenceEvent]:
        fences = self._active_geofences(query.geofence_ids)
        route = self.reconstruct_route(
            RouteQuery(query.vehicle_id, query.time_range, query.operation_id),
            cancel_event,
        )
        events = self._engine.scan(route, fences)
        if events:
            self._log.info(
                "Vehicle %s produced %d geofence events", query.vehicle_id, len(events)
            )
        return events

    def analyze_route(
        self, query: StatisticsQuery, cancel_event: threading.Event | None = None
    ) -> RouteAnalysis:
        """Statistics, stops and geofence events for one route.

        Stops are detected once and shared; statistics and the geofence scan
        then run side by side on a thread pool and are joined before
        returning.
        """

        fences = self._active_geofences(())
        route = self.reconstruct_route(_route_query(query), cancel_event)
        stops = self._detect(route, None)
        tasks: Dict[str, Callable[[], Any]] = {
            "statistics": lambda: compute_statistics(
                route,
                stops=stops,
                fuel_consumed_l=query.fuel_consumed_l,
                settings=self.settings,
            ),
            "events": lambda: self._engine.scan(route, fences, stops=stops),
        }
        results: Dict[str, Any] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures: Dict[Future[Any], str] = {
                executor.submit(task): name for name, task in tasks.items()
            }
            for future in as_completed(futures):
                name = futures[future]
                try:
                    results[name] = future.result()
                except TelemetryError:
                    _cancel_all(futures)
                    raise
                except Exception:
                    _cancel_all(futures)
                    self._log.error(
                        "Route %s aggregation failed for vehicle %s",
                        name,
                        query.vehicle_id,
                        exc_info=True,
                    )
                    raise
        self._check_cancelled(cancel_event, f"analysis for {query.vehicle_id}")
        return RouteAnalysis(
            route=route,
            statistics=results["statistics"],
            stops=stops,
            events=results["events"],
        )

    # ------------------------------------------------------------------
    # Fleet-wide
    # ------------------------------------------------------------------
    def fleet_statistics(
        self, query: FleetQuery, cancel_event: threading.Event | None = None
    ) -> FleetStatistics:
        routes = self._fleet_routes(query, cancel_event)
        stats = summarize_fleet(routes.values(), settings=self.settings)
        self._log.info(
            "Fleet statistics over %d vehicles: %d samples, %.3fkm",
            stats.vehicle_count,
            stats.sample_count,
            stats.total_distance_km,
        )
        return stats

    def scan_fleet_violations(
        self, query: FleetQuery, cancel_event: threading.Event | None = None
    ) -> List[GeofenceEvent]:
        """Geofence, speeding and idle events of several vehicles, by time.

        Events at the same instant keep vehicle id order.
        """

        fences = self._active_geofences(query.geofence_ids)
        routes = self._fleet_routes(query, cancel_event)
        events = [
            event
            for route in routes.values()
            for event in self._engine.scan(route, fences)
        ]
        events.sort(key=lambda event: event.recorded_at)
        self._log.info(
            "Fleet scan over %d vehicles produced %d events", len(routes), len(events)
        )
        return events

    def fleet_positions(
        self,
        now: datetime | None = None,
        vehicle_ids: Iterable[str] = (),
        cancel_event: threading.Event | None = None,
    ) -> List[VehiclePosition]:
        """Latest fix and tracking status of each vehicle, by vehicle id."""

        now = to_utc_aware(now or self._clock())
        window = TimeRange(self._retention_start(now), now)
        positions: List[VehiclePosition] = []
        for vehicle_id in self._fleet_vehicle_ids(vehicle_ids):
            self._check_cancelled(cancel_event, "fleet positions")
            last = self._call_store("latest", self._store.latest, vehicle_id, window)
            positions.append(
                build_vehicle_position(
                    vehicle_id,
                    last,
                    now,
                    vehicle=self._lookup(vehicle_id),
                    settings=self.settings,
                )
            )
        return positions

    # ------------------------------------------------------------------
    # Spatial and planning
    # ------------------------------------------------------------------
    def find_vehicles_near(
        self, query: AreaQuery, cancel_event: threading.Event | None = None
    ) -> List[NearbyVehicle]:
        self._check_cancelled(cancel_event, "area query")
        return self._call_store(
            "query_by_box",
            self._spatial.find_vehicles_near,
            query.center,
            query.radius_km,
            query.time_range,
            query.mode,
            cancel_event,
        )

    def optimize_visit_order(
        self, query: VisitQuery, cancel_event: threading.Event | None = None
    ) -> VisitPlan:
        self._check_cancelled(cancel_event, "visit planning")
        return optimize_visit_order(
            query.start,
            query.destinations,
            planning_speed_kmh=query.planning_speed_kmh or self.settings.planning_speed_kmh,
        )

    def build_heatmap(
        self, query: HeatmapQuery, cancel_event: threading.Event | None = None
    ) -> List[HeatmapCell]:
        samples = self._heatmap_samples(query, cancel_event)
        cells = build_heatmap(samples, self._grid_size(query))
        return cells[: query.limit] if query.limit else cells

    def frequent_areas(
        self, query: HeatmapQuery, cancel_event: threading.Event | None = None
    ) -> List[AreaVisit]:
        samples = self._heatmap_samples(query, cancel_event)
        return frequent_areas(
            samples, limit=query.limit or 20, grid_size_deg=self._grid_size(query)
        )

    # ------------------------------------------------------------------
    # Tracking and retention
    # ------------------------------------------------------------------
    def tracking_info(
        self,
        vehicle_id: str,
        now: datetime | None = None,
        cancel_event: threading.Event | None = None,
    ) -> VehicleTrackingInfo:
        """Live snapshot built from today's samples in the vehicle's timezone.

        A vehicle silent all day still reports its last known fix from the
        retention window so the status reflects how long it has been quiet.
        """

        now = to_utc_aware(now or self._clock())
        vehicle = self._lookup(vehicle_id)
        zone = zone_info(self._timezone_for(vehicle_id, None))
        local_now = now.astimezone(zone)
        day_start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
        route = self.reconstruct_route(
            RouteQuery(vehicle_id, TimeRange(day_start, now)), cancel_event
        )
        info = build_tracking_info(route, now, vehicle=vehicle, settings=self.settings)
        if info.last_sample is None:
            window = TimeRange(self._retention_start(now), now)
            last = self._call_store("latest", self._store.latest, vehicle_id, window)
            if last is not None:
                info.last_sample = last
                info.seconds_since_update = (now - last.recorded_at).total_seconds()
                info.status = classify_tracking_status(last.recorded_at, now, self.settings)
        return info

    def apply_retention(self, now: datetime | None = None) -> int:
        """Purge samples older than the retention period; return the count.

        A retention of 0 days disables purging.
        """

        if self.settings.retention_days == 0:
            self._log.info("Sample retention disabled; nothing purged")
            return 0
        purge = getattr(self._store, "purge_older_than", None)
        if purge is None:
            raise TelemetryError(
                f"{type(self._store).__name__} does not support age-based purging"
            )
        cutoff = (now or self._clock()) - timedelta(days=self.settings.retention_days)
        return self._call_store("purge", purge, cutoff)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _detect(self, route: Route, classifier: StopClassifier | None) -> List[Stop]:
        return detect_stops(
            route,
            speed_threshold_kmh=self.settings.stop_speed_threshold_kmh,
            min_duration_s=self.settings.min_stop_duration_s,
            classifier=classifier,
        )

    def _fleet_vehicle_ids(self, requested: Iterable[str]) -> List[str]:
        wanted = set(requested)
        if wanted:
            return sorted(wanted)
        list_ids = getattr(self._store, "vehicle_ids", None)
        if list_ids is None:
            raise TelemetryError(
                f"{type(self._store).__name__} cannot list vehicles; pass vehicle ids"
            )
        return sorted(self._call_store("vehicle_ids", list_ids))

    def _fleet_routes(
        self, query: FleetQuery, cancel_event: threading.Event | None
    ) -> Dict[str, Route]:
        """Reconstruct each requested vehicle's route on the thread pool."""

        vehicle_ids = self._fleet_vehicle_ids(query.vehicle_ids)
        routes: Dict[str, Route] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures: Dict[Future[Route], str] = {
                executor.submit(
                    self.reconstruct_route,
                    RouteQuery(vehicle_id, query.time_range, query.operation_id),
                    cancel_event,
                ): vehicle_id
                for vehicle_id in vehicle_ids
            }
            for future in as_completed(futures):
                try:
                    routes[futures[future]] = future.result()
                except TelemetryError:
                    _cancel_all(futures)
                    raise
                except Exception:
                    _cancel_all(futures)
                    self._log.error(
                        "Route reconstruction failed for vehicle %s",
                        futures[future],
                        exc_info=True,
                    )
                    raise
        return {vehicle_id: routes[vehicle_id] for vehicle_id in vehicle_ids}

    def _retention_start(self, now: datetime) -> datetime:
        if self.settings.retention_days == 0:
            return _EPOCH
        return now - timedelta(days=self.settings.retention_days)

    def _heatmap_samples(
        self, query: HeatmapQuery, cancel_event: threading.Event | None
    ) -> List[PositionSample]:
        if query.vehicle_id is not None:
            route = self.reconstruct_route(
                RouteQuery(query.vehicle_id, query.time_range), cancel_event
            )
            return list(route.samples)
        self._check_cancelled(cancel_event, "heatmap")
        return self._call_store(
            "query_by_box",
            lambda: list(self._store.query_by_box(_WHOLE_WORLD, query.time_range)),
        )

    def _grid_size(self, query: HeatmapQuery) -> float:
        return query.grid_size_deg or self.settings.heatmap_grid_size_deg

    def _active_geofences(self, geofence_ids: Iterable[str]) -> List[Geofence]:
        fences = list(self._call_store("list_active", self._geofences.list_active))
        wanted = set(geofence_ids)
        if wanted:
            fences = [g for g in fences if g.geofence_id in wanted]
        return fences

    def _lookup(self, vehicle_id: str) -> VehicleInfo | None:
        return self._call_store("lookup", self._vehicles.lookup, vehicle_id)

    def _timezone_for(self, vehicle_id: str, override: Optional[str]) -> str:
        if override:
            return override
        vehicle = self._lookup(vehicle_id)
        if vehicle is not None and vehicle.timezone:
            return vehicle.timezone
        return self.settings.default_timezone

    def _call_store(self, operation: str, func: Callable[..., T], *args: Any) -> T:
        try:
            return func(*args)
        except StoreUnavailableError:
            self._log.warning("Store unavailable during %s", operation)
            raise
        except OSError as exc:
            self._log.warning("Store unavailable during %s: %s", operation, exc)
            raise StoreUnavailableError(f"Store unavailable during {operation}: {exc}") from exc

    def _check_cancelled(self, cancel_event: threading.Event | None, what: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            self._log.info("Cancellation requested; abandoning %s", what)
            raise QueryCancelledError(f"Cancelled: {what}")


def _route_query(query: StatisticsQuery) -> RouteQuery:
    return RouteQuery(query.vehicle_id, query.time_range, query.operation_id)


def _cancel_all(futures: Mapping[Future[Any], str]) -> None:
    for future in futures:
        future.cancel()


__all__ = ["FleetAnalyticsService", "RouteAnalysis"]

"""Central configuration for the fleet telemetry analytics core.

All values are defaults imported by ``settings.AnalyticsSettings``. Each one
can be overridden through a ``FLEET_*`` environment variable (optionally via
a local ``.env``); deployments that build settings programmatically can
ignore this module entirely.
"""

from __future__ import annotations

import os

from dotenv import load_dotenv


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_str(key: str, default: str) -> str:
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_thresholds(
    key: str, default: tuple[float, float, float]
) -> tuple[float, float, float]:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        parts = tuple(float(part) for part in value.split(","))
    except ValueError:
        return default
    if len(parts) != 3:
        return default
    return parts  # type: ignore[return-value]


# Load .env from the current directory or any parent folder.
load_dotenv()


# ---------------------------------------------------------------------------
# Stop / idle detection
# ---------------------------------------------------------------------------
# Samples slower than this are considered stationary.
STOP_SPEED_THRESHOLD_KMH = _env_float("FLEET_STOP_SPEED_THRESHOLD_KMH", 5.0)

# Below-threshold runs shorter than this are discarded, not reported.
MIN_STOP_DURATION_SECONDS = _env_float("FLEET_MIN_STOP_DURATION_SECONDS", 300.0)


# ---------------------------------------------------------------------------
# Alerting
# ---------------------------------------------------------------------------
# Fleet-wide speeding ceiling; geofences may carry a stricter local limit.
SPEEDING_CEILING_KMH = _env_float("FLEET_SPEEDING_CEILING_KMH", 80.0)

# Stops longer than this raise an IDLE event.
IDLE_CEILING_SECONDS = _env_float("FLEET_IDLE_CEILING_SECONDS", 900.0)

# Severity buckets as "medium,high,critical" lower bounds. Speeding is
# measured in km/h over the limit, idling in minutes over the ceiling.
SPEEDING_SEVERITY_THRESHOLDS = _env_thresholds(
    "FLEET_SPEEDING_SEVERITY_THRESHOLDS", (10.0, 20.0, 40.0)
)
IDLE_SEVERITY_THRESHOLDS = _env_thresholds(
    "FLEET_IDLE_SEVERITY_THRESHOLDS", (15.0, 30.0, 60.0)
)


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------
# Fixes reporting a horizontal accuracy worse than this are flagged.
LOW_ACCURACY_CEILING_M = _env_float("FLEET_LOW_ACCURACY_CEILING_M", 100.0)

# Capture timestamps may run ahead of the server clock by this much.
CLOCK_SKEW_TOLERANCE_SECONDS = _env_float("FLEET_CLOCK_SKEW_TOLERANCE_SECONDS", 120.0)

# Age-based purge horizon for stored samples. Set to 0 to disable.
SAMPLE_RETENTION_DAYS = _env_int("FLEET_SAMPLE_RETENTION_DAYS", 365)


# ---------------------------------------------------------------------------
# Tracking freshness
# ---------------------------------------------------------------------------
# Last sample younger than ACTIVE -> ACTIVE, younger than INACTIVE -> INACTIVE,
# otherwise LOST_SIGNAL.
TRACKING_ACTIVE_SECONDS = _env_float("FLEET_TRACKING_ACTIVE_SECONDS", 300.0)
TRACKING_INACTIVE_SECONDS = _env_float("FLEET_TRACKING_INACTIVE_SECONDS", 1800.0)

# Window inspected when deciding whether a vehicle is currently moving.
MOVING_WINDOW_SECONDS = _env_float("FLEET_MOVING_WINDOW_SECONDS", 600.0)


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------
# Calendar bucketing uses this zone when a vehicle has none configured.
DEFAULT_TIMEZONE = _env_str("FLEET_DEFAULT_TIMEZONE", "UTC")

# Rough fuel burn while idling, used for waste estimates.
IDLE_FUEL_BURN_L_PER_MIN = _env_float("FLEET_IDLE_FUEL_BURN_L_PER_MIN", 0.1)

# Cell size (degrees) for heatmaps and frequent-area rollups.
HEATMAP_GRID_SIZE_DEG = _env_float("FLEET_HEATMAP_GRID_SIZE_DEG", 0.01)

# Consecutive fixes further apart than this are treated as GPS jumps and
# left out of distance totals.
MAX_SEGMENT_KM = _env_float("FLEET_MAX_SEGMENT_KM", 50.0)


# ---------------------------------------------------------------------------
# Route planning
# ---------------------------------------------------------------------------
# Average speed used to turn planned distance into an ETA.
PLANNING_SPEED_KMH = _env_float("FLEET_PLANNING_SPEED_KMH", 36.0)


# ---------------------------------------------------------------------------
# Performance tuning
# ---------------------------------------------------------------------------
# Threads used when independent route aggregations run side by side.
ANALYSIS_MAX_WORKERS = _env_int("FLEET_ANALYSIS_MAX_WORKERS", 3)

# Vehicle catalog lookups are cached for this long.
VEHICLE_CACHE_SIZE = _env_int("FLEET_VEHICLE_CACHE_SIZE", 512)
VEHICLE_CACHE_TTL_SECONDS = _env_int("FLEET_VEHICLE_CACHE_TTL_SECONDS", 300)

"""Injectable analytics settings built from ``config`` defaults."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
import math
from typing import Any, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from . import config
from .errors import ConfigurationError
from .models import Severity


@dataclass(frozen=True, slots=True)
class SeverityScale:
    """Lower bounds of the MEDIUM, HIGH and CRITICAL buckets.

    Anything below ``medium`` is LOW. The mapping is monotonic in the
    magnitude so a larger excess never yields a lower severity.
    """

    medium: float
    high: float
    critical: float

    def __post_init__(self) -> None:
        bounds = (self.medium, self.high, self.critical)
        if any(_bad_number(value) for value in bounds):
            raise ConfigurationError(f"Severity thresholds must be numbers: {bounds}")
        if not self.medium < self.high < self.critical:
            raise ConfigurationError(
                f"Severity thresholds must be strictly increasing: {bounds}"
            )

    @classmethod
    def from_sequence(cls, values: Any) -> "SeverityScale":
        try:
            medium, high, critical = values
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"Severity scale needs exactly three thresholds, got {values!r}"
            ) from exc
        return cls(medium, high, critical)

    def classify(self, magnitude: float) -> Severity:
        if magnitude >= self.critical:
            return Severity.CRITICAL
        if magnitude >= self.high:
            return Severity.HIGH
        if magnitude >= self.medium:
            return Severity.MEDIUM
        return Severity.LOW


def _bad_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return True
    return not math.isfinite(value)


_POSITIVE_FIELDS = (
    "stop_speed_threshold_kmh",
    "speeding_ceiling_kmh",
    "idle_ceiling_s",
    "low_accuracy_ceiling_m",
    "active_threshold_s",
    "inactive_threshold_s",
    "moving_window_s",
    "heatmap_grid_size_deg",
    "planning_speed_kmh",
    "max_segment_km",
)
_NON_NEGATIVE_FIELDS = (
    "min_stop_duration_s",
    "clock_skew_tolerance_s",
    "idle_fuel_burn_l_per_min",
    "retention_days",
)


@dataclass(frozen=True, slots=True)
class AnalyticsSettings:
    """Thresholds consumed by every analytics component.

    Construct once at startup and pass it down; components never read
    ``config`` directly at call time.
    """

    stop_speed_threshold_kmh: float = config.STOP_SPEED_THRESHOLD_KMH
    min_stop_duration_s: float = config.MIN_STOP_DURATION_SECONDS
    speeding_ceiling_kmh: float = config.SPEEDING_CEILING_KMH
    idle_ceiling_s: float = config.IDLE_CEILING_SECONDS
    low_accuracy_ceiling_m: float = config.LOW_ACCURACY_CEILING_M
    clock_skew_tolerance_s: float = config.CLOCK_SKEW_TOLERANCE_SECONDS
    active_threshold_s: float = config.TRACKING_ACTIVE_SECONDS
    inactive_threshold_s: float = config.TRACKING_INACTIVE_SECONDS
    moving_window_s: float = config.MOVING_WINDOW_SECONDS
    default_timezone: str = config.DEFAULT_TIMEZONE
    idle_fuel_burn_l_per_min: float = config.IDLE_FUEL_BURN_L_PER_MIN
    heatmap_grid_size_deg: float = config.HEATMAP_GRID_SIZE_DEG
    planning_speed_kmh: float = config.PLANNING_SPEED_KMH
    max_segment_km: float = config.MAX_SEGMENT_KM
    retention_days: int = config.SAMPLE_RETENTION_DAYS
    speeding_severity: SeverityScale = field(
        default_factory=lambda: SeverityScale.from_sequence(
            config.SPEEDING_SEVERITY_THRESHOLDS
        )
    )
    idle_severity: SeverityScale = field(
        default_factory=lambda: SeverityScale.from_sequence(
            config.IDLE_SEVERITY_THRESHOLDS
        )
    )

    def __post_init__(self) -> None:
        for name in _POSITIVE_FIELDS:
            value = getattr(self, name)
            if value is None:
                raise ConfigurationError(f"Missing required threshold '{name}'")
            if _bad_number(value) or value <= 0:
                raise ConfigurationError(f"'{name}' must be a positive number: {value!r}")
        for name in _NON_NEGATIVE_FIELDS:
            value = getattr(self, name)
            if value is None:
                raise ConfigurationError(f"Missing required threshold '{name}'")
            if _bad_number(value) or value < 0:
                raise ConfigurationError(
                    f"'{name}' must be a non-negative number: {value!r}"
                )
        if self.inactive_threshold_s <= self.active_threshold_s:
            raise ConfigurationError(
                "inactive_threshold_s must be greater than active_threshold_s"
            )
        for name in ("speeding_severity", "idle_severity"):
            if not isinstance(getattr(self, name), SeverityScale):
                raise ConfigurationError(f"'{name}' must be a SeverityScale")
        zone_info(self.default_timezone)

    @classmethod
    def from_mapping(cls, overrides: Mapping[str, Any]) -> "AnalyticsSettings":
        """Overlay externally supplied values on the defaults."""

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ConfigurationError(f"Unknown settings: {', '.join(unknown)}")
        values = dict(overrides)
        for name in ("speeding_severity", "idle_severity"):
            raw = values.get(name)
            if raw is not None and not isinstance(raw, SeverityScale):
                values[name] = SeverityScale.from_sequence(raw)
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> "AnalyticsSettings":
        return replace(self, **overrides)


def zone_info(name: str | None) -> ZoneInfo:
    """Return the ``ZoneInfo`` for ``name`` or raise ``ConfigurationError``."""

    if not name:
        raise ConfigurationError("Timezone name is required")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"Unknown timezone '{name}'") from exc


__all__ = ["AnalyticsSettings", "SeverityScale", "zone_info"]

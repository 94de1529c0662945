"""Central error types used across the telemetry core."""

from __future__ import annotations


class TelemetryError(RuntimeError):
    """Base error for the telemetry analytics core."""


class InvalidInputError(TelemetryError, ValueError):
    """Raised when coordinates, ranges or geofence shapes are malformed."""


class ConfigurationError(TelemetryError):
    """Raised when a required threshold is missing or inconsistent."""


class StoreUnavailableError(TelemetryError):
    """Raised when the backing sample store cannot be reached.

    The core never retries; retry and backoff belong to the store client.
    """


class QueryCancelledError(TelemetryError):
    """Raised when a caller abandons a running query via its cancel event."""


__all__ = [
    "TelemetryError",
    "InvalidInputError",
    "ConfigurationError",
    "StoreUnavailableError",
    "QueryCancelledError",
]

"""General utility helpers shared across modules."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
import math
from typing import Any


def to_utc_aware(value: datetime) -> datetime:
    """Return ``value`` as a UTC-aware datetime (naive input is taken as UTC)."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_datetime(raw: str | None) -> datetime | None:
    """Parse an ISO-8601 string (``Z`` suffix allowed) or return ``None``."""

    if not raw or not isinstance(raw, str):
        return None
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def parse_timestamp(value: Any) -> datetime | None:
    """Accept datetimes, ISO strings and epoch seconds/milliseconds."""

    if isinstance(value, datetime):
        return to_utc_aware(value)
    if isinstance(value, str):
        parsed = parse_iso_datetime(value)
        return to_utc_aware(parsed) if parsed is not None else None
    number = coerce_float(value)
    if number is None:
        return None
    # Millisecond epochs are what the mobile clients send.
    if abs(number) > 1e11:
        number /= 1000.0
    try:
        return datetime.fromtimestamp(number, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def coerce_float(value: Any) -> float | None:
    """Convert numbers, numeric strings and Decimals to a finite float."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        value = float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def seconds_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds()

"""UTC helpers; every stored timestamp is UTC."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (SQLite round-trips) as UTC and convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_provider_timestamp(raw: Any) -> Optional[datetime]:
    """
    Parse a gateway ``messageTimestamp``: unix seconds (int/float/str),
    unix milliseconds, or a protobuf Long ``{"low": ..., "high": ...}``.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, dict):
        low = raw.get("low")
        high = raw.get("high") or 0
        if not isinstance(low, int):
            return None
        raw = (high << 32) + (low & 0xFFFFFFFF)
    try:
        seconds = float(raw)
    except (TypeError, ValueError):
        return None
    if seconds <= 0:
        return None
    if seconds > 1e12:
        seconds /= 1000.0
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None

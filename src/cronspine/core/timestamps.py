"""
Timestamp utilities (stdlib-only).

Instants are handled as timezone-aware UTC datetimes everywhere inside the
engine. They are stored as fixed-width ISO 8601 strings so that SQL string
comparison and ``ORDER BY`` agree with time order, and rendered for humans
in the scheduler's display zone.

Features:
    - **utc_now():** Timezone-aware UTC datetime
    - **to_iso8601() / from_iso8601():** Fixed-width storage round-trip
    - **from_epoch_millis() / to_epoch_millis():** Transport payload times
    - **format_display():** ``yyyy-MM-dd HH:mm:ss`` in a given zone
    - **resolve_timezone():** IANA name (or None for system zone) → tzinfo

STDLIB ONLY - NO PYDANTIC.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo

DISPLAY_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime; naive values are taken as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to a fixed-width UTC ISO 8601 string (millisecond precision)."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat(timespec="milliseconds")


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to an aware UTC datetime."""
    if s is None:
        return None
    return ensure_utc(datetime.fromisoformat(s))


def from_epoch_millis(value: int | None) -> datetime | None:
    """Convert epoch milliseconds to an aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(0, UTC) + timedelta(milliseconds=value)


def to_epoch_millis(dt: datetime) -> int:
    """Convert a datetime to epoch milliseconds."""
    return int((ensure_utc(dt) - datetime.fromtimestamp(0, UTC)) / timedelta(milliseconds=1))


def resolve_timezone(name: str | None) -> tzinfo:
    """Resolve an IANA zone name; ``None`` means the host's local zone."""
    if name:
        return ZoneInfo(name)
    local = datetime.now().astimezone().tzinfo
    return local or UTC


def format_display(dt: datetime | None, tz: tzinfo, default: str) -> str:
    """Format an instant as ``yyyy-MM-dd HH:mm:ss`` in ``tz``, or ``default`` if None."""
    if dt is None:
        return default
    return ensure_utc(dt).astimezone(tz).strftime(DISPLAY_FORMAT)

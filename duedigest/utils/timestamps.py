"""Timestamp helpers: UTC normalisation, owner-local dates, storage format."""

from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

DB_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def local_date(tz_name: str, now: Optional[datetime] = None) -> date:
    """Calendar date in ``tz_name`` at ``now`` (default: current time).

    Example:
        >>> local_date("America/Los_Angeles", datetime(2026, 2, 19, 2, 0, tzinfo=timezone.utc))
        datetime.date(2026, 2, 18)
    """
    moment = ensure_utc(now) if now is not None else utc_now()
    return moment.astimezone(ZoneInfo(tz_name)).date()


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 instant (``Z`` or offset suffix) to aware UTC.

    Returns None for empty input. Raises ValueError for malformed input so
    the caller can decide whether to skip the item.
    """
    if value is None or not str(value).strip():
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def format_db_timestamp(dt: Optional[datetime]) -> Optional[str]:
    """Render for storage: UTC, microsecond precision, ``Z`` suffix (sorts lexically)."""
    if dt is None:
        return None
    return ensure_utc(dt).strftime(DB_FORMAT)


def parse_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Inverse of :func:`format_db_timestamp`."""
    if not value:
        return None
    return datetime.strptime(value, DB_FORMAT).replace(tzinfo=timezone.utc)

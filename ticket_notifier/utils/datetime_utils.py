from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """
    Get current UTC datetime as a timezone-aware datetime.

    Returns:
        datetime: Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def naive_utc_now() -> datetime:
    """
    Get current UTC datetime as a naive datetime (no timezone info).
    Database columns store naive UTC values.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def ensure_aware(dt: datetime, field_name: str = "datetime") -> datetime:
    """
    Reject naive datetimes.

    Scheduling math depends on the absolute instant, so every timestamp that
    crosses a domain boundary must carry its offset.

    Raises:
        ValueError: If the datetime has no timezone info
    """
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        raise ValueError(f"{field_name} must be timezone-aware")
    return dt


def to_naive_utc(dt: datetime) -> datetime:
    """
    Convert a datetime object to naive UTC (no timezone info) for storage.

    Args:
        dt: Datetime object to convert

    Returns:
        datetime: Naive UTC datetime
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    else:
        utc_dt = dt.astimezone(timezone.utc)
        return utc_dt.replace(tzinfo=None)


def from_naive_utc(dt: datetime, zone: ZoneInfo = ZoneInfo("UTC")) -> datetime:
    """
    Convert a naive UTC datetime (no timezone info) to a timezone-aware datetime.

    Args:
        dt: Naive UTC datetime to convert
        zone: Timezone to use for the conversion (default: UTC)

    Returns:
        datetime: Timezone-aware datetime
    """
    if dt.tzinfo is not None:
        raise ValueError("Input datetime must be naive (no timezone info)")
    return dt.replace(tzinfo=timezone.utc).astimezone(zone)


def optional_from_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    return from_naive_utc(dt) if dt is not None else None


def optional_to_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    return to_naive_utc(dt) if dt is not None else None


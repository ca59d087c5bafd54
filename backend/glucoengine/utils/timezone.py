from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from typing import Optional

DEFAULT_TIMEZONE = "UTC"

SECONDS_PER_DAY = 24 * 60 * 60


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    """
    Returns the ZoneInfo for an IANA name, UTC when empty.
    Raises ValueError for unknown names.
    """
    try:
        return ZoneInfo(name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name!r}") from exc


def from_mills(mills: float) -> datetime:
    return datetime.fromtimestamp(mills / 1000.0, tz=timezone.utc)


def to_mills(dt: datetime) -> int:
    """
    Epoch milliseconds. Assumes naive datetimes are UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(round(dt.timestamp() * 1000))


def seconds_from_midnight(mills: float, tz: Optional[ZoneInfo] = None) -> int:
    """
    Time-of-day offset (seconds since local midnight) of an epoch-ms instant.
    """
    local_dt = from_mills(mills).astimezone(tz or ZoneInfo(DEFAULT_TIMEZONE))
    return local_dt.hour * 3600 + local_dt.minute * 60 + local_dt.second


def parse_time_of_day(value: str) -> int:
    """
    "HH:MM" or "HH:MM:SS" -> seconds from midnight.
    """
    parts = str(value).strip().split(":")
    if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
        raise ValueError(f"Invalid time of day: {value!r}")
    hours, minutes = int(parts[0]), int(parts[1])
    seconds = int(parts[2]) if len(parts) == 3 else 0
    if hours > 23 or minutes > 59 or seconds > 59:
        raise ValueError(f"Invalid time of day: {value!r}")
    return hours * 3600 + minutes * 60 + seconds


def format_time(mills: float, tz: Optional[ZoneInfo] = None) -> str:
    """
    Returns HH:MM in local time.
    """
    return from_mills(mills).astimezone(tz or ZoneInfo(DEFAULT_TIMEZONE)).strftime("%H:%M")

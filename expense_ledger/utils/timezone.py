"""
Timezone bucketing for list windows and monthly analytics.

All expenses are stored as UTC instants, but users think in local
calendar days. Every helper here takes an IANA zone and turns local
calendar concepts (a month, a day, "last 7 days") into absolute UTC
boundaries.

DESIGN DECISION: Month and day bounds are half-open intervals
[start, next_start). This keeps DST transitions and microsecond
precision out of the picture - no "23:59:59.999" arithmetic.
"""

import calendar
import re
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

logger = structlog.get_logger()

MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")
MIN_YEAR = 1900
MAX_YEAR = 2100
UTC_NAME = "UTC"


class TimeWindow(str, Enum):
    """Named relative windows a list query can ask for."""
    THIS_MONTH = "this_month"
    LAST_7_DAYS = "last_7_days"
    LAST_MONTH = "last_month"


class TimezoneErrorCode(str, Enum):
    INVALID_MONTH = "invalid_month"
    INVALID_TIMEZONE = "invalid_timezone"


class TimezoneError(ValueError):
    """A month or timezone value could not be interpreted."""

    def __init__(self, code: TimezoneErrorCode, message: str):
        self.code = code
        super().__init__(message)


def is_valid_iana_timezone(name: Optional[str]) -> bool:
    """
    Check that a name is a loadable IANA zone such as "Europe/Madrid".

    Bare abbreviations ("EST", "CET") are rejected even when the tz
    database knows them; only region/city names and UTC are accepted.
    """
    if not name or not name.strip():
        return False
    name = name.strip()
    if name != UTC_NAME and "/" not in name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def resolve_zone(name: Optional[str]) -> ZoneInfo:
    """
    Resolve a stored profile timezone.

    Missing values mean UTC. A stored value that no longer loads is
    logged and also treated as UTC rather than failing the request.
    """
    if not name or not name.strip():
        return ZoneInfo(UTC_NAME)
    if not is_valid_iana_timezone(name):
        logger.warning("unknown_timezone_fallback", timezone=name)
        return ZoneInfo(UTC_NAME)
    return ZoneInfo(name.strip())


def now_in(zone: ZoneInfo, now: Optional[datetime] = None) -> datetime:
    """Current wall-clock time in the given zone."""
    instant = now or datetime.now(timezone.utc)
    return instant.astimezone(zone)


def current_month(zone: ZoneInfo, now: Optional[datetime] = None) -> str:
    """The "YYYY-MM" month the user is currently living in."""
    return now_in(zone, now).strftime("%Y-%m")


def parse_month(month: str) -> tuple[int, int]:
    """
    Parse a "YYYY-MM" string.

    Raises:
        TimezoneError: If the string is malformed or out of range
    """
    match = MONTH_PATTERN.match(month or "")
    if not match:
        raise TimezoneError(
            TimezoneErrorCode.INVALID_MONTH,
            "month must be in YYYY-MM format",
        )
    year, month_number = int(match.group(1)), int(match.group(2))
    if not MIN_YEAR <= year <= MAX_YEAR or not 1 <= month_number <= 12:
        raise TimezoneError(
            TimezoneErrorCode.INVALID_MONTH,
            f"month {month} is out of range",
        )
    return year, month_number


def format_month(year: int, month_number: int) -> str:
    return f"{year:04d}-{month_number:02d}"


def previous_month(month: str) -> str:
    year, month_number = parse_month(month)
    if month_number == 1:
        return format_month(year - 1, 12)
    return format_month(year, month_number - 1)


def next_month(month: str) -> str:
    year, month_number = parse_month(month)
    if month_number == 12:
        return format_month(year + 1, 1)
    return format_month(year, month_number + 1)


def _local_midnight_utc(day: date, zone: ZoneInfo) -> datetime:
    local = datetime(day.year, day.month, day.day, tzinfo=zone)
    return local.astimezone(timezone.utc)


def month_bounds(month: str, zone: ZoneInfo) -> tuple[datetime, datetime]:
    """
    UTC boundaries of a local calendar month as [start, end).

    Example:
        month_bounds("2024-03", ZoneInfo("America/New_York"))
        -> (2024-03-01T05:00Z, 2024-04-01T04:00Z)
    """
    year, month_number = parse_month(month)
    next_year, next_month_number = parse_month(next_month(month))
    start = _local_midnight_utc(date(year, month_number, 1), zone)
    end = _local_midnight_utc(date(next_year, next_month_number, 1), zone)
    return start, end


def day_bounds(day: date, zone: ZoneInfo) -> tuple[datetime, datetime]:
    """UTC boundaries of a local calendar day as [start, end)."""
    return (
        _local_midnight_utc(day, zone),
        _local_midnight_utc(day + timedelta(days=1), zone),
    )


def named_window_bounds(
    window: TimeWindow,
    zone: ZoneInfo,
    now: Optional[datetime] = None,
) -> tuple[datetime, datetime]:
    """
    Resolve a named window into UTC boundaries as [start, end).

    last_7_days covers today and the six local days before it.
    """
    today = now_in(zone, now).date()

    if window == TimeWindow.THIS_MONTH:
        return month_bounds(current_month(zone, now), zone)

    if window == TimeWindow.LAST_MONTH:
        return month_bounds(previous_month(current_month(zone, now)), zone)

    if window == TimeWindow.LAST_7_DAYS:
        start, _ = day_bounds(today - timedelta(days=6), zone)
        _, end = day_bounds(today, zone)
        return start, end

    raise TimezoneError(
        TimezoneErrorCode.INVALID_MONTH,
        f"unknown time window: {window}",
    )


def local_date(instant: datetime, zone: ZoneInfo) -> date:
    """Local calendar date on which a UTC instant falls."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(zone).date()


def month_days(month: str) -> list[date]:
    """Every calendar day of the month, in order."""
    year, month_number = parse_month(month)
    _, day_count = calendar.monthrange(year, month_number)
    return [date(year, month_number, day) for day in range(1, day_count + 1)]

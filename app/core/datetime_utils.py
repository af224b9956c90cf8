"""
Timezone-aware date/time helpers.

Every civil date/time the engine sees ("2026-03-09", "14:30") is interpreted in the
agent's configured IANA timezone and converted to an aware UTC datetime, so slot
boundaries can be compared directly with calendar event boundaries.
"""

import re
from datetime import date as date_type, datetime, timedelta, timezone as dt_timezone
from typing import Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.core.exceptions import ConfigurationError, ValidationError

UTC = dt_timezone.utc

# Indexed by date.weekday()
DAYS_OF_WEEK = ("MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY")

MONTH_NAMES = {
    1: "January", 2: "February", 3: "March", 4: "April", 5: "May", 6: "June",
    7: "July", 8: "August", 9: "September", 10: "October", 11: "November", 12: "December"
}

_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::\d{2})?$")

DateLike = Union[str, date_type]


def utc_now() -> datetime:
    return datetime.now(UTC)


def get_timezone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name. Raises ConfigurationError for unknown names."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError) as e:
        raise ConfigurationError(f"Invalid timezone: {name!r}") from e


def parse_date(value: DateLike) -> date_type:
    """Parse a YYYY-MM-DD string into a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date_type):
        return value

    match = _DATE_RE.match((value or "").strip())
    if not match:
        raise ValidationError(f"Invalid date '{value}'. Dates must use the YYYY-MM-DD format.", field="date")
    try:
        return date_type(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        raise ValidationError(f"Invalid date '{value}'. That day does not exist.", field="date")


def parse_time(value: str) -> Tuple[int, int]:
    """Parse an HH:MM (24-hour) string into (hour, minute)."""
    match = _TIME_RE.match((value or "").strip())
    if not match:
        raise ValidationError(f"Invalid time '{value}'. Times must use the 24-hour HH:MM format.", field="time")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValidationError(f"Invalid time '{value}'. Times must use the 24-hour HH:MM format.", field="time")
    return hour, minute


def format_iso_date(value: date_type) -> str:
    return value.strftime("%Y-%m-%d")


def day_of_week(value: DateLike) -> str:
    """Weekday name (MONDAY..SUNDAY) of a civil date."""
    return DAYS_OF_WEEK[parse_date(value).weekday()]


def create_date_in_timezone(value: DateLike, hour: int, minute: int, timezone: str) -> datetime:
    """
    Build the absolute instant for a civil date + wall-clock time in `timezone`.

    The offset is resolved for that specific date, so 09:00 in America/New_York is
    14:00 UTC in winter and 13:00 UTC in summer. Wall-clock times that fall inside a
    spring-forward gap resolve with the pre-transition offset.
    Returns an aware datetime in UTC.
    """
    tz = get_timezone(timezone)
    day = parse_date(value)
    local = datetime(day.year, day.month, day.day, hour, minute, tzinfo=tz)
    return local.astimezone(UTC)


def get_day_bounds_in_timezone(value: DateLike, timezone: str) -> Tuple[datetime, datetime]:
    """Start (00:00) and end (23:59) of a civil day in `timezone`, as UTC instants."""
    day_start = create_date_in_timezone(value, 0, 0, timezone)
    day_end = create_date_in_timezone(value, 23, 59, timezone)
    return day_start, day_end


def to_local(instant: datetime, timezone: str) -> datetime:
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    return instant.astimezone(get_timezone(timezone))


def local_today(timezone: str, now: datetime = None) -> date_type:
    return to_local(now or utc_now(), timezone).date()


def add_calendar_days(instant: datetime, days: int, timezone: str) -> datetime:
    """Shift by whole calendar days keeping the wall-clock time in `timezone`."""
    local = to_local(instant, timezone)
    return (local + timedelta(days=days)).astimezone(UTC)


def format_date(instant: datetime, timezone: str) -> str:
    """e.g. 'Monday, March 9, 2026'"""
    local = to_local(instant, timezone)
    weekday = DAYS_OF_WEEK[local.weekday()].capitalize()
    return f"{weekday}, {MONTH_NAMES[local.month]} {local.day}, {local.year}"


def format_time(instant: datetime, timezone: str) -> str:
    """e.g. '9:00 AM', '12:30 PM'"""
    local = to_local(instant, timezone)
    hour12 = local.hour % 12 or 12
    period = "AM" if local.hour < 12 else "PM"
    return f"{hour12}:{local.minute:02d} {period}"


def format_date_time(instant: datetime, timezone: str) -> str:
    return f"{format_date(instant, timezone)} at {format_time(instant, timezone)}"

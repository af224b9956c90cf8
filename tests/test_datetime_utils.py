import pytest
from datetime import date, datetime, timezone

from app.core.datetime_utils import (
    add_calendar_days,
    create_date_in_timezone,
    day_of_week,
    format_date,
    format_date_time,
    format_time,
    get_day_bounds_in_timezone,
    get_timezone,
    local_today,
    parse_date,
    parse_time,
)
from app.core.exceptions import ConfigurationError, ValidationError

UTC = timezone.utc


def test_same_wall_clock_maps_to_different_offsets_across_dst():
    # US DST starts 2026-03-08
    before = create_date_in_timezone("2026-03-06", 9, 0, "America/New_York")
    after = create_date_in_timezone("2026-03-09", 9, 0, "America/New_York")

    assert before == datetime(2026, 3, 6, 14, 0, tzinfo=UTC)
    assert after == datetime(2026, 3, 9, 13, 0, tzinfo=UTC)


def test_round_trip_formats_back_to_requested_time():
    for day in ("2026-03-06", "2026-03-09", "2026-11-02"):
        instant = create_date_in_timezone(day, 9, 0, "America/New_York")
        assert format_time(instant, "America/New_York") == "9:00 AM"


def test_create_date_in_utc_and_positive_offset():
    assert create_date_in_timezone("2026-03-09", 9, 30, "UTC") == datetime(2026, 3, 9, 9, 30, tzinfo=UTC)
    assert create_date_in_timezone("2026-07-01", 10, 0, "Europe/Prague") == datetime(2026, 7, 1, 8, 0, tzinfo=UTC)


def test_day_bounds_follow_local_midnight():
    start, end = get_day_bounds_in_timezone("2026-03-09", "America/New_York")
    assert start == datetime(2026, 3, 9, 4, 0, tzinfo=UTC)
    assert end == datetime(2026, 3, 10, 3, 59, tzinfo=UTC)


def test_invalid_timezone_raises_configuration_error():
    with pytest.raises(ConfigurationError):
        get_timezone("Mars/Olympus_Mons")
    with pytest.raises(ConfigurationError):
        create_date_in_timezone("2026-03-09", 9, 0, "Not/AZone")


@pytest.mark.parametrize("value", ["2026-02-30", "03/09/2026", "tomorrow", ""])
def test_parse_date_rejects_bad_input(value):
    with pytest.raises(ValidationError) as exc:
        parse_date(value)
    assert exc.value.field == "date"


def test_parse_date_accepts_dates():
    assert parse_date("2026-03-09") == date(2026, 3, 9)
    assert parse_date(date(2026, 3, 9)) == date(2026, 3, 9)
    assert parse_date(datetime(2026, 3, 9, 15, 0)) == date(2026, 3, 9)


def test_parse_time():
    assert parse_time("09:05") == (9, 5)
    assert parse_time("9:05") == (9, 5)
    assert parse_time("14:30:00") == (14, 30)
    for bad in ("25:00", "12:60", "2pm", ""):
        with pytest.raises(ValidationError):
            parse_time(bad)


def test_day_of_week():
    assert day_of_week("2026-03-09") == "MONDAY"
    assert day_of_week("2026-03-08") == "SUNDAY"


def test_add_calendar_days_keeps_wall_clock_over_dst():
    # Saturday 12:00 EST -> Monday 12:00 EDT
    start = datetime(2026, 3, 7, 17, 0, tzinfo=UTC)
    assert add_calendar_days(start, 2, "America/New_York") == datetime(2026, 3, 9, 16, 0, tzinfo=UTC)


def test_local_today_uses_zone():
    now = datetime(2026, 3, 10, 2, 0, tzinfo=UTC)
    assert local_today("America/New_York", now) == date(2026, 3, 9)
    assert local_today("UTC", now) == date(2026, 3, 10)


def test_speech_formats():
    instant = datetime(2026, 3, 9, 17, 30, tzinfo=UTC)
    assert format_date(instant, "America/New_York") == "Monday, March 9, 2026"
    assert format_time(instant, "America/New_York") == "1:30 PM"
    assert format_time(datetime(2026, 3, 9, 4, 0, tzinfo=UTC), "America/New_York") == "12:00 AM"
    assert format_date_time(instant, "America/New_York") == "Monday, March 9, 2026 at 1:30 PM"

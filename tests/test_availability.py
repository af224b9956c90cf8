import pytest
from datetime import datetime, timedelta, timezone

from app.core.exceptions import ConfigurationError
from app.services.availability_service import (
    check_slot_availability,
    find_next_available_slot,
    format_available_slots_for_llm,
    format_time_slot,
    get_available_slots,
    get_available_slots_multiple_days,
    is_slot_booked,
)
from app.services.calendar_service import to_calendar_event
from conftest import (
    NY,
    AlwaysBusyEventSource,
    FailingEventSource,
    FakeEventSource,
    build_config,
    local,
    make_event,
)

UTC = timezone.utc
MONDAY = "2026-03-09"
SATURDAY = "2026-03-07"


# --- Slot generation ---

@pytest.mark.asyncio
async def test_empty_day_yields_eight_hourly_slots(config, now):
    result = await get_available_slots(FakeEventSource(), config, MONDAY, now=now)

    assert result.date == MONDAY
    assert result.timezone == NY
    assert len(result.slots) == 8
    assert all(slot.available for slot in result.slots)
    assert result.slots[0].start == local(2026, 3, 9, 9)
    assert result.slots[-1].end == local(2026, 3, 9, 17)
    assert result.preferred_slots == result.slots


@pytest.mark.asyncio
async def test_slots_respect_buffer_and_window(now):
    config = build_config(slot_duration_minutes=30, buffer_between_slots_minutes=15)
    result = await get_available_slots(FakeEventSource(), config, MONDAY, now=now)

    window_end = local(2026, 3, 9, 17)
    assert len(result.slots) == 11
    for first, second in zip(result.slots, result.slots[1:]):
        assert second.start - first.start == timedelta(minutes=45)
        assert second.start >= first.end + timedelta(minutes=15)
    for slot in result.slots:
        assert slot.end - slot.start == timedelta(minutes=30)
        assert slot.end <= window_end


@pytest.mark.asyncio
async def test_non_preferred_day_has_slots_but_no_preferred_slots(config, now):
    result = await get_available_slots(FakeEventSource(), config, SATURDAY, now=now)

    assert len(result.slots) == 8
    assert result.preferred_slots == []


@pytest.mark.asyncio
async def test_touching_events_do_not_conflict(config, now):
    source = FakeEventSource([make_event(local(2026, 3, 9, 10), local(2026, 3, 9, 11))])
    result = await get_available_slots(source, config, MONDAY, now=now)

    by_start = {slot.start: slot.available for slot in result.slots}
    assert by_start[local(2026, 3, 9, 9)] is True
    assert by_start[local(2026, 3, 9, 10)] is False
    assert by_start[local(2026, 3, 9, 11)] is True


@pytest.mark.asyncio
async def test_cancelled_events_are_ignored(config, now):
    source = FakeEventSource([
        make_event(local(2026, 3, 9, 10), local(2026, 3, 9, 11), status="cancelled"),
    ])
    result = await get_available_slots(source, config, MONDAY, now=now)
    assert all(slot.available for slot in result.slots)


@pytest.mark.asyncio
async def test_all_day_event_blocks_the_local_day_east_of_utc():
    sydney = "Australia/Sydney"
    config = build_config(timezone=sydney)
    now = datetime(2026, 6, 1, tzinfo=UTC)
    source = FakeEventSource([to_calendar_event({
        "id": "holiday",
        "status": "confirmed",
        "start": {"date": "2026-06-09"},
        "end": {"date": "2026-06-10"},
    })])

    blocked = await get_available_slots(source, config, "2026-06-09", now=now)
    assert len(blocked.slots) == 8
    assert not any(slot.available for slot in blocked.slots)

    check = await check_slot_availability(source, config, "2026-06-09", "09:00", now=now)
    assert check.available is False
    assert check.reason == "The requested time slot is already booked"

    next_day = await get_available_slots(source, config, "2026-06-10", now=now)
    assert all(slot.available for slot in next_day.slots)
    assert next_day.slots[0].start == local(2026, 6, 10, 9, tz=sydney)


def test_half_open_overlap_law():
    start = datetime(2026, 3, 9, 13, 0, tzinfo=UTC)
    end = datetime(2026, 3, 9, 14, 0, tzinfo=UTC)

    def event(s, e):
        return make_event(datetime(2026, 3, 9, *s, tzinfo=UTC), datetime(2026, 3, 9, *e, tzinfo=UTC))

    assert not is_slot_booked(start, end, [event((12, 0), (13, 0))])
    assert not is_slot_booked(start, end, [event((14, 0), (15, 0))])
    assert is_slot_booked(start, end, [event((12, 30), (13, 1))])
    assert is_slot_booked(start, end, [event((13, 59), (15, 0))])
    assert is_slot_booked(start, end, [event((13, 15), (13, 45))])


@pytest.mark.asyncio
async def test_slots_inside_min_notice_are_unavailable(now):
    config = build_config(min_notice_hours=24)
    # Boundary is 2026-03-03 12:00 UTC = 07:00 EST, so all of Tuesday is bookable
    tuesday = await get_available_slots(FakeEventSource(), config, "2026-03-03", now=now)
    monday = await get_available_slots(FakeEventSource(), config, "2026-03-02", now=now)

    assert all(slot.available for slot in tuesday.slots)
    assert not any(slot.available for slot in monday.slots)


@pytest.mark.asyncio
async def test_slots_beyond_max_advance_are_unavailable(now):
    config = build_config(max_advance_days=7)
    result = await get_available_slots(FakeEventSource(), config, "2026-03-10", now=now)
    assert not any(slot.available for slot in result.slots)


@pytest.mark.asyncio
async def test_provider_failure_fails_open(config, now):
    source = FailingEventSource()
    result = await get_available_slots(source, config, MONDAY, now=now)

    assert source.calls == 1
    assert len(result.slots) == 8
    assert all(slot.available for slot in result.slots)


@pytest.mark.asyncio
async def test_invalid_timezone_propagates(now):
    config = build_config(timezone="Nowhere/Land")
    with pytest.raises(ConfigurationError):
        await get_available_slots(FakeEventSource(), config, MONDAY, now=now)


@pytest.mark.asyncio
async def test_generation_is_deterministic(config, now):
    source = FakeEventSource([make_event(local(2026, 3, 9, 12), local(2026, 3, 9, 13))])
    first = await get_available_slots(source, config, MONDAY, now=now)
    second = await get_available_slots(source, config, MONDAY, now=now)
    assert first == second


# --- Single slot validation ---

@pytest.mark.asyncio
async def test_free_slot_is_accepted(config, now):
    result = await check_slot_availability(FakeEventSource(), config, MONDAY, "10:00", now=now)

    assert result.available is True
    assert result.reason is None
    assert result.requested_slot.start == local(2026, 3, 9, 10)
    assert result.requested_slot.end == local(2026, 3, 9, 11)


@pytest.mark.asyncio
async def test_booked_slot_offers_alternatives(now):
    config = build_config(slot_duration_minutes=30)
    source = FakeEventSource([make_event(local(2026, 3, 9, 10), local(2026, 3, 9, 10, 30))])

    result = await check_slot_availability(source, config, MONDAY, "10:00", now=now)

    assert result.available is False
    assert result.reason == "The requested time slot is already booked"
    assert 0 < len(result.alternative_slots) <= 5
    assert all(slot.available for slot in result.alternative_slots)
    assert local(2026, 3, 9, 10) not in [slot.start for slot in result.alternative_slots]
    assert result.alternative_slots[0].start == local(2026, 3, 9, 9)


@pytest.mark.asyncio
async def test_min_notice_rejection_limits_alternatives():
    config = build_config(min_notice_hours=24)
    now = datetime(2026, 3, 8, 20, 0, tzinfo=UTC)

    result = await check_slot_availability(FakeEventSource(), config, MONDAY, "10:00", now=now)

    assert result.available is False
    assert result.reason == "Appointments must be booked at least 24 hours in advance"
    assert [slot.start for slot in result.alternative_slots] == [local(2026, 3, 9, 16)]
    assert all(slot.start >= now + timedelta(hours=24) for slot in result.alternative_slots)


@pytest.mark.asyncio
async def test_max_advance_rejection_has_no_alternatives(now):
    result = await check_slot_availability(FakeEventSource(), build_config(), "2026-04-15", "10:00", now=now)

    assert result.available is False
    assert result.reason == "Appointments cannot be booked more than 30 days in advance"
    assert result.alternative_slots is None


@pytest.mark.asyncio
async def test_non_preferred_day_rejected_without_alternatives(config, now):
    result = await check_slot_availability(FakeEventSource(), config, SATURDAY, "10:00", now=now)

    assert result.available is False
    assert result.reason == "Appointments are only available on: MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY"
    assert not result.alternative_slots


@pytest.mark.asyncio
async def test_outside_hours_rejected_with_preferred_alternatives(config, now):
    early = await check_slot_availability(FakeEventSource(), config, MONDAY, "08:00", now=now)
    late = await check_slot_availability(FakeEventSource(), config, MONDAY, "16:30", now=now)

    for result in (early, late):
        assert result.available is False
        assert result.reason == "Appointments are only available between 09:00 and 17:00"
        assert len(result.alternative_slots) == 5
        assert result.alternative_slots[0].start == local(2026, 3, 9, 9)


@pytest.mark.asyncio
async def test_past_request_rejected(config, now):
    result = await check_slot_availability(FakeEventSource(), config, "2026-02-27", "10:00", now=now)

    assert result.available is False
    assert "in the past" in result.reason
    assert result.alternative_slots is None


@pytest.mark.asyncio
async def test_validator_is_idempotent(config, now):
    source = FakeEventSource([make_event(local(2026, 3, 9, 10), local(2026, 3, 9, 11))])
    first = await check_slot_availability(source, config, MONDAY, "10:00", now=now)
    second = await check_slot_availability(source, config, MONDAY, "10:00", now=now)
    assert first == second


@pytest.mark.asyncio
async def test_validator_sees_new_events_between_calls(config, now):
    source = FakeEventSource()
    before = await check_slot_availability(source, config, MONDAY, "10:00", now=now)

    source.events.append(make_event(local(2026, 3, 9, 10), local(2026, 3, 9, 11)))
    after = await check_slot_availability(source, config, MONDAY, "10:00", now=now)

    assert before.available is True
    assert after.available is False
    assert after.reason == "The requested time slot is already booked"


@pytest.mark.asyncio
async def test_validator_fails_open(config, now):
    result = await check_slot_availability(FailingEventSource(), config, MONDAY, "10:00", now=now)
    assert result.available is True


# --- Multi-day scans ---

@pytest.mark.asyncio
async def test_multiple_days_skips_non_preferred_and_full_days(config, now):
    busy_friday = make_event(local(2026, 3, 6, 0), local(2026, 3, 6, 23, 59))
    source = FakeEventSource([busy_friday])

    result = await get_available_slots_multiple_days(source, config, "2026-03-05", num_days=5, now=now)

    assert list(result.keys()) == ["2026-03-05", "2026-03-09"]
    assert all(slot.available for slots in result.values() for slot in slots)
    # Weekend days are never fetched
    assert len(source.calls) == 3


@pytest.mark.asyncio
async def test_multiple_days_stops_past_max_advance(now):
    config = build_config(max_advance_days=7)
    source = FakeEventSource()

    result = await get_available_slots_multiple_days(source, config, MONDAY, num_days=7, now=now)

    assert result == {}
    assert len(source.calls) == 1


@pytest.mark.asyncio
async def test_find_next_available_skips_notice_window_and_weekend():
    config = build_config(min_notice_hours=24)
    now = datetime(2026, 3, 6, 12, 0, tzinfo=UTC)

    slot = await find_next_available_slot(FakeEventSource(), config, now=now)

    assert slot is not None
    assert slot.start == local(2026, 3, 9, 9)


@pytest.mark.asyncio
async def test_find_next_available_from_explicit_date(config, now):
    slot = await find_next_available_slot(FakeEventSource(), config, start_date="2026-03-10", now=now)
    assert slot.start == local(2026, 3, 10, 9)


@pytest.mark.asyncio
async def test_find_next_available_returns_none_when_fully_booked(now):
    config = build_config(max_advance_days=3)
    assert await find_next_available_slot(AlwaysBusyEventSource(), config, now=now) is None


# --- Formatting ---

@pytest.mark.asyncio
async def test_format_slots_for_speech(config, now):
    result = await get_available_slots(FakeEventSource(), config, MONDAY, now=now)

    assert format_time_slot(result.slots[0], NY) == "9:00 AM - 10:00 AM"
    text = format_available_slots_for_llm(result.slots, NY, max_slots=2)
    assert text.splitlines() == [
        "- Monday, March 9, 2026 at 9:00 AM - 10:00 AM",
        "- Monday, March 9, 2026 at 10:00 AM - 11:00 AM",
    ]


def test_format_empty_slots():
    assert format_available_slots_for_llm([], NY) == "No available time slots found."

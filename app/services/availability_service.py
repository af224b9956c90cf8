"""
Calendar availability engine.

Generates fixed-length slots inside an agent's preferred hours, validates a single
requested slot against the booking policy, and scans ahead for open days. All
civil dates and times are interpreted in the agent's configured timezone.

Events are fetched fresh on every call. If the calendar provider fails, the day is
treated as empty (fail-open): availability degrades gracefully instead of blocking
the caller, at the cost of a possible double booking while the provider is down.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from app.core.datetime_utils import (
    DateLike,
    add_calendar_days,
    create_date_in_timezone,
    day_of_week,
    format_date,
    format_iso_date,
    format_time,
    get_day_bounds_in_timezone,
    local_today,
    parse_date,
    parse_time,
    utc_now,
)
from app.core.exceptions import CalendarProviderError
from app.core.logger import logger
from app.models.calendar_models import (
    AgentCalendarConfig,
    AvailabilityResponse,
    CalendarEvent,
    SlotCheckResponse,
    TimeSlot,
)
from app.services.calendar_service import EventSource

# Requests up to this far in the past are tolerated (clock skew, slow callers)
PAST_TOLERANCE = timedelta(hours=1)
MAX_ALTERNATIVES = 5


# --- Policy helpers ---

def is_slot_booked(start: datetime, end: datetime, events: List[CalendarEvent]) -> bool:
    """Half-open overlap test against non-cancelled events; touching edges do not conflict."""
    for event in events:
        if event.is_cancelled:
            continue
        if event.start is None or event.end is None:
            continue
        if start < event.end and end > event.start:
            return True
    return False


def meets_min_notice(start: datetime, min_notice_hours: int, now: datetime) -> bool:
    return start >= now + timedelta(hours=min_notice_hours)


def max_advance_limit(config: AgentCalendarConfig, now: datetime) -> datetime:
    return add_calendar_days(now, config.max_advance_days, config.timezone)


def preferred_window(config: AgentCalendarConfig, date: DateLike) -> Tuple[datetime, datetime]:
    start_hour, start_minute = parse_time(config.preferred_hours_start)
    end_hour, end_minute = parse_time(config.preferred_hours_end)
    return (
        create_date_in_timezone(date, start_hour, start_minute, config.timezone),
        create_date_in_timezone(date, end_hour, end_minute, config.timezone),
    )


def anchor_all_day_events(events: List[CalendarEvent], timezone: str) -> List[CalendarEvent]:
    """All-day events block from local midnight of their first day to local midnight after the last."""
    anchored = []
    for event in events:
        if event.is_all_day:
            end_date = event.end_date or event.start_date + timedelta(days=1)
            event = event.model_copy(update={
                "start": create_date_in_timezone(event.start_date, 0, 0, timezone),
                "end": create_date_in_timezone(end_date, 0, 0, timezone),
            })
        anchored.append(event)
    return anchored


async def fetch_day_events(calendar: EventSource, config: AgentCalendarConfig, date: DateLike) -> List[CalendarEvent]:
    day_start, day_end = get_day_bounds_in_timezone(date, config.timezone)
    try:
        events = await calendar.get_events(
            config.calendar_id,
            day_start,
            day_end,
            single_events=True,
            order_by="startTime",
        )
    except CalendarProviderError as e:
        logger.warning(f"⚠️ Calendar fetch failed for {config.calendar_id} on {format_iso_date(parse_date(date))}, assuming no events: {e}")
        return []
    return anchor_all_day_events(events, config.timezone)


def _first_available(slots: List[TimeSlot], limit: int = MAX_ALTERNATIVES) -> List[TimeSlot]:
    return [slot for slot in slots if slot.available][:limit]


# --- Slot generation ---

async def get_available_slots(
    calendar: EventSource,
    config: AgentCalendarConfig,
    date: DateLike,
    now: Optional[datetime] = None,
) -> AvailabilityResponse:
    """
    All candidate slots for one civil day.

    Slots start at preferred_hours_start and advance by duration + buffer; a slot
    whose end would pass preferred_hours_end is not generated. `preferred_slots`
    repeats `slots` only when the day is one of the agent's preferred days.
    """
    now = now or utc_now()
    day = parse_date(date)
    is_preferred_day = day_of_week(day) in config.preferred_days

    window_start, window_end = preferred_window(config, day)
    events = await fetch_day_events(calendar, config, day)
    advance_limit = max_advance_limit(config, now)

    duration = timedelta(minutes=config.slot_duration_minutes)
    step = duration + timedelta(minutes=config.buffer_between_slots_minutes)

    slots: List[TimeSlot] = []
    preferred_slots: List[TimeSlot] = []

    current = window_start
    while current < window_end:
        slot_end = current + duration
        if slot_end > window_end:
            break

        available = (
            not is_slot_booked(current, slot_end, events)
            and meets_min_notice(current, config.min_notice_hours, now)
            and current <= advance_limit
        )
        slot = TimeSlot(start=current, end=slot_end, available=available)
        slots.append(slot)
        if is_preferred_day:
            preferred_slots.append(slot)

        current = current + step

    return AvailabilityResponse(
        date=format_iso_date(day),
        timezone=config.timezone,
        slots=slots,
        preferred_slots=preferred_slots,
    )


# --- Single slot validation ---

async def check_slot_availability(
    calendar: EventSource,
    config: AgentCalendarConfig,
    date: DateLike,
    time: str,
    now: Optional[datetime] = None,
) -> SlotCheckResponse:
    """
    Run the booking policy for one requested slot. The first failing rule decides
    the reason; where it helps, up to five alternatives from the same day are
    attached. Alternatives are always recomputed from the live calendar.
    """
    now = now or utc_now()
    day = parse_date(date)
    hour, minute = parse_time(time)

    slot_start = create_date_in_timezone(day, hour, minute, config.timezone)
    slot_end = slot_start + timedelta(minutes=config.slot_duration_minutes)
    requested = TimeSlot(start=slot_start, end=slot_end, available=False)

    def rejected(reason: str, alternatives: Optional[List[TimeSlot]] = None) -> SlotCheckResponse:
        logger.info(f"🚫 Slot {format_iso_date(day)} {time} rejected: {reason}")
        return SlotCheckResponse(
            available=False,
            requested_slot=requested,
            alternative_slots=alternatives,
            reason=reason,
        )

    if slot_start < now - PAST_TOLERANCE:
        return rejected("The requested time is in the past. Please choose a future date and time.")

    if config.min_notice_hours > 0 and not meets_min_notice(slot_start, config.min_notice_hours, now):
        availability = await get_available_slots(calendar, config, day, now)
        return rejected(
            f"Appointments must be booked at least {config.min_notice_hours} hours in advance",
            _first_available(availability.slots),
        )

    if slot_start > max_advance_limit(config, now):
        return rejected(f"Appointments cannot be booked more than {config.max_advance_days} days in advance")

    if day_of_week(day) not in config.preferred_days:
        availability = await get_available_slots(calendar, config, day, now)
        return rejected(
            f"Appointments are only available on: {', '.join(config.preferred_days)}",
            _first_available(availability.preferred_slots),
        )

    window_start, window_end = preferred_window(config, day)
    if slot_start < window_start or slot_end > window_end:
        availability = await get_available_slots(calendar, config, day, now)
        return rejected(
            f"Appointments are only available between {config.preferred_hours_start} and {config.preferred_hours_end}",
            _first_available(availability.preferred_slots),
        )

    events = await fetch_day_events(calendar, config, day)
    if is_slot_booked(slot_start, slot_end, events):
        availability = await get_available_slots(calendar, config, day, now)
        return rejected("The requested time slot is already booked", _first_available(availability.slots))

    return SlotCheckResponse(
        available=True,
        requested_slot=TimeSlot(start=slot_start, end=slot_end, available=True),
    )


# --- Multi-day scans ---

async def get_available_slots_multiple_days(
    calendar: EventSource,
    config: AgentCalendarConfig,
    start_date: DateLike,
    num_days: int = 7,
    now: Optional[datetime] = None,
) -> Dict[str, List[TimeSlot]]:
    """Available slots per preferred day, keyed by YYYY-MM-DD in date order. Days without openings are left out."""
    now = now or utc_now()
    start = parse_date(start_date)
    advance_limit = max_advance_limit(config, now)

    results: Dict[str, List[TimeSlot]] = {}
    for offset in range(num_days):
        day = start + timedelta(days=offset)
        if day_of_week(day) not in config.preferred_days:
            continue
        if create_date_in_timezone(day, 0, 0, config.timezone) > advance_limit:
            break

        availability = await get_available_slots(calendar, config, day, now)
        open_slots = [slot for slot in availability.slots if slot.available]
        if open_slots:
            results[format_iso_date(day)] = open_slots

    return results


async def find_next_available_slot(
    calendar: EventSource,
    config: AgentCalendarConfig,
    start_date: Optional[DateLike] = None,
    now: Optional[datetime] = None,
) -> Optional[TimeSlot]:
    """Earliest open slot on a preferred day within the booking window, or None."""
    now = now or utc_now()
    start = parse_date(start_date) if start_date else local_today(config.timezone, now)

    for offset in range(config.max_advance_days + 1):
        day = start + timedelta(days=offset)
        if day_of_week(day) not in config.preferred_days:
            continue

        availability = await get_available_slots(calendar, config, day, now)
        for slot in availability.slots:
            if slot.available:
                return slot

    return None


# --- Formatting for speech ---

def format_time_slot(slot: TimeSlot, timezone: str) -> str:
    return f"{format_time(slot.start, timezone)} - {format_time(slot.end, timezone)}"


def format_available_slots_for_llm(slots: List[TimeSlot], timezone: str, max_slots: int = 5) -> str:
    if not slots:
        return "No available time slots found."

    lines = [
        f"- {format_date(slot.start, timezone)} at {format_time_slot(slot, timezone)}"
        for slot in slots[:max_slots]
    ]
    return "\n".join(lines)

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from app.core.exceptions import CalendarProviderError
from app.models.calendar_models import AgentCalendarConfig, Appointment, CalendarEvent, GoogleCalendarCredential

NY = "America/New_York"


def local(year, month, day, hour, minute=0, tz=NY) -> datetime:
    """Wall-clock time in `tz` as an aware UTC datetime."""
    return datetime(year, month, day, hour, minute, tzinfo=ZoneInfo(tz)).astimezone(timezone.utc)


def make_event(start, end, status="confirmed", event_id="evt-1") -> CalendarEvent:
    return CalendarEvent(id=event_id, summary="Busy", start=start, end=end, status=status)


class FakeEventSource:
    """In-memory calendar. `events` can be mutated between calls."""

    def __init__(self, events=None):
        self.events = list(events or [])
        self.calls = []

    async def get_events(self, calendar_id, time_min, time_max, single_events=True, order_by="startTime"):
        self.calls.append((calendar_id, time_min, time_max))
        return [e for e in self.events if e.start < time_max and e.end > time_min]


class FailingEventSource:
    def __init__(self):
        self.calls = 0

    async def get_events(self, calendar_id, time_min, time_max, single_events=True, order_by="startTime"):
        self.calls += 1
        raise CalendarProviderError("Failed to get events: backend unavailable", status_code=503)


class AlwaysBusyEventSource:
    async def get_events(self, calendar_id, time_min, time_max, single_events=True, order_by="startTime"):
        return [make_event(time_min, time_max, event_id="all-day-block")]


def build_config(**overrides) -> AgentCalendarConfig:
    data = dict(
        id="cfg-1",
        agent_id="agent-1",
        workspace_id="ws-1",
        google_credential_id="cred-1",
        calendar_id="primary",
        timezone=NY,
        slot_duration_minutes=60,
        buffer_between_slots_minutes=0,
        preferred_days=["monday", "tuesday", "wednesday", "thursday", "friday"],
        preferred_hours_start="09:00",
        preferred_hours_end="17:00",
        min_notice_hours=0,
        max_advance_days=30,
        credential=GoogleCalendarCredential(
            id="cred-1",
            client_id="client",
            client_secret="secret",
            refresh_token="refresh-token",
            access_token="access-token",
            token_expiry=datetime(2030, 1, 1, tzinfo=timezone.utc),
        ),
    )
    data.update(overrides)
    return AgentCalendarConfig(**data)


@pytest.fixture
def config():
    return build_config()


# Monday 2026-03-02, 07:00 in New York
@pytest.fixture
def now():
    return datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def make_appointment(start, **overrides) -> Appointment:
    data = dict(
        id="appt-1",
        agent_id="agent-1",
        calendar_id="primary",
        google_event_id="evt-1",
        attendee_name="Jane Doe",
        attendee_email="jane@example.com",
        scheduled_start=start,
        scheduled_end=start,
        timezone=NY,
        duration_minutes=60,
    )
    data.update(overrides)
    return Appointment(**data)

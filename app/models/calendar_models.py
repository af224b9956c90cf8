from typing import Optional, List, Dict, Any, Literal
from datetime import date, datetime
from enum import Enum
from pydantic import BaseModel, Field, field_validator

from app.core.datetime_utils import DAYS_OF_WEEK, parse_time
from app.core.exceptions import ValidationError as CalendarValidationError

# --- Enums ---

class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"

class AppointmentType(str, Enum):
    BOOK = "book"
    RESCHEDULE = "reschedule"
    CANCEL = "cancel"


# --- Configuration ---

class ReminderSetting(BaseModel):
    id: Optional[str] = None
    value: int
    unit: Literal["minutes", "hours", "days"] = "minutes"

    def to_minutes(self) -> int:
        if self.unit == "hours":
            return self.value * 60
        if self.unit == "days":
            return self.value * 24 * 60
        return self.value


class GoogleCalendarCredential(BaseModel):
    id: Optional[str] = None
    client_id: str = ""
    client_secret: str = ""
    refresh_token: Optional[str] = None
    access_token: Optional[str] = None
    token_expiry: Optional[datetime] = None
    is_active: bool = True


class AgentCalendarConfig(BaseModel):
    id: Optional[str] = None
    agent_id: Optional[str] = None
    workspace_id: Optional[str] = None
    google_credential_id: Optional[str] = None

    calendar_id: str
    # Not validated here: an unknown zone surfaces as ConfigurationError on first use.
    timezone: str

    slot_duration_minutes: int = Field(default=30, gt=0)
    buffer_between_slots_minutes: int = Field(default=0, ge=0)
    preferred_days: List[str] = Field(default_factory=lambda: ["MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY"])
    preferred_hours_start: str = "09:00"
    preferred_hours_end: str = "17:00"
    min_notice_hours: int = Field(default=24, ge=0)
    max_advance_days: int = Field(default=30, ge=0)

    # Notifications
    enable_owner_email: bool = False
    owner_email: Optional[str] = None
    send_24h_reminder: bool = True
    send_1h_reminder: bool = True
    enable_reminders: bool = False
    reminders: List[ReminderSetting] = Field(default_factory=list)

    is_active: bool = True

    # Joined row from google_calendar_credentials
    credential: Optional[GoogleCalendarCredential] = None

    @field_validator("preferred_days", mode="before")
    @classmethod
    def normalize_days(cls, value):
        # Stored lowercase in the database, compared uppercase everywhere else
        days = []
        for day in value or []:
            name = str(day).strip().upper()
            if name not in DAYS_OF_WEEK:
                raise ValueError(f"Unknown weekday: {day}")
            if name not in days:
                days.append(name)
        return days

    @field_validator("preferred_hours_start", "preferred_hours_end")
    @classmethod
    def check_hours(cls, value: str) -> str:
        try:
            hour, minute = parse_time(value)
        except CalendarValidationError as e:
            raise ValueError(e.message)
        return f"{hour:02d}:{minute:02d}"

    @field_validator("reminders", mode="before")
    @classmethod
    def default_reminders(cls, value):
        return value or []


# --- Calendar / availability ---

class CalendarEvent(BaseModel):
    id: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    status: Optional[str] = None
    html_link: Optional[str] = None
    # Civil dates of an all-day event; start/end then hold UTC midnight until anchored to a zone
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"

    @property
    def is_all_day(self) -> bool:
        return self.start_date is not None


class TimeSlot(BaseModel):
    start: datetime
    end: datetime
    available: bool


class AvailabilityResponse(BaseModel):
    date: str
    timezone: str
    slots: List[TimeSlot]
    preferred_slots: List[TimeSlot]


class SlotCheckResponse(BaseModel):
    available: bool
    requested_slot: TimeSlot
    alternative_slots: Optional[List[TimeSlot]] = None
    reason: Optional[str] = None


# --- Appointments ---

class Appointment(BaseModel):
    id: Optional[str] = None
    agent_id: str
    workspace_id: Optional[str] = None
    calendar_config_id: Optional[str] = None
    conversation_id: Optional[str] = None
    google_event_id: Optional[str] = None
    calendar_id: str
    attendee_name: str
    attendee_email: str
    attendee_phone: Optional[str] = None
    appointment_type: AppointmentType = AppointmentType.BOOK
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    scheduled_start: datetime
    scheduled_end: datetime
    timezone: str
    duration_minutes: int
    rescheduled_from: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    notes: Optional[str] = None
    custom_fields: Dict[str, Any] = Field(default_factory=dict)
    extracted_from_transcript: bool = False

    @field_validator("custom_fields", mode="before")
    @classmethod
    def default_custom_fields(cls, value):
        return value or {}


class BookAppointmentInput(BaseModel):
    agent_id: str
    attendee_name: str
    attendee_email: str
    attendee_phone: Optional[str] = None
    preferred_date: str
    preferred_time: str
    notes: Optional[str] = None
    conversation_id: Optional[str] = None
    custom_fields: Dict[str, Any] = Field(default_factory=dict)

class BookAppointmentResult(BaseModel):
    success: bool
    # The requested slot failed the availability check (as opposed to a provider or DB failure)
    slot_rejected: bool = False
    appointment: Optional[Appointment] = None
    google_event: Optional[CalendarEvent] = None
    error: Optional[str] = None
    alternative_slots: Optional[List[TimeSlot]] = None
    # Agent zone the alternatives should be read out in
    timezone: Optional[str] = None


class CancelAppointmentInput(BaseModel):
    agent_id: str
    attendee_email: str
    attendee_name: Optional[str] = None
    appointment_date: Optional[str] = None
    cancellation_reason: Optional[str] = None
    # Exact row to cancel; skips the attendee search
    appointment_id: Optional[str] = None

class CancelAppointmentResult(BaseModel):
    success: bool
    appointment: Optional[Appointment] = None
    error: Optional[str] = None
    not_found: bool = False


class RescheduleAppointmentInput(BaseModel):
    agent_id: str
    attendee_email: str
    attendee_name: Optional[str] = None
    current_appointment_date: Optional[str] = None
    new_date: str
    new_time: str
    appointment_id: Optional[str] = None

class RescheduleAppointmentResult(BaseModel):
    success: bool
    slot_rejected: bool = False
    original_appointment: Optional[Appointment] = None
    new_appointment: Optional[Appointment] = None
    error: Optional[str] = None
    not_found: bool = False
    alternative_slots: Optional[List[TimeSlot]] = None
    timezone: Optional[str] = None

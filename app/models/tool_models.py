"""
Typed calendar tool calls.

The voice platform sends `{name, arguments}` with free-form arguments. Each of the
four calendar tools gets its own model; `parse_tool_call` picks the variant by name
and turns any field problem into a ValidationError whose message can be spoken
back to the caller.
"""

import json
from typing import Annotated, Any, ClassVar, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticCustomError

from app.core.datetime_utils import parse_date, parse_time
from app.core.exceptions import ValidationError

CALENDAR_TOOL_NAMES = (
    "book_appointment",
    "cancel_appointment",
    "reschedule_appointment",
    "check_availability",
)

RequiredStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


def is_calendar_tool(name: str) -> bool:
    return name in CALENDAR_TOOL_NAMES


def _check_date(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    try:
        parse_date(value)
    except ValidationError as e:
        raise PydanticCustomError("invalid_format", e.message)
    return value


def _check_time(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    try:
        hour, minute = parse_time(value)
    except ValidationError as e:
        raise PydanticCustomError("invalid_format", e.message)
    return f"{hour:02d}:{minute:02d}"


class ToolArguments(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    # field name -> what to say when it is missing
    missing_messages: ClassVar[Dict[str, str]] = {}
    default_missing_message: ClassVar[str] = "Some required information is missing."

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        # LLMs send "" for fields they could not fill
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @classmethod
    def missing_message(cls, field: str) -> str:
        return cls.missing_messages.get(field, cls.default_missing_message)


class BookAppointmentArgs(ToolArguments):
    default_missing_message: ClassVar[str] = (
        "Missing required information. Please provide: name, email, "
        "preferred date (YYYY-MM-DD), and preferred time (HH:MM)"
    )

    attendee_name: RequiredStr
    attendee_email: RequiredStr
    preferred_date: RequiredStr
    preferred_time: RequiredStr
    attendee_phone: Optional[str] = None
    notes: Optional[str] = None

    validate_date = field_validator("preferred_date")(_check_date)
    validate_time = field_validator("preferred_time")(_check_time)


class CancelAppointmentArgs(ToolArguments):
    missing_messages: ClassVar[Dict[str, str]] = {
        "attendee_email": "I need your email address to look up your appointment. What email did you use when booking?",
    }

    attendee_email: RequiredStr
    attendee_name: Optional[str] = None
    appointment_date: Optional[str] = None
    cancellation_reason: Optional[str] = None

    validate_date = field_validator("appointment_date")(_check_date)


class RescheduleAppointmentArgs(ToolArguments):
    missing_messages: ClassVar[Dict[str, str]] = {
        "attendee_email": "I need your email address to find your appointment. What email did you use when booking?",
        "new_date": "I need the new date and time you'd like to reschedule to. What date and time works best for you?",
        "new_time": "I need the new date and time you'd like to reschedule to. What date and time works best for you?",
    }

    # Field order decides which question is asked first
    attendee_email: RequiredStr
    new_date: RequiredStr
    new_time: RequiredStr
    attendee_name: Optional[str] = None
    current_appointment_date: Optional[str] = None

    validate_dates = field_validator("new_date", "current_appointment_date")(_check_date)
    validate_time = field_validator("new_time")(_check_time)


class CheckAvailabilityArgs(ToolArguments):
    missing_messages: ClassVar[Dict[str, str]] = {
        "date": "Please specify a date to check availability for.",
    }

    date: RequiredStr
    time: Optional[str] = None

    validate_date = field_validator("date")(_check_date)
    validate_time = field_validator("time")(_check_time)


class _ToolCallBase(BaseModel):
    @field_validator("arguments", mode="before", check_fields=False)
    @classmethod
    def decode_arguments(cls, value):
        # OpenAI-style payloads carry arguments as a JSON string
        if value is None:
            return {}
        if isinstance(value, str):
            if not value.strip():
                return {}
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                raise PydanticCustomError("invalid_arguments", "I couldn't read the details for that request. Could you repeat them?")
        return value


class BookAppointmentCall(_ToolCallBase):
    name: Literal["book_appointment"]
    arguments: BookAppointmentArgs

class CancelAppointmentCall(_ToolCallBase):
    name: Literal["cancel_appointment"]
    arguments: CancelAppointmentArgs

class RescheduleAppointmentCall(_ToolCallBase):
    name: Literal["reschedule_appointment"]
    arguments: RescheduleAppointmentArgs

class CheckAvailabilityCall(_ToolCallBase):
    name: Literal["check_availability"]
    arguments: CheckAvailabilityArgs


CalendarToolCall = Annotated[
    Union[BookAppointmentCall, CancelAppointmentCall, RescheduleAppointmentCall, CheckAvailabilityCall],
    Field(discriminator="name"),
]

_tool_call_adapter = TypeAdapter(CalendarToolCall)

_ARGUMENT_MODELS = {
    "book_appointment": BookAppointmentArgs,
    "cancel_appointment": CancelAppointmentArgs,
    "reschedule_appointment": RescheduleAppointmentArgs,
    "check_availability": CheckAvailabilityArgs,
}

_MISSING_TYPES = {"missing", "string_too_short", "string_type"}


def parse_tool_call(name: str, arguments: Any) -> CalendarToolCall:
    """
    Validate a raw `{name, arguments}` pair into one of the typed tool calls.
    Raises ValidationError with a speakable message.
    """
    if not is_calendar_tool(name):
        raise ValidationError(f"Unknown calendar tool: {name}", field="name")

    try:
        return _tool_call_adapter.validate_python({"name": name, "arguments": arguments})
    except PydanticValidationError as e:
        raise _speakable_error(name, e) from e


def _speakable_error(name: str, error: PydanticValidationError) -> ValidationError:
    first = error.errors()[0]
    loc = [part for part in first.get("loc", ()) if isinstance(part, str)]
    field = loc[-1] if loc else "arguments"
    args_model = _ARGUMENT_MODELS[name]

    if first.get("type") in _MISSING_TYPES:
        return ValidationError(args_model.missing_message(field), field=field)
    if first.get("type") in ("invalid_format", "invalid_arguments"):
        return ValidationError(first["msg"], field=field)
    if field == "arguments":
        return ValidationError(args_model.default_missing_message, field=field)
    return ValidationError(f"The value given for {field.replace('_', ' ')} is not valid.", field=field)


class ToolCallResult(BaseModel):
    """What the dispatcher hands back to the voice platform: always speakable."""
    success: bool
    result: Optional[str] = None
    error: Optional[str] = None

    @property
    def message(self) -> str:
        return (self.result if self.success else self.error) or ""


class CalendarToolContext(BaseModel):
    agent_id: str
    conversation_id: Optional[str] = None
    call_id: Optional[str] = None

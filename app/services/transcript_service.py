"""
Post-call transcript extraction.

Best-effort regex heuristics that pull attendee and appointment details out of a
finished call. Results only enrich the appointment created during the call; they
never create bookings on their own.
"""

import re
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel

from app.core.datetime_utils import DAYS_OF_WEEK, format_iso_date, local_today
from app.core.logger import logger
from app.models.calendar_models import AppointmentType

TranscriptInput = Union[str, List[Dict[str, Any]]]

EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
PHONE_RE = re.compile(r"(?:\+?1[-.\s]?)?\(?[0-9]{3}\)?[-.\s]?[0-9]{3}[-.\s]?[0-9]{4}")

# Addresses the agent itself tends to read out
BUSINESS_EMAIL_MARKERS = ("@company.", "@business.")

NAME_PATTERNS = [
    re.compile(r"(?i:my name is)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)"),
    re.compile(r"(?i:this is)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)\s+(?i:calling|speaking)"),
    re.compile(r"(?i:call me|name's|i'm)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)"),
    re.compile(r"(?i:under|name:?)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)"),
]

BOOKING_KEYWORDS = ("book", "schedule", "set up", "make an appointment", "appointment for")
CANCEL_KEYWORDS = ("cancel", "cancellation", "call off")
RESCHEDULE_KEYWORDS = ("reschedule", "move", "change", "different time")

_MONTHS = "January|February|March|April|May|June|July|August|September|October|November|December"
_MONTHS_SHORT = "Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec"

# (pattern, strptime format applied to the normalized groups)
DATE_PATTERNS = [
    (re.compile(rf"\b({_MONTHS})\s+(\d{{1,2}})(?:st|nd|rd|th)?,?\s*(\d{{4}})\b", re.I), "%B %d %Y"),
    (re.compile(rf"\b({_MONTHS_SHORT})\s+(\d{{1,2}})(?:st|nd|rd|th)?,?\s*(\d{{4}})\b", re.I), "%b %d %Y"),
    (re.compile(rf"\b(\d{{1,2}})(?:st|nd|rd|th)?\s+({_MONTHS})\s+(\d{{4}})\b", re.I), "%d %B %Y"),
    (re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b"), "%Y %m %d"),
    (re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4})\b"), "%m %d %Y"),
]

WEEKDAY_RE = re.compile(r"\b(?:next\s+)?(monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b")
TIME_12H_RE = re.compile(r"\b(\d{1,2})(?::(\d{2}))?\s*(am|pm)\b", re.I)
TIME_24H_RE = re.compile(r"\b([01]?[0-9]|2[0-3]):([0-5][0-9])\b")

NOTE_PATTERNS = [
    re.compile(r"(?:reason|purpose|about)\s*:?\s*(.{10,100})", re.I),
    re.compile(r"(?:i need to|i want to|i would like to)\s+(.{10,100})", re.I),
    re.compile(r"(?:regarding|for)\s+(.{10,50})", re.I),
]

SPEAKER_ROLES = ("user", "assistant", "bot")


class ExtractedAppointmentDetails(BaseModel):
    attendee_name: Optional[str] = None
    attendee_email: Optional[str] = None
    attendee_phone: Optional[str] = None
    appointment_type: Optional[AppointmentType] = None
    preferred_date: Optional[str] = None
    preferred_time: Optional[str] = None
    notes: Optional[str] = None


def transcript_to_text(transcript: TranscriptInput) -> str:
    if isinstance(transcript, str):
        return transcript
    lines = []
    for message in transcript or []:
        role = message.get("role")
        if role in SPEAKER_ROLES:
            lines.append(f"{role}: {message.get('message') or message.get('content') or ''}")
    return "\n".join(lines)


def extract_email(text: str) -> Optional[str]:
    emails = EMAIL_RE.findall(text)
    if not emails:
        return None
    for email in emails:
        if not any(marker in email for marker in BUSINESS_EMAIL_MARKERS):
            return email
    return emails[0]


def extract_phone(text: str) -> Optional[str]:
    match = PHONE_RE.search(text)
    return re.sub(r"\D", "", match.group(0)) if match else None


def extract_name(text: str) -> Optional[str]:
    for pattern in NAME_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1).strip()
    return None


def extract_appointment_type(text: str) -> Optional[AppointmentType]:
    lower = text.lower()
    # Most specific intent first
    if any(keyword in lower for keyword in RESCHEDULE_KEYWORDS):
        return AppointmentType.RESCHEDULE
    if any(keyword in lower for keyword in CANCEL_KEYWORDS):
        return AppointmentType.CANCEL
    if any(keyword in lower for keyword in BOOKING_KEYWORDS):
        return AppointmentType.BOOK
    return None


def extract_date(text: str, today: date) -> Optional[str]:
    lower = text.lower()

    if "today" in lower:
        return format_iso_date(today)
    if "tomorrow" in lower:
        return format_iso_date(today + timedelta(days=1))

    weekday = WEEKDAY_RE.search(lower)
    if weekday:
        target = DAYS_OF_WEEK.index(weekday.group(1).upper())
        # Always the next occurrence, never today
        days_until = (target - today.weekday()) % 7 or 7
        return format_iso_date(today + timedelta(days=days_until))

    for pattern, fmt in DATE_PATTERNS:
        for match in pattern.finditer(text):
            try:
                parsed = datetime.strptime(" ".join(match.groups()), fmt)
            except ValueError:
                continue
            return format_iso_date(parsed.date())

    return None


def extract_time(text: str) -> Optional[str]:
    lower = text.lower()
    if "noon" in lower:
        return "12:00"
    if "midnight" in lower:
        return "00:00"

    for match in TIME_12H_RE.finditer(text):
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        if not 1 <= hour <= 12 or minute > 59:
            continue
        is_pm = match.group(3).lower() == "pm"
        if is_pm and hour < 12:
            hour += 12
        if not is_pm and hour == 12:
            hour = 0
        return f"{hour:02d}:{minute:02d}"

    match = TIME_24H_RE.search(text)
    if match:
        return f"{int(match.group(1)):02d}:{match.group(2)}"

    return None


def extract_notes(text: str) -> Optional[str]:
    for pattern in NOTE_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1).strip()
    return None


def extract_appointment_details(
    transcript: TranscriptInput,
    today: Optional[date] = None,
    timezone: str = "UTC",
) -> ExtractedAppointmentDetails:
    """
    Pull whatever appointment details the transcript mentions. Missing details stay None.
    Relative dates ("tomorrow", "next friday") count from `today`, by default the
    current date in `timezone`.
    """
    text = transcript_to_text(transcript)
    if not text:
        return ExtractedAppointmentDetails()

    today = today or local_today(timezone)
    return ExtractedAppointmentDetails(
        attendee_name=extract_name(text),
        attendee_email=extract_email(text),
        attendee_phone=extract_phone(text),
        appointment_type=extract_appointment_type(text),
        preferred_date=extract_date(text, today),
        preferred_time=extract_time(text),
        notes=extract_notes(text),
    )


async def process_transcript_for_appointments(
    store,
    conversation_id: str,
    agent_id: str,
    transcript: TranscriptInput,
    today: Optional[date] = None,
    timezone: str = "UTC",
) -> ExtractedAppointmentDetails:
    """
    Enrich the appointment booked during this conversation with transcript details.
    Returns what was extracted; no appointment is ever created here.
    """
    extracted = extract_appointment_details(transcript, today, timezone)
    logger.info(
        f"📝 Transcript for conversation {conversation_id}: "
        f"email={bool(extracted.attendee_email)} name={bool(extracted.attendee_name)} "
        f"phone={bool(extracted.attendee_phone)} type={extracted.appointment_type} "
        f"date={bool(extracted.preferred_date)} time={bool(extracted.preferred_time)}"
    )

    existing = await store.get_appointment_by_conversation(conversation_id)
    if existing:
        updates: Dict[str, Any] = {"extracted_from_transcript": True}
        if extracted.attendee_name:
            updates["attendee_name"] = extracted.attendee_name
        if extracted.attendee_phone:
            updates["attendee_phone"] = extracted.attendee_phone
        if extracted.notes:
            updates["notes"] = extracted.notes
        await store.update_appointment(existing.id, updates)
        logger.info(f"✨ Enriched appointment {existing.id} from transcript")
        return extracted

    if (
        extracted.attendee_email
        and extracted.preferred_date
        and extracted.preferred_time
        and extracted.appointment_type == AppointmentType.BOOK
    ):
        logger.warning(
            f"⚠️ Booking discussed but not processed during call (agent {agent_id}, "
            f"conversation {conversation_id}); needs manual review"
        )

    return extracted

from datetime import datetime, timedelta
from typing import List, Optional

from app.core.datetime_utils import create_date_in_timezone, parse_date, utc_now
from app.core.exceptions import CalendarAuthError, CalendarProviderError
from app.core.logger import logger
from app.models.calendar_models import (
    AgentCalendarConfig,
    Appointment,
    AppointmentStatus,
    AppointmentType,
    BookAppointmentInput,
    BookAppointmentResult,
    CancelAppointmentInput,
    CancelAppointmentResult,
    RescheduleAppointmentInput,
    RescheduleAppointmentResult,
)
from app.services.availability_service import check_slot_availability
from app.services.calendar_service import CalendarConnector, build_calendar_event
from app.services.db_service import SupabaseStore

NOT_CONFIGURED = "Calendar not configured for this agent"


class AppointmentService:
    """
    Books, cancels and reschedules appointments: Google Calendar event first,
    then the appointment row. Every requested slot is re-validated against the
    live calendar right before the event is written.
    """

    def __init__(self, store: SupabaseStore, connector: CalendarConnector):
        self.store = store
        self.connector = connector

    async def _find_scheduled(
        self,
        config: AgentCalendarConfig,
        agent_id: str,
        attendee_email: str,
        attendee_name: Optional[str] = None,
        on_date: Optional[str] = None,
        appointment_id: Optional[str] = None,
    ) -> Optional[Appointment]:
        """Earliest scheduled appointment for the attendee, optionally on a given civil date."""
        if appointment_id:
            appointment = await self.store.get_appointment_by_id(appointment_id, agent_id)
            if appointment and appointment.status == AppointmentStatus.SCHEDULED:
                return appointment
            return None

        start = end = None
        if on_date:
            day = parse_date(on_date)
            start = create_date_in_timezone(day, 0, 0, config.timezone)
            end = create_date_in_timezone(day + timedelta(days=1), 0, 0, config.timezone)

        matches = await self.store.find_appointments(
            agent_id,
            attendee_email=attendee_email,
            attendee_name=attendee_name,
            status=AppointmentStatus.SCHEDULED.value,
            start=start,
            end=end,
            limit=1,
        )
        return matches[0] if matches else None

    async def book_appointment(self, data: BookAppointmentInput, now: Optional[datetime] = None) -> BookAppointmentResult:
        config = await self.store.get_agent_calendar_config(data.agent_id)
        if not config:
            return BookAppointmentResult(success=False, error=NOT_CONFIGURED)

        try:
            calendar = await self.connector.connect(config)
        except CalendarAuthError as e:
            return BookAppointmentResult(success=False, error=e.message)

        slot_check = await check_slot_availability(calendar, config, data.preferred_date, data.preferred_time, now=now)
        if not slot_check.available:
            return BookAppointmentResult(
                success=False,
                slot_rejected=True,
                error=slot_check.reason or "Requested slot is not available",
                alternative_slots=slot_check.alternative_slots,
                timezone=config.timezone,
            )

        start = slot_check.requested_slot.start
        end = slot_check.requested_slot.end
        body = build_calendar_event(
            summary=f"Appointment with {data.attendee_name}",
            start=start,
            end=end,
            timezone=config.timezone,
            attendee_email=data.attendee_email,
            attendee_name=data.attendee_name,
            description=data.notes,
            config=config,
        )

        try:
            event = await calendar.create_event(config.calendar_id, body)
        except CalendarProviderError as e:
            return BookAppointmentResult(success=False, error=e.message)

        record = {
            "agent_id": data.agent_id,
            "workspace_id": config.workspace_id,
            "calendar_config_id": config.id,
            "conversation_id": data.conversation_id,
            "google_event_id": event.id,
            "calendar_id": config.calendar_id,
            "attendee_name": data.attendee_name,
            "attendee_email": data.attendee_email,
            "attendee_phone": data.attendee_phone,
            "appointment_type": AppointmentType.BOOK.value,
            "status": AppointmentStatus.SCHEDULED.value,
            "scheduled_start": start.isoformat(),
            "scheduled_end": end.isoformat(),
            "timezone": config.timezone,
            "duration_minutes": config.slot_duration_minutes,
            "notes": data.notes,
            "custom_fields": data.custom_fields,
            "extracted_from_transcript": bool(data.conversation_id),
        }
        appointment = await self.store.insert_appointment(record)

        if appointment is None:
            # Row failed: remove the event so the calendar does not hold an orphan
            try:
                await calendar.delete_event(config.calendar_id, event.id)
            except CalendarProviderError as e:
                logger.error(f"❌ Could not remove orphaned event {event.id}: {e}")
            return BookAppointmentResult(success=False, error="Failed to save appointment to database")

        logger.info(f"📅 Booked {data.attendee_email} on {start.isoformat()} (agent {data.agent_id})")
        return BookAppointmentResult(success=True, appointment=appointment, google_event=event)

    async def cancel_appointment(self, data: CancelAppointmentInput) -> CancelAppointmentResult:
        config = await self.store.get_agent_calendar_config(data.agent_id)
        if not config:
            return CancelAppointmentResult(success=False, error=NOT_CONFIGURED)

        appointment = await self._find_scheduled(
            config, data.agent_id, data.attendee_email, data.attendee_name, data.appointment_date, data.appointment_id
        )
        if not appointment:
            return CancelAppointmentResult(success=False, not_found=True, error="No matching appointment found")

        if appointment.google_event_id:
            try:
                calendar = await self.connector.connect(config)
            except CalendarAuthError as e:
                return CancelAppointmentResult(success=False, error=e.message)

            try:
                await calendar.delete_event(appointment.calendar_id, appointment.google_event_id)
            except CalendarProviderError as e:
                logger.warning(f"⚠️ Failed to delete calendar event {appointment.google_event_id}: {e}")

        updated = await self.store.update_appointment(appointment.id, {
            "status": AppointmentStatus.CANCELLED.value,
            "cancelled_at": utc_now().isoformat(),
            "cancellation_reason": data.cancellation_reason or "Cancelled by user",
        })
        if updated is None:
            return CancelAppointmentResult(success=False, error="Failed to update appointment status")

        logger.info(f"🗑️ Cancelled appointment {appointment.id} for {data.attendee_email}")
        return CancelAppointmentResult(success=True, appointment=updated)

    async def reschedule_appointment(
        self, data: RescheduleAppointmentInput, now: Optional[datetime] = None
    ) -> RescheduleAppointmentResult:
        config = await self.store.get_agent_calendar_config(data.agent_id)
        if not config:
            return RescheduleAppointmentResult(success=False, error=NOT_CONFIGURED)

        original = await self._find_scheduled(
            config, data.agent_id, data.attendee_email, data.attendee_name, data.current_appointment_date,
            data.appointment_id,
        )
        if not original:
            return RescheduleAppointmentResult(
                success=False, not_found=True, error="No matching appointment found to reschedule"
            )

        try:
            calendar = await self.connector.connect(config)
        except CalendarAuthError as e:
            return RescheduleAppointmentResult(success=False, error=e.message)

        slot_check = await check_slot_availability(calendar, config, data.new_date, data.new_time, now=now)
        if not slot_check.available:
            return RescheduleAppointmentResult(
                success=False,
                slot_rejected=True,
                error=slot_check.reason or "Requested new slot is not available",
                alternative_slots=slot_check.alternative_slots,
                timezone=config.timezone,
            )

        new_start = slot_check.requested_slot.start
        new_end = slot_check.requested_slot.end

        if original.google_event_id:
            patch = {
                "start": {"dateTime": new_start.isoformat(), "timeZone": config.timezone},
                "end": {"dateTime": new_end.isoformat(), "timeZone": config.timezone},
                "summary": f"Appointment with {original.attendee_name}",
                "attendees": [{"email": original.attendee_email, "displayName": original.attendee_name}],
            }
            try:
                await calendar.update_event(original.calendar_id, original.google_event_id, patch)
            except CalendarProviderError as e:
                logger.warning(f"⚠️ Failed to update calendar event {original.google_event_id}: {e}")

        # Same row moves to the new time; no duplicate appointment is created
        updated = await self.store.update_appointment(original.id, {
            "scheduled_start": new_start.isoformat(),
            "scheduled_end": new_end.isoformat(),
            "appointment_type": AppointmentType.RESCHEDULE.value,
            "rescheduled_from": original.scheduled_start.isoformat(),
            "updated_at": utc_now().isoformat(),
        })
        if updated is None:
            return RescheduleAppointmentResult(success=False, error="Failed to update appointment")

        logger.info(f"🔁 Rescheduled appointment {original.id} to {new_start.isoformat()}")
        return RescheduleAppointmentResult(success=True, original_appointment=original, new_appointment=updated)

    # --- Lookups ---

    async def find_appointments(
        self,
        agent_id: str,
        attendee_email: Optional[str] = None,
        attendee_name: Optional[str] = None,
        status: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Appointment]:
        return await self.store.find_appointments(
            agent_id,
            attendee_email=attendee_email,
            attendee_name=attendee_name,
            status=status,
            start=start,
            end=end,
        )

    async def get_upcoming_appointments(self, agent_id: str, limit: int = 10) -> List[Appointment]:
        return await self.store.get_upcoming_appointments(agent_id, limit=limit)

    async def get_appointment_by_id(self, appointment_id: str, agent_id: str) -> Optional[Appointment]:
        return await self.store.get_appointment_by_id(appointment_id, agent_id)

    async def update_status(self, appointment_id: str, status: AppointmentStatus) -> Optional[Appointment]:
        """Manual status change (e.g. completed). The calendar event is left as is."""
        updated = await self.store.update_appointment(appointment_id, {
            "status": status.value,
            "updated_at": utc_now().isoformat(),
        })
        if updated:
            logger.info(f"📌 Appointment {appointment_id} marked {status.value}")
        return updated

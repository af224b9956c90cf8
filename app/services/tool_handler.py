"""
Calendar tool dispatcher.

Turns a `{name, arguments}` tool call from the voice platform into a speakable
ToolCallResult. `handle` never raises: every failure becomes `success=False`
with a message the agent can read out.
"""

from typing import Any, Dict, List, Optional

from app.core.config import settings
from app.core.datetime_utils import format_date_time
from app.core.exceptions import CalendarAuthError, CalendarError, ConfigurationError, ValidationError
from app.core.logger import logger
from app.models.calendar_models import (
    BookAppointmentInput,
    CancelAppointmentInput,
    RescheduleAppointmentInput,
    TimeSlot,
)
from app.models.tool_models import (
    BookAppointmentCall,
    CalendarToolContext,
    CancelAppointmentCall,
    CheckAvailabilityCall,
    RescheduleAppointmentCall,
    ToolCallResult,
    parse_tool_call,
)
from app.services.appointment_service import AppointmentService
from app.services.availability_service import (
    check_slot_availability,
    format_available_slots_for_llm,
    get_available_slots,
)
from app.services.calendar_service import CalendarConnector
from app.services.db_service import SupabaseStore

CONFIGURATION_APOLOGY = (
    "I'm sorry, the calendar for this agent isn't set up correctly right now, "
    "so I can't check or book appointments. Please try again later."
)


class CalendarToolHandler:
    def __init__(self, store: SupabaseStore, appointments: AppointmentService, connector: CalendarConnector):
        self.store = store
        self.appointments = appointments
        self.connector = connector

    async def handle(self, tool_call: Dict[str, Any], context: CalendarToolContext) -> ToolCallResult:
        name = tool_call.get("name") or ""
        logger.info(f"🛠️ Executing {name} for agent {context.agent_id}")

        try:
            call = parse_tool_call(name, tool_call.get("arguments"))

            if isinstance(call, BookAppointmentCall):
                return await self._book(call, context)
            if isinstance(call, CancelAppointmentCall):
                return await self._cancel(call, context)
            if isinstance(call, RescheduleAppointmentCall):
                return await self._reschedule(call, context)
            if isinstance(call, CheckAvailabilityCall):
                return await self._check_availability(call, context)
            return ToolCallResult(success=False, error=f"Unsupported calendar tool: {name}")

        except ValidationError as e:
            logger.info(f"📝 {name}: {e.message}")
            return ToolCallResult(success=False, error=e.message)
        except ConfigurationError as e:
            logger.error(f"❌ Calendar misconfigured for agent {context.agent_id}: {e.message}")
            return ToolCallResult(success=False, error=CONFIGURATION_APOLOGY)
        except CalendarError as e:
            logger.error(f"❌ {name} failed: {e.message}")
            return ToolCallResult(success=False, error=e.message)
        except Exception as e:
            logger.exception(f"❌ Unexpected error executing {name}: {e}")
            return ToolCallResult(success=False, error="An error occurred while processing your request. Please try again.")

    def _alternatives_text(self, slots: List[TimeSlot], timezone: Optional[str]) -> str:
        return format_available_slots_for_llm(slots, timezone or settings.DEFAULT_TIMEZONE, 5)

    # --- Tools ---

    async def _book(self, call: BookAppointmentCall, context: CalendarToolContext) -> ToolCallResult:
        args = call.arguments
        result = await self.appointments.book_appointment(BookAppointmentInput(
            agent_id=context.agent_id,
            attendee_name=args.attendee_name,
            attendee_email=args.attendee_email,
            attendee_phone=args.attendee_phone,
            preferred_date=args.preferred_date,
            preferred_time=args.preferred_time,
            notes=args.notes,
            conversation_id=context.conversation_id,
        ))

        if not result.success:
            if result.alternative_slots:
                alternatives = self._alternatives_text(result.alternative_slots, result.timezone)
                return ToolCallResult(
                    success=False,
                    error=(
                        "The requested time slot is not available. Here are some alternative times:\n"
                        f"{alternatives}\n\nWould you like to book one of these times instead?"
                    ),
                )
            return ToolCallResult(success=False, error=result.error or "Failed to book appointment")

        appointment = result.appointment
        when = format_date_time(appointment.scheduled_start, appointment.timezone)
        return ToolCallResult(
            success=True,
            result=(
                f"I've successfully booked your appointment for {when}. "
                f"A confirmation email has been sent to {appointment.attendee_email}. "
                "You'll also receive reminder emails 24 hours and 1 hour before your appointment."
            ),
        )

    async def _cancel(self, call: CancelAppointmentCall, context: CalendarToolContext) -> ToolCallResult:
        args = call.arguments
        result = await self.appointments.cancel_appointment(CancelAppointmentInput(
            agent_id=context.agent_id,
            attendee_email=args.attendee_email,
            attendee_name=args.attendee_name,
            appointment_date=args.appointment_date,
            cancellation_reason=args.cancellation_reason,
        ))

        if not result.success:
            if result.not_found:
                return ToolCallResult(
                    success=False,
                    error=(
                        "I couldn't find an appointment with that email address. Could you please confirm "
                        "the email you used when booking, or let me know the date of your appointment?"
                    ),
                )
            return ToolCallResult(success=False, error=result.error or "Failed to cancel appointment")

        return ToolCallResult(
            success=True,
            result=(
                "Your appointment has been successfully cancelled. "
                f"A cancellation confirmation has been sent to {args.attendee_email}."
            ),
        )

    async def _reschedule(self, call: RescheduleAppointmentCall, context: CalendarToolContext) -> ToolCallResult:
        args = call.arguments
        result = await self.appointments.reschedule_appointment(RescheduleAppointmentInput(
            agent_id=context.agent_id,
            attendee_email=args.attendee_email,
            attendee_name=args.attendee_name,
            current_appointment_date=args.current_appointment_date,
            new_date=args.new_date,
            new_time=args.new_time,
        ))

        if not result.success:
            if result.not_found:
                return ToolCallResult(
                    success=False,
                    error=(
                        "I couldn't find an appointment with that email address. "
                        "Could you please confirm the email you used when booking?"
                    ),
                )
            if result.alternative_slots:
                alternatives = self._alternatives_text(result.alternative_slots, result.timezone)
                return ToolCallResult(
                    success=False,
                    error=(
                        "The requested time slot is not available. Here are some alternative times:\n"
                        f"{alternatives}\n\nWould you like to reschedule to one of these times instead?"
                    ),
                )
            return ToolCallResult(success=False, error=result.error or "Failed to reschedule appointment")

        appointment = result.new_appointment
        when = format_date_time(appointment.scheduled_start, appointment.timezone)
        return ToolCallResult(
            success=True,
            result=(
                f"Your appointment has been rescheduled to {when}. "
                f"A confirmation email has been sent to {appointment.attendee_email}."
            ),
        )

    async def _check_availability(self, call: CheckAvailabilityCall, context: CalendarToolContext) -> ToolCallResult:
        args = call.arguments
        config = await self.store.get_agent_calendar_config(context.agent_id)
        if not config:
            return ToolCallResult(success=False, error="Calendar is not configured for this agent.")

        try:
            calendar = await self.connector.connect(config)
        except CalendarAuthError as e:
            logger.error(f"❌ Calendar connection failed for agent {context.agent_id}: {e.message}")
            return ToolCallResult(success=False, error="Failed to connect to calendar. Please try again.")

        if args.time:
            slot_check = await check_slot_availability(calendar, config, args.date, args.time)
            if slot_check.available:
                return ToolCallResult(
                    success=True,
                    result=f"The {args.time} slot on {args.date} is available. Would you like me to book that for you?",
                )

            alternatives = (
                format_available_slots_for_llm(slot_check.alternative_slots, config.timezone, 5)
                if slot_check.alternative_slots
                else "No alternative slots available."
            )
            return ToolCallResult(
                success=True,
                result=(
                    f"The {args.time} slot on {args.date} is not available. {slot_check.reason or ''}\n\n"
                    f"Here are some available times:\n{alternatives}"
                ),
            )

        availability = await get_available_slots(calendar, config, args.date)
        open_slots = [slot for slot in availability.slots if slot.available]
        if not open_slots:
            return ToolCallResult(
                success=True,
                result=(
                    f"Unfortunately, there are no available slots on {args.date}. "
                    f"Our available days are: {', '.join(config.preferred_days)}. "
                    "Would you like to check another date?"
                ),
            )

        slots_text = format_available_slots_for_llm(open_slots, config.timezone, 10)
        return ToolCallResult(
            success=True,
            result=f"Here are the available appointment times on {args.date}:\n{slots_text}\n\nWhich time would you prefer?",
        )

from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from app.api.deps import Services, get_services
from app.core.exceptions import CalendarAuthError, ConfigurationError, ValidationError
from app.core.logger import logger
from app.models.calendar_models import (
    AgentCalendarConfig,
    Appointment,
    AppointmentStatus,
    BookAppointmentInput,
    CancelAppointmentInput,
    RescheduleAppointmentInput,
    SlotCheckResponse,
)
from app.services.appointment_service import NOT_CONFIGURED
from app.services.availability_service import (
    check_slot_availability,
    find_next_available_slot,
    get_available_slots,
    get_available_slots_multiple_days,
)
from app.services.calendar_service import EventSource

router = APIRouter(prefix="/agents/{agent_id}")


class SlotCheckRequest(BaseModel):
    date: str
    time: str


async def _connect(agent_id: str, services: Services) -> Tuple[AgentCalendarConfig, EventSource]:
    config = await services.store.get_agent_calendar_config(agent_id)
    if not config:
        raise HTTPException(status_code=404, detail="Calendar is not configured for this agent.")
    try:
        return config, await services.connector.connect(config)
    except CalendarAuthError as e:
        raise HTTPException(status_code=502, detail=e.message)


@router.get("/availability")
async def get_availability(
    agent_id: str,
    date: Optional[str] = None,
    days: int = Query(1, ge=1, le=31),
    find_next: bool = False,
    services: Services = Depends(get_services),
):
    """
    One day of slots, a multi-day map of open slots (`days` > 1), or the next open
    slot (`find_next`, starting at `date` or today).
    """
    if not find_next and not date:
        raise HTTPException(status_code=400, detail="date is required unless find_next is set")

    config, calendar = await _connect(agent_id, services)
    try:
        if find_next:
            slot = await find_next_available_slot(calendar, config, date)
            return {"timezone": config.timezone, "next_available": slot}

        if days > 1:
            by_day = await get_available_slots_multiple_days(calendar, config, date, days)
            return {"timezone": config.timezone, "days": by_day}

        return await get_available_slots(calendar, config, date)

    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except ConfigurationError as e:
        logger.error(f"❌ Calendar misconfigured for agent {agent_id}: {e.message}")
        raise HTTPException(status_code=500, detail=e.message)


@router.post("/availability", response_model=SlotCheckResponse)
async def check_availability(agent_id: str, req: SlotCheckRequest, services: Services = Depends(get_services)):
    config, calendar = await _connect(agent_id, services)
    try:
        return await check_slot_availability(calendar, config, req.date, req.time)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except ConfigurationError as e:
        logger.error(f"❌ Calendar misconfigured for agent {agent_id}: {e.message}")
        raise HTTPException(status_code=500, detail=e.message)


@router.get("/appointments", response_model=List[Appointment])
async def list_upcoming_appointments(
    agent_id: str,
    limit: int = Query(10, ge=1, le=100),
    services: Services = Depends(get_services),
):
    return await services.appointments.get_upcoming_appointments(agent_id, limit)


@router.get("/appointments/{appointment_id}", response_model=Appointment)
async def get_appointment(agent_id: str, appointment_id: str, services: Services = Depends(get_services)):
    appointment = await services.appointments.get_appointment_by_id(appointment_id, agent_id)
    if not appointment:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return appointment


# --- Appointment management ---

MANUAL_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED)


class AppointmentCreateRequest(BaseModel):
    attendee_name: str
    attendee_email: str
    attendee_phone: Optional[str] = None
    preferred_date: str
    preferred_time: str
    notes: Optional[str] = None


class AppointmentUpdateRequest(BaseModel):
    new_date: Optional[str] = None
    new_time: Optional[str] = None
    status: Optional[AppointmentStatus] = None


def _failure(result) -> HTTPException:
    if result.error == NOT_CONFIGURED:
        return HTTPException(status_code=404, detail="Calendar is not configured for this agent.")
    if getattr(result, "not_found", False):
        return HTTPException(status_code=404, detail="Appointment not found")
    if getattr(result, "slot_rejected", False):
        return HTTPException(status_code=409, detail={
            "error": result.error,
            "alternative_slots": [slot.model_dump(mode="json") for slot in result.alternative_slots or []],
        })
    return HTTPException(status_code=400, detail=result.error or "Request failed")


async def _call(agent_id: str, awaitable):
    try:
        return await awaitable
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except ConfigurationError as e:
        logger.error(f"❌ Calendar misconfigured for agent {agent_id}: {e.message}")
        raise HTTPException(status_code=500, detail=e.message)


async def _get_or_404(agent_id: str, appointment_id: str, services: Services) -> Appointment:
    appointment = await services.appointments.get_appointment_by_id(appointment_id, agent_id)
    if not appointment:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return appointment


@router.post("/appointments", response_model=Appointment, status_code=201)
async def create_appointment(agent_id: str, req: AppointmentCreateRequest, services: Services = Depends(get_services)):
    """Book an appointment outside a call. A rejected slot answers 409 with alternatives."""
    result = await _call(agent_id, services.appointments.book_appointment(
        BookAppointmentInput(agent_id=agent_id, **req.model_dump())
    ))
    if not result.success:
        raise _failure(result)
    return result.appointment


@router.patch("/appointments/{appointment_id}", response_model=Appointment)
async def update_appointment(
    agent_id: str,
    appointment_id: str,
    req: AppointmentUpdateRequest,
    services: Services = Depends(get_services),
):
    """Either set a manual status or move the appointment to `new_date` + `new_time`."""
    appointment = await _get_or_404(agent_id, appointment_id, services)

    if req.status:
        if req.status not in MANUAL_STATUSES:
            allowed = ", ".join(status.value for status in MANUAL_STATUSES)
            raise HTTPException(status_code=400, detail=f"Invalid status. Allowed: {allowed}")
        updated = await services.appointments.update_status(appointment.id, req.status)
        if not updated:
            raise HTTPException(status_code=500, detail="Failed to update appointment status")
        return updated

    if not req.new_date or not req.new_time:
        raise HTTPException(status_code=400, detail="Missing required fields: new_date, new_time (or status)")

    result = await _call(agent_id, services.appointments.reschedule_appointment(RescheduleAppointmentInput(
        agent_id=agent_id,
        attendee_email=appointment.attendee_email,
        attendee_name=appointment.attendee_name,
        new_date=req.new_date,
        new_time=req.new_time,
        appointment_id=appointment.id,
    )))
    if not result.success:
        raise _failure(result)
    return result.new_appointment


@router.delete("/appointments/{appointment_id}", response_model=Appointment)
async def cancel_appointment(
    agent_id: str,
    appointment_id: str,
    reason: Optional[str] = None,
    services: Services = Depends(get_services),
):
    appointment = await _get_or_404(agent_id, appointment_id, services)

    result = await _call(agent_id, services.appointments.cancel_appointment(CancelAppointmentInput(
        agent_id=agent_id,
        attendee_email=appointment.attendee_email,
        cancellation_reason=reason or "Cancelled by admin",
        appointment_id=appointment.id,
    )))
    if not result.success:
        raise _failure(result)
    return result.appointment

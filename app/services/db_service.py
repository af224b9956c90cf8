from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from supabase import AsyncClient, create_async_client

from app.core.config import Settings
from app.core.datetime_utils import UTC, utc_now
from app.core.exceptions import ConfigurationError
from app.core.logger import logger
from app.models.calendar_models import AgentCalendarConfig, Appointment, AppointmentStatus

CALENDAR_CONFIG_SELECT = "*, google_calendar_credentials:google_calendar_credentials(*)"


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


class SupabaseStore:
    """
    Persistence for calendar configs, credentials and appointments.

    Lookups return None / [] when nothing matches or the database is unreachable;
    the failure is logged, never raised.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client: Optional[AsyncClient] = None

    async def get_client(self) -> Optional[AsyncClient]:
        if not self._client:
            try:
                if self.settings.SUPABASE_URL and self.settings.SUPABASE_KEY:
                    self._client = await create_async_client(self.settings.SUPABASE_URL, self.settings.SUPABASE_KEY)
                    logger.info("✅ Supabase Async client initialized")
                else:
                    logger.warning("⚠️ Supabase credentials missing")
            except Exception as e:
                logger.error(f"❌ Failed to initialize Supabase Async: {e}")
        return self._client

    # --- Calendar config / credentials ---

    def _to_calendar_config(self, row: Dict[str, Any]) -> AgentCalendarConfig:
        # Drop NULL columns so model defaults apply
        data = {key: value for key, value in row.items() if value is not None}
        credential = data.pop("google_calendar_credentials", None)
        if isinstance(credential, list):
            credential = credential[0] if credential else None
        data.setdefault("timezone", self.settings.DEFAULT_TIMEZONE)
        try:
            return AgentCalendarConfig(**data, credential=credential)
        except PydanticValidationError as e:
            logger.error(f"❌ Invalid calendar config for agent {row.get('agent_id')}: {e}")
            raise ConfigurationError("Calendar configuration for this agent is invalid.") from e

    async def get_agent_calendar_config(self, agent_id: str) -> Optional[AgentCalendarConfig]:
        """Active calendar config for an agent, joined with its Google credential."""
        client = await self.get_client()
        if not client:
            return None

        try:
            response = await client.table("agent_calendar_configs")\
                .select(CALENDAR_CONFIG_SELECT)\
                .eq("agent_id", agent_id)\
                .eq("is_active", True)\
                .limit(1)\
                .execute()
        except Exception as e:
            logger.error(f"❌ DB Error (get_agent_calendar_config): {e}")
            return None

        if not response.data:
            logger.info(f"📭 No calendar configured for agent {agent_id}")
            return None
        return self._to_calendar_config(response.data[0])

    async def update_credential_token(self, credential_id: str, access_token: str, expiry: datetime) -> None:
        client = await self.get_client()
        if not client:
            return

        try:
            await client.table("google_calendar_credentials").update({
                "access_token": access_token,
                "token_expiry": _iso(expiry),
                "last_used_at": utc_now().isoformat(),
            }).eq("id", credential_id).execute()
            logger.info(f"🔑 Stored refreshed token for credential {credential_id}")
        except Exception as e:
            logger.warning(f"⚠️ Failed to store refreshed token: {e}")

    # --- Agent / conversation resolution ---

    async def get_agent_id_by_assistant_id(self, assistant_id: str) -> Optional[str]:
        """Internal agent id for a VAPI assistant id."""
        client = await self.get_client()
        if not client or not assistant_id:
            return None

        try:
            response = await client.table("ai_agents").select("id").eq("external_agent_id", assistant_id).limit(1).execute()
            if response.data:
                return response.data[0]["id"]
        except Exception as e:
            logger.error(f"❌ DB Error (get_agent_id_by_assistant_id): {e}")
        return None

    async def get_conversation_id_by_call_id(self, call_id: str) -> Optional[str]:
        client = await self.get_client()
        if not client or not call_id:
            return None

        try:
            response = await client.table("conversations").select("id").eq("external_id", call_id).limit(1).execute()
            if response.data:
                return response.data[0]["id"]
        except Exception as e:
            logger.error(f"❌ DB Error (get_conversation_id_by_call_id): {e}")
        return None

    # --- Appointments ---

    async def insert_appointment(self, data: Dict[str, Any]) -> Optional[Appointment]:
        client = await self.get_client()
        if not client:
            return None

        try:
            response = await client.table("appointments").insert(data).execute()
            if response.data:
                logger.info(f"✅ Appointment saved for {data.get('attendee_email')}")
                return Appointment.model_validate(response.data[0])
        except Exception as e:
            logger.error(f"❌ DB Error (insert_appointment): {e}")
        return None

    async def update_appointment(self, appointment_id: str, data: Dict[str, Any]) -> Optional[Appointment]:
        client = await self.get_client()
        if not client:
            return None

        try:
            response = await client.table("appointments").update(data).eq("id", appointment_id).execute()
            if response.data:
                return Appointment.model_validate(response.data[0])
        except Exception as e:
            logger.error(f"❌ DB Error (update_appointment): {e}")
        return None

    async def find_appointments(
        self,
        agent_id: str,
        attendee_email: Optional[str] = None,
        attendee_name: Optional[str] = None,
        status: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Appointment]:
        """
        Appointments ordered by start time. `start` is inclusive, `end` exclusive;
        `attendee_name` is a case-insensitive substring match.
        """
        client = await self.get_client()
        if not client:
            return []

        query = client.table("appointments").select("*").eq("agent_id", agent_id)
        if attendee_email:
            query = query.eq("attendee_email", attendee_email)
        if attendee_name:
            query = query.ilike("attendee_name", f"%{attendee_name}%")
        if status:
            query = query.eq("status", status)
        if start:
            query = query.gte("scheduled_start", _iso(start))
        if end:
            query = query.lt("scheduled_start", _iso(end))
        query = query.order("scheduled_start", desc=False)
        if limit:
            query = query.limit(limit)

        try:
            response = await query.execute()
            return [Appointment.model_validate(row) for row in response.data or []]
        except Exception as e:
            logger.error(f"❌ DB Error (find_appointments): {e}")
            return []

    async def get_upcoming_appointments(self, agent_id: str, limit: int = 10, now: Optional[datetime] = None) -> List[Appointment]:
        return await self.find_appointments(
            agent_id,
            status=AppointmentStatus.SCHEDULED.value,
            start=now or utc_now(),
            limit=limit,
        )

    async def get_appointment_by_id(self, appointment_id: str, agent_id: str) -> Optional[Appointment]:
        client = await self.get_client()
        if not client:
            return None

        try:
            # Scoped by agent so one agent cannot read another's appointments
            response = await client.table("appointments")\
                .select("*")\
                .eq("id", appointment_id)\
                .eq("agent_id", agent_id)\
                .limit(1)\
                .execute()
            if response.data:
                return Appointment.model_validate(response.data[0])
        except Exception as e:
            logger.error(f"❌ DB Error (get_appointment_by_id): {e}")
        return None

    async def get_appointment_by_conversation(self, conversation_id: str) -> Optional[Appointment]:
        client = await self.get_client()
        if not client or not conversation_id:
            return None

        try:
            response = await client.table("appointments")\
                .select("*")\
                .eq("conversation_id", conversation_id)\
                .order("created_at", desc=True)\
                .limit(1)\
                .execute()
            if response.data:
                return Appointment.model_validate(response.data[0])
        except Exception as e:
            logger.error(f"❌ DB Error (get_appointment_by_conversation): {e}")
        return None

import asyncio
import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from app.core.config import settings
from app.core.datetime_utils import UTC, create_date_in_timezone, utc_now
from app.core.exceptions import CalendarAuthError, CalendarProviderError, ConfigurationError
from app.core.logger import logger
from app.models.calendar_models import AgentCalendarConfig, CalendarEvent, GoogleCalendarCredential

SCOPES = [
    'https://www.googleapis.com/auth/calendar',
    'https://www.googleapis.com/auth/calendar.events',
]

# Refresh tokens that expire within this window
TOKEN_EXPIRY_BUFFER = datetime.timedelta(minutes=5)


class EventSource(Protocol):
    """The only calendar capability the availability engine needs."""

    async def get_events(
        self,
        calendar_id: str,
        time_min: datetime.datetime,
        time_max: datetime.datetime,
        single_events: bool = True,
        order_by: Optional[str] = "startTime",
    ) -> List[CalendarEvent]:
        ...


def _parse_boundary(boundary: Optional[Dict[str, Any]], timezone: Optional[str] = None) -> Optional[datetime.datetime]:
    if not boundary:
        return None
    raw = boundary.get('dateTime')
    if raw:
        dt = datetime.datetime.fromisoformat(raw.replace('Z', '+00:00'))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
        return dt.astimezone(UTC)
    raw = boundary.get('date')
    if raw:
        # All-day events carry only a civil date: local midnight when the zone is known
        day = datetime.date.fromisoformat(raw)
        if timezone:
            return create_date_in_timezone(day, 0, 0, timezone)
        return datetime.datetime(day.year, day.month, day.day, tzinfo=UTC)
    return None


def _all_day_date(boundary: Optional[Dict[str, Any]]) -> Optional[datetime.date]:
    if not boundary or boundary.get('dateTime') or not boundary.get('date'):
        return None
    return datetime.date.fromisoformat(boundary['date'])


def parse_event_datetime(
    event: Dict[str, Any],
    timezone: Optional[str] = None,
) -> Tuple[Optional[datetime.datetime], Optional[datetime.datetime]]:
    """
    Resolve start/end of a raw Google event from `dateTime` or all-day `date`.
    All-day dates resolve to midnight in `timezone`, or UTC midnight without one.
    """
    try:
        return _parse_boundary(event.get('start'), timezone), _parse_boundary(event.get('end'), timezone)
    except ValueError:
        logger.warning(f"⚠️ Unparseable event boundaries on event {event.get('id')}")
        return None, None


def to_calendar_event(event: Dict[str, Any], timezone: Optional[str] = None) -> CalendarEvent:
    start, end = parse_event_datetime(event, timezone)
    try:
        start_date, end_date = _all_day_date(event.get('start')), _all_day_date(event.get('end'))
    except ValueError:
        start_date = end_date = None
    return CalendarEvent(
        id=event.get('id'),
        summary=event.get('summary'),
        description=event.get('description'),
        start=start,
        end=end,
        status=event.get('status'),
        html_link=event.get('htmlLink'),
        start_date=start_date,
        end_date=end_date,
    )


class GoogleCalendarClient:
    """
    Thin async wrapper over the Google Calendar v3 API for a single access token.
    Blocking client calls run in a worker thread.
    """

    def __init__(self, access_token: str):
        self.access_token = access_token
        self._service = None

    def _get_service(self):
        if self._service is None:
            creds = Credentials(token=self.access_token)
            self._service = build('calendar', 'v3', credentials=creds, cache_discovery=False)
        return self._service

    async def _execute(self, action: str, make_request: Callable[[Any], Any]):
        def _run():
            try:
                return make_request(self._get_service()).execute()
            except HttpError as error:
                reason = getattr(error, 'reason', None) or str(error)
                logger.error(f"❌ Google API Error ({action}): {reason}")
                raise CalendarProviderError(f"Failed to {action}: {reason}", status_code=error.resp.status)
            except (httplib2.HttpLib2Error, TransportError, OSError) as e:
                logger.error(f"❌ Google Calendar unreachable ({action}): {e}")
                raise CalendarProviderError(f"Failed to {action}: {e}")

        return await asyncio.to_thread(_run)

    async def get_events(
        self,
        calendar_id: str,
        time_min: datetime.datetime,
        time_max: datetime.datetime,
        single_events: bool = True,
        order_by: Optional[str] = "startTime",
    ) -> List[CalendarEvent]:
        params = {
            'calendarId': calendar_id,
            'timeMin': time_min.isoformat(),
            'timeMax': time_max.isoformat(),
            'singleEvents': single_events,
        }
        # Google rejects orderBy=startTime unless recurring events are expanded
        if order_by and (single_events or order_by != 'startTime'):
            params['orderBy'] = order_by

        logger.debug(f"🔍 Fetching events for {calendar_id}: {params['timeMin']} -> {params['timeMax']}")
        result = await self._execute('get events', lambda service: service.events().list(**params))
        return [to_calendar_event(item) for item in result.get('items', [])]

    async def create_event(self, calendar_id: str, body: Dict[str, Any]) -> CalendarEvent:
        logger.info(f"✏️ Creating event in calendar: {calendar_id}")
        created = await self._execute(
            'create event',
            lambda service: service.events().insert(calendarId=calendar_id, body=body, sendUpdates='all'),
        )
        logger.info(f"📅 Event created: {created.get('htmlLink')}")
        return to_calendar_event(created)

    async def update_event(self, calendar_id: str, event_id: str, body: Dict[str, Any]) -> CalendarEvent:
        updated = await self._execute(
            'update event',
            lambda service: service.events().patch(calendarId=calendar_id, eventId=event_id, body=body, sendUpdates='all'),
        )
        return to_calendar_event(updated)

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        await self._execute(
            'delete event',
            lambda service: service.events().delete(calendarId=calendar_id, eventId=event_id, sendUpdates='all'),
        )
        logger.info(f"🗑️ Deleted event {event_id} from {calendar_id}")

    async def list_calendars(self) -> List[Dict[str, Any]]:
        result = await self._execute('list calendars', lambda service: service.calendarList().list())
        return result.get('items', [])


def build_calendar_event(
    summary: str,
    start: datetime.datetime,
    end: datetime.datetime,
    timezone: str,
    attendee_email: str,
    attendee_name: str,
    description: Optional[str] = None,
    config: Optional[AgentCalendarConfig] = None,
) -> Dict[str, Any]:
    """
    Google event body for an appointment.

    Email reminders are only added when owner email notifications are enabled;
    otherwise a single 30 minute popup is used.
    """
    overrides: List[Dict[str, Any]] = []
    owner_email = None
    if config and config.enable_owner_email and config.owner_email:
        owner_email = config.owner_email
        if config.enable_reminders and config.reminders:
            for reminder in config.reminders:
                minutes = reminder.to_minutes()
                overrides.append({'method': 'email', 'minutes': minutes})
                overrides.append({'method': 'popup', 'minutes': minutes})
        else:
            if config.send_24h_reminder:
                overrides.append({'method': 'email', 'minutes': 24 * 60})
            if config.send_1h_reminder:
                overrides.append({'method': 'email', 'minutes': 60})

    if not overrides:
        overrides.append({'method': 'popup', 'minutes': 30})

    attendees = [{'email': attendee_email, 'displayName': attendee_name}]
    if owner_email:
        attendees.append({'email': owner_email, 'displayName': 'Calendar Owner'})

    return {
        'summary': summary,
        'description': description or 'Appointment booked via AI agent',
        'start': {'dateTime': start.astimezone(UTC).isoformat(), 'timeZone': timezone},
        'end': {'dateTime': end.astimezone(UTC).isoformat(), 'timeZone': timezone},
        'attendees': attendees,
        'guestsCanSeeOtherGuests': True,
        'guestsCanInviteOthers': False,
        'guestsCanModify': False,
        'reminders': {'useDefault': False, 'overrides': overrides},
    }


TokenSaver = Callable[[str, datetime.datetime], Awaitable[None]]


async def get_valid_access_token(
    credential: GoogleCalendarCredential,
    on_refresh: Optional[TokenSaver] = None,
    now: Optional[datetime.datetime] = None,
) -> str:
    """
    Return a usable access token, refreshing it with the stored refresh token when
    it is missing or about to expire. `on_refresh` persists the new token.
    """
    now = now or utc_now()
    expiry = credential.token_expiry
    if expiry is not None and expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=UTC)

    if credential.access_token and expiry and expiry > now + TOKEN_EXPIRY_BUFFER:
        return credential.access_token

    if not credential.refresh_token:
        logger.error("❌ No refresh token available for Google credential")
        raise CalendarAuthError("No refresh token available. Please reconnect Google Calendar.")

    logger.info("🔑 Refreshing Google access token...")
    creds = Credentials(
        token=None,
        refresh_token=credential.refresh_token,
        client_id=credential.client_id or settings.GOOGLE_CLIENT_ID,
        client_secret=credential.client_secret or settings.GOOGLE_CLIENT_SECRET,
        token_uri=settings.GOOGLE_TOKEN_URI,
        scopes=SCOPES,
    )
    try:
        await asyncio.to_thread(creds.refresh, Request())
    except (RefreshError, TransportError) as e:
        logger.error(f"❌ Token refresh failed: {e}")
        raise CalendarAuthError(f"Failed to refresh Google access token: {e}") from e

    # google-auth reports expiry as naive UTC
    new_expiry = creds.expiry.replace(tzinfo=UTC) if creds.expiry else now + datetime.timedelta(hours=1)
    logger.info(f"✅ Token refreshed (expires {new_expiry.isoformat()})")

    if on_refresh:
        await on_refresh(creds.token, new_expiry)

    return creds.token


class CalendarConnector:
    """Turns an agent calendar config into a ready-to-use event source."""

    def __init__(self, store, client_factory: Callable[[str], GoogleCalendarClient] = GoogleCalendarClient):
        self.store = store
        self.client_factory = client_factory

    async def connect(self, config: AgentCalendarConfig) -> GoogleCalendarClient:
        if config.credential is None:
            raise ConfigurationError("Google Calendar credentials are missing for this agent.")

        credential_id = config.credential.id or config.google_credential_id

        async def _save(token: str, expiry: datetime.datetime):
            if credential_id:
                await self.store.update_credential_token(credential_id, token, expiry)

        token = await get_valid_access_token(config.credential, _save)
        return self.client_factory(token)

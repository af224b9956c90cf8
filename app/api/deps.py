from functools import lru_cache

from app.core.config import Settings, settings
from app.services.appointment_service import AppointmentService
from app.services.calendar_service import CalendarConnector
from app.services.db_service import SupabaseStore
from app.services.tool_handler import CalendarToolHandler


class Services:
    """All request collaborators, wired once per process."""

    def __init__(self, config: Settings):
        self.store = SupabaseStore(config)
        self.connector = CalendarConnector(self.store)
        self.appointments = AppointmentService(self.store, self.connector)
        self.tool_handler = CalendarToolHandler(self.store, self.appointments, self.connector)


@lru_cache
def get_services() -> Services:
    return Services(settings)

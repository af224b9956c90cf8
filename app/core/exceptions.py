class CalendarError(Exception):
    """Base class for calendar engine errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(CalendarError):
    """Agent calendar is missing or misconfigured (e.g. unknown timezone)."""


class ValidationError(CalendarError):
    """Tool arguments or date/time strings could not be parsed.

    The message is written to be spoken back to the caller.
    """

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.field = field


class CalendarProviderError(CalendarError):
    """Google Calendar request failed."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class CalendarAuthError(CalendarError):
    """No usable access token could be obtained for the calendar."""

"""Clock and timezone service.

Provides "now" and date formatting for a client's configured timezone.
"""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from babel.dates import format_date as babel_format_date

from hoa_billing.services.errors import ConfigurationError


class Clock:
    """Timezone-aware clock for one client."""

    def __init__(self, timezone_name: str = "America/Cancun"):
        try:
            self.tz = ZoneInfo(timezone_name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(
                f"Unknown timezone: {timezone_name}", {"field": "timezone"}
            ) from e
        self.timezone_name = timezone_name

    def now(self) -> datetime:
        return datetime.now(timezone.utc).astimezone(self.tz)

    def today(self) -> date:
        return self.now().date()

    def format_date(self, value: date, locale: str = "es_MX") -> str:
        return babel_format_date(value, format="medium", locale=locale)


class FixedClock(Clock):
    """Clock frozen at a given instant (tests, replays)."""

    def __init__(self, moment: datetime, timezone_name: str = "America/Cancun"):
        super().__init__(timezone_name)
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=self.tz)
        self._moment = moment.astimezone(self.tz)

    def now(self) -> datetime:
        return self._moment


__all__ = ["Clock", "FixedClock"]

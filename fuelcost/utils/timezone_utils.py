from __future__ import annotations

from datetime import date, datetime, time, timezone as dt_timezone

import pytz

DEFAULT_TIMEZONE = "UTC"


class TimezoneUtils:
    """Utilities for consistent timezone handling across the ledger.

    Ledger timestamps are stored as naive UTC values; everything that enters
    the system is normalized through ``to_storage`` first.
    """

    @staticmethod
    def validate_timezone(tz_name: str | None) -> bool:
        """Return True when the timezone string exists in pytz."""
        return bool(tz_name) and tz_name in pytz.all_timezones_set

    @staticmethod
    def _get_timezone(tz_name: str):
        if not TimezoneUtils.validate_timezone(tz_name):
            raise ValueError(f"Invalid timezone: {tz_name}")
        return pytz.timezone(tz_name)

    @staticmethod
    def utc_now() -> datetime:
        """Return the current UTC timestamp as a naive value for storage."""
        return datetime.now(dt_timezone.utc).replace(tzinfo=None)

    @staticmethod
    def to_storage(dt: datetime | None) -> datetime | None:
        """Convert any datetime into the naive UTC form the ledger stores."""
        if dt is None:
            return None
        if dt.tzinfo is None:
            return dt
        return dt.astimezone(dt_timezone.utc).replace(tzinfo=None)

    @staticmethod
    def parse_iso(value: str | datetime | None) -> datetime | None:
        """Parse an ISO-8601 string (``Z`` suffix allowed) into naive UTC."""
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            return TimezoneUtils.to_storage(value)
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"Invalid ISO datetime: {value!r}") from exc
        return TimezoneUtils.to_storage(parsed)

    @staticmethod
    def start_of_day(dt: datetime) -> datetime:
        return datetime.combine(dt.date(), time.min)

    @staticmethod
    def local_date(dt: datetime, tz_name: str = DEFAULT_TIMEZONE) -> date:
        """Calendar date of a stored (naive UTC) timestamp in ``tz_name``."""
        target = TimezoneUtils._get_timezone(tz_name)
        aware = dt.replace(tzinfo=dt_timezone.utc) if dt.tzinfo is None else dt
        return aware.astimezone(target).date()

    @staticmethod
    def local_day_bounds(day: date, tz_name: str = DEFAULT_TIMEZONE) -> tuple[datetime, datetime]:
        """Naive UTC instants spanning the calendar day ``day`` in ``tz_name``."""
        target = TimezoneUtils._get_timezone(tz_name)
        start = target.localize(datetime.combine(day, time.min))
        end = target.localize(datetime.combine(day, time.max))
        return TimezoneUtils.to_storage(start), TimezoneUtils.to_storage(end)

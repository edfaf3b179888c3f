"""Site-local date handling.

Every reconciliation window is a calendar date in the website's timezone.
These helpers convert such a date into the UTC instants visits are stored in
and back again.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..exceptions import ConfigurationError


UTC_FORMAT = "%Y-%m-%d %H:%M:%S"


class TimezoneLookup(Protocol):
    """Resolves a site's configured timezone name."""

    def get(self, site_id: int) -> str:
        """Return the IANA timezone name or raise ConfigurationError."""
        ...


def _zone(site_id: int, lookup: TimezoneLookup) -> ZoneInfo:
    tz_name = lookup.get(site_id)
    if not tz_name:
        raise ConfigurationError(f"No timezone found for website id {site_id}")
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(
            f"Invalid timezone '{tz_name}' for website id {site_id}"
        ) from exc


def format_utc(instant: datetime) -> str:
    """Format an instant as UTC "YYYY-MM-DD HH:MM:SS" (naive values are UTC)."""
    if instant.tzinfo is not None:
        instant = instant.astimezone(timezone.utc)
    return instant.strftime(UTC_FORMAT)


def local_to_utc(local_dt: datetime, tz_name: str) -> datetime:
    """Interpret a naive local datetime in tz_name and return it in UTC."""
    return local_dt.replace(tzinfo=ZoneInfo(tz_name)).astimezone(timezone.utc)


def local_day_bounds_utc(
    site_id: int, day: date, lookup: TimezoneLookup
) -> tuple[datetime, datetime]:
    """Return the UTC instants of local 00:00:00 and 23:59:59 on day.

    Raises:
        ConfigurationError: If the site has no usable timezone
    """
    zone = _zone(site_id, lookup)
    start = datetime.combine(day, time(0, 0, 0), tzinfo=zone)
    end = datetime.combine(day, time(23, 59, 59), tzinfo=zone)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def utc_to_local_date(site_id: int, instant: datetime, lookup: TimezoneLookup) -> date:
    """Return the site-local calendar date of a UTC instant.

    Naive datetimes are taken to be UTC.
    """
    zone = _zone(site_id, lookup)
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(zone).date()


def period_as_dates(start: date, end: date) -> list[date]:
    """Return all dates from start to end inclusive.

    Walks backward when start is after end, e.g.
    (2015-12-21, 2015-12-20) -> [2015-12-21, 2015-12-20].
    """
    step = timedelta(days=-1 if start > end else 1)
    dates = [start]
    current = start
    while current != end:
        current += step
        dates.append(current)
    return dates

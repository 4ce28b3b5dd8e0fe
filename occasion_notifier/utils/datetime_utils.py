from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

from occasion_notifier.config.settings import settings


def local_zone() -> ZoneInfo:
    """The fixed zone every calendar comparison is made in."""
    return ZoneInfo(settings.LOCAL_TIMEZONE)


def utc_now() -> datetime:
    """
    Get current UTC datetime as a timezone-aware datetime.

    Returns:
        datetime: Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def naive_utc_now() -> datetime:
    """
    Get current UTC datetime as a naive datetime (no timezone info).
    This is the representation stored in DateTime columns.

    Returns:
        datetime: Current UTC datetime without timezone info
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """
    Convert a datetime object to naive UTC (no timezone info).

    Args:
        dt: Datetime object to convert

    Returns:
        datetime: Naive UTC datetime
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    utc_dt = dt.astimezone(timezone.utc)
    return utc_dt.replace(tzinfo=None)


def from_naive_utc(dt: datetime, zone: ZoneInfo = ZoneInfo("UTC")) -> datetime:
    """
    Convert a naive UTC datetime (no timezone info) to a timezone-aware datetime.

    Args:
        dt: Naive UTC datetime to convert
        zone: Timezone to use for the conversion (default: UTC)

    Returns:
        datetime: Timezone-aware datetime
    """
    if dt.tzinfo is not None:
        raise ValueError("Input datetime must be naive (no timezone info)")
    return dt.replace(tzinfo=timezone.utc).astimezone(zone)


def to_local_date(
    value: Union[datetime, date, None], zone: Optional[ZoneInfo] = None
) -> Optional[date]:
    """
    Calendar date of a stored value in the local zone.

    Naive datetimes are UTC instants, aware datetimes are converted, plain
    dates are already local. Anything else yields None.
    """
    zone = zone or local_zone()
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return from_naive_utc(value, zone).date()
        return value.astimezone(zone).date()
    if isinstance(value, date):
        return value
    return None


def month_day_key(value: Union[datetime, date, None], zone: Optional[ZoneInfo] = None) -> str:
    """Year-independent "MM-DD" key, or "" when the value is missing or malformed."""
    local = to_local_date(value, zone)
    if local is None:
        return ""
    return local.strftime("%m-%d")


def local_today(zone: Optional[ZoneInfo] = None) -> date:
    """Today's calendar date in the local zone."""
    return utc_now().astimezone(zone or local_zone()).date()


def add_days(day: date, days: int) -> date:
    return day + timedelta(days=days)


def format_ymd(day: date) -> str:
    """Render a calendar date as YYYY-MM-DD, the format used in ledger keys."""
    return day.strftime("%Y-%m-%d")

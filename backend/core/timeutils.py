"""
Time helpers - calendar dates, venue-local slot times and UTC instants.

Instants are persisted as ISO-8601 strings in UTC with a fixed layout
(YYYY-MM-DDTHH:MM:SS+00:00) so that string order equals time order.
"""
import re
from datetime import datetime, date, timedelta, timezone
from typing import List, Tuple

import pytz

from .config import settings
from .exceptions import ValidationException

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return now_utc().isoformat()


def venue_tz():
    return pytz.timezone(settings.VENUE_TIMEZONE)


def parse_date_str(date_str: str) -> date:
    """Parse a YYYY-MM-DD calendar date or raise ValidationException"""
    if not isinstance(date_str, str) or not DATE_PATTERN.match(date_str):
        raise ValidationException("Invalid date format. Use YYYY-MM-DD", reason="invalid_date")
    try:
        return datetime.strptime(date_str, "%Y-%m-%d").date()
    except ValueError:
        raise ValidationException(f"Invalid date: {date_str}", reason="invalid_date")


def time_to_minutes(time_str: str) -> int:
    """Convert HH:MM to minutes since midnight"""
    h, m = map(int, time_str.split(":"))
    return h * 60 + m


def to_iso_utc(dt: datetime) -> str:
    """Normalize an aware datetime to the stored instant format"""
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat()


def from_iso(instant: str) -> datetime:
    return datetime.fromisoformat(instant)


def parse_instant(value: str) -> str:
    """
    Parse a client supplied date-time into the stored UTC instant string.
    Naive values are interpreted in the venue time zone, never the host's.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            raise ValidationException(f"Invalid date-time: {value}", reason="invalid_slot")
    if dt.tzinfo is None:
        dt = venue_tz().localize(dt)
    return to_iso_utc(dt)


def add_minutes(instant: str, minutes: int) -> str:
    return to_iso_utc(from_iso(instant) + timedelta(minutes=minutes))


def service_slot_instants(service_date: date, slot_times: List[str]) -> List[Tuple[str, str]]:
    """
    Map the configured slot times of a service night to (time, UTC instant).
    A time earlier than its predecessor belongs to the next calendar day
    (22:00, 23:30, 00:00 -> the 00:00 slot is after midnight).
    """
    tz = venue_tz()
    result = []
    day_offset = 0
    previous = None
    for time_str in slot_times:
        minutes = time_to_minutes(time_str)
        if previous is not None and minutes < previous:
            day_offset += 1
        previous = minutes
        local_day = service_date + timedelta(days=day_offset)
        naive = datetime.combine(local_day, datetime.strptime(time_str, "%H:%M").time())
        result.append((time_str, to_iso_utc(tz.localize(naive))))
    return result


def day_label(service_date: date) -> str:
    return WEEKDAY_NAMES[service_date.weekday()]

"""
Business-hours and clock helpers.

All wall-clock reasoning (today's date, minutes since midnight, opening
hours) happens in the configured business timezone; everything persisted
is UTC.
"""
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from salonqueue.core.config import settings

FULLY_BOOKED_MESSAGE = "We're fully booked for today. Please select a slot for tomorrow."
MINUTES_PER_DAY = 24 * 60


def business_tz() -> ZoneInfo:
    return ZoneInfo(settings.business_timezone)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise a stored timestamp; SQLite hands back naive UTC values."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_local(value: datetime) -> datetime:
    return as_utc(value).astimezone(business_tz())


def business_today(now: Optional[datetime] = None) -> date:
    """Calendar day in the business timezone."""
    return to_local(now or now_utc()).date()


def minutes_since_midnight(now: Optional[datetime] = None) -> int:
    local = to_local(now or now_utc())
    return local.hour * 60 + local.minute


def parse_time_to_minutes(time_str: Optional[str]) -> int:
    """Converts "HH:MM" (or "HH:MM:SS") to minutes since midnight."""
    if not time_str:
        return 0
    parts = time_str.split(":")
    return int(parts[0]) * 60 + int(parts[1])


def format_minutes(total: int) -> str:
    """Minutes since midnight as "HH:MM", wrapping past midnight."""
    total %= MINUTES_PER_DAY
    return f"{total // 60:02d}:{total % 60:02d}"


def format_time_12(time_str: Optional[str]) -> str:
    if not time_str:
        return ""
    parts = time_str.split(":")
    h = int(parts[0])
    minutes = parts[1] if len(parts) > 1 else "00"
    ampm = "PM" if h >= 12 else "AM"
    h12 = h % 12 or 12
    return f"{h12}:{minutes} {ampm}"


def format_local_clock(value: datetime) -> str:
    local = to_local(value)
    return format_time_12(f"{local.hour}:{local.minute:02d}")


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end (floored; negative if end is earlier)."""
    return math.floor((as_utc(end) - as_utc(start)).total_seconds() / 60)


def add_minutes(value: datetime, minutes: int) -> datetime:
    return as_utc(value) + timedelta(minutes=minutes)


@dataclass(frozen=True)
class OpeningCheck:
    is_open: bool
    message: Optional[str] = None


def is_business_open(business, now: Optional[datetime] = None) -> OpeningCheck:
    """Manual closure first, then the opening hours for the current minute."""
    if business.is_closed:
        return OpeningCheck(False, "The business is currently closed by the owner.")

    open_time = business.open_time or settings.default_open_time
    close_time = business.close_time or settings.default_close_time
    current = minutes_since_midnight(now)

    if current < parse_time_to_minutes(open_time):
        return OpeningCheck(False, f"The business is not open yet. It opens at {format_time_12(open_time)}.")
    if current > parse_time_to_minutes(close_time):
        return OpeningCheck(False, f"The business is closed for the day. It closed at {format_time_12(close_time)}.")
    return OpeningCheck(True)


@dataclass(frozen=True)
class AdmissionDecision:
    can_join: bool
    estimated_finish_minutes: int
    limit_minutes: int
    finish_time_str: Optional[str] = None
    closing_time_str: Optional[str] = None
    message: Optional[str] = None


def can_complete_before_closing(
    close_time: str,
    now_minutes: int,
    wait_ahead_minutes: int,
    duration_minutes: int,
    buffer_minutes: Optional[int] = None,
) -> AdmissionDecision:
    """
    Closing-time admission control.

    estimated_finish = now + wait_ahead + duration; the request is refused
    when that lands after closing time minus the safety buffer.
    """
    if buffer_minutes is None:
        buffer_minutes = settings.closing_buffer_minutes

    finish = now_minutes + wait_ahead_minutes + duration_minutes
    limit = parse_time_to_minutes(close_time) - buffer_minutes

    if finish > limit:
        return AdmissionDecision(
            can_join=False,
            estimated_finish_minutes=finish,
            limit_minutes=limit,
            finish_time_str=format_time_12(format_minutes(finish)),
            closing_time_str=format_time_12(close_time),
            message=FULLY_BOOKED_MESSAGE,
        )
    return AdmissionDecision(can_join=True, estimated_finish_minutes=finish, limit_minutes=limit)

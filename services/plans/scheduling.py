"""
Calendar helpers for plans.

Plans store dates and wall-clock times in the plan's own timezone; the
database and Upload-Post work in UTC. Everything here converts between the
two with zoneinfo.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_SLOT_HOURS = [9, 12, 15, 18, 21]
DEFAULT_TRIGGER_TIME = "09:00:00"
DEFAULT_PLAN_DAYS = 30
MAX_PLAN_DAYS = 365


def get_zone(tz_name: Optional[str]) -> ZoneInfo:
    """Resolve a plan timezone, falling back to UTC for unknown names."""
    try:
        return ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{tz_name}', using UTC")
        return ZoneInfo("UTC")


def local_now(tz_name: Optional[str], now: Optional[datetime] = None) -> datetime:
    """Current wall-clock time in the plan timezone."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(get_zone(tz_name))


def normalize_time(value: Union[str, time, None]) -> Optional[str]:
    """
    Normalize "9", "9:30", "09:30:00" or a time object to "HH:MM:SS".

    Returns None for empty or unparseable input.
    """
    if value is None:
        return None
    if isinstance(value, time):
        return value.strftime("%H:%M:%S")

    parts = str(value).strip().split(":")
    if not parts or not parts[0]:
        return None
    try:
        numbers = [int(p) for p in parts[:3]]
    except ValueError:
        return None
    while len(numbers) < 3:
        numbers.append(0)

    hours, minutes, seconds = numbers
    if not (0 <= hours < 24 and 0 <= minutes < 60 and 0 <= seconds < 60):
        return None
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def parse_time(value: Union[str, time, None]) -> Optional[time]:
    normalized = normalize_time(value)
    if normalized is None:
        return None
    return time.fromisoformat(normalized)


def parse_date(value: Union[str, date, None]) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def slot_times(videos_per_day: int, custom_times: Optional[list] = None) -> list[str]:
    """
    Posting times for each video slot of a day.

    Custom times win slot by slot; remaining slots use the default grid
    (09:00, 12:00, 15:00, 18:00, 21:00).
    """
    defaults = [f"{hour:02d}:00:00" for hour in DEFAULT_SLOT_HOURS[:videos_per_day]]
    # more than five slots a day: spread the rest one hour after the last default
    while len(defaults) < videos_per_day:
        next_hour = min(23, DEFAULT_SLOT_HOURS[-1] + len(defaults) - len(DEFAULT_SLOT_HOURS) + 1)
        defaults.append(f"{next_hour:02d}:00:00")

    times = []
    for index in range(videos_per_day):
        custom = None
        if custom_times and index < len(custom_times):
            custom = normalize_time(custom_times[index])
        times.append(custom or defaults[index])
    return times


def resolve_date_range(
    start: date,
    end: Optional[date],
    tz_name: Optional[str],
    trigger_time: Union[str, time, None],
    now: Optional[datetime] = None,
) -> tuple[date, date]:
    """
    Clamp a requested plan range.

    - Starting today after today's trigger time has passed starts tomorrow
    - Missing or inverted end dates become start + 30 days
    - Ranges never exceed 365 days
    """
    current = local_now(tz_name, now)
    trigger = parse_time(trigger_time) or parse_time(DEFAULT_TRIGGER_TIME)

    if start == current.date() and current.time() >= trigger:
        logger.info(f"Trigger time {trigger} already passed today, starting plan tomorrow")
        start = start + timedelta(days=1)

    if end is None or end < start:
        end = start + timedelta(days=DEFAULT_PLAN_DAYS)

    if (end - start).days > MAX_PLAN_DAYS:
        end = start + timedelta(days=MAX_PLAN_DAYS)

    return start, end


def local_to_utc(
    scheduled_date: Union[str, date],
    scheduled_time: Union[str, time, None],
    tz_name: Optional[str],
) -> Optional[datetime]:
    """Convert a plan-local date + time to an aware UTC datetime."""
    day = parse_date(scheduled_date)
    at = parse_time(scheduled_time)
    if day is None or at is None:
        return None
    local = datetime.combine(day, at, tzinfo=get_zone(tz_name))
    return local.astimezone(timezone.utc)


def minutes_until(
    scheduled_date: Union[str, date],
    scheduled_time: Union[str, time, None],
    tz_name: Optional[str],
    now: Optional[datetime] = None,
) -> Optional[float]:
    """Minutes from now until a plan-local slot; negative once it has passed."""
    target = local_to_utc(scheduled_date, scheduled_time, tz_name)
    if target is None:
        return None
    now = now or datetime.now(timezone.utc)
    return (target - now).total_seconds() / 60.0


def is_trigger_due(
    trigger_time: Union[str, time, None],
    tz_name: Optional[str],
    window_minutes: int = 5,
    now: Optional[datetime] = None,
) -> bool:
    """
    A daily trigger fires once the plan-local clock reaches trigger_time and
    for ``window_minutes`` afterwards.
    """
    trigger = parse_time(trigger_time) or parse_time(DEFAULT_TRIGGER_TIME)
    current = local_now(tz_name, now)

    current_minutes = current.hour * 60 + current.minute
    trigger_minutes = trigger.hour * 60 + trigger.minute
    return trigger_minutes <= current_minutes <= trigger_minutes + window_minutes


def trigger_passed(
    trigger_time: Union[str, time, None],
    tz_name: Optional[str],
    now: Optional[datetime] = None,
) -> bool:
    """The plan-local clock has reached trigger_time today."""
    trigger = parse_time(trigger_time) or parse_time(DEFAULT_TRIGGER_TIME)
    current = local_now(tz_name, now)
    return current.hour * 60 + current.minute >= trigger.hour * 60 + trigger.minute

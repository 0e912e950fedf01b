# app/utils/timeutils.py
"""
Time helpers. All datetimes stored in the DB are naive UTC.
Work-hour checks convert to the business timezone first.
"""

from datetime import datetime, time, timezone
from typing import Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utc_now() -> datetime:
    """Current time as naive UTC (matches the DB columns)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_epoch(epoch_seconds: float) -> datetime:
    """Device epoch seconds → naive UTC datetime."""
    return datetime.fromtimestamp(float(epoch_seconds), tz=timezone.utc).replace(tzinfo=None)


def to_local(dt: datetime, tz_name: str) -> datetime:
    """Naive UTC datetime → aware datetime in tz_name."""
    return dt.replace(tzinfo=timezone.utc).astimezone(tzinfo_from_name(tz_name))


def tzinfo_from_name(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {tz_name!r}") from exc


def parse_hhmm(value: str) -> time:
    """'07:30' → time(7, 30). Raises ValueError on anything else."""
    hours, _, minutes = value.strip().partition(":")
    if not hours.isdigit() or not minutes.isdigit() or len(minutes) != 2:
        raise ValueError(f"Expected HH:MM, got {value!r}")
    return time(int(hours), int(minutes))


def is_within_work_hours(dt: datetime, start: time, end: time,
                         work_days: Iterable[int], tz_name: str) -> bool:
    """
    True if the naive-UTC dt falls on a work day (ISO weekday, Mon=1) and
    inside [start, end] in the business timezone. Both bounds inclusive, to the
    minute. A window with start > end wraps past midnight; the weekday is
    the one the shift started on.
    """
    local = to_local(dt, tz_name)
    current = local.time().replace(second=0, microsecond=0)
    days = set(work_days)

    if start <= end:
        return local.isoweekday() in days and start <= current <= end

    if current >= start:
        return local.isoweekday() in days
    if current <= end:
        shift_day = (local.isoweekday() - 2) % 7 + 1   # previous ISO weekday
        return shift_day in days
    return False


from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone

from clockin.models import AttendanceStatus

HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)

    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


def calendar_date(instant: datetime) -> date:
    """UTC calendar day of ``instant``; the per-user partition key of attendance records."""
    return normalize_ts(instant).date()


def iso_weekday(day: date) -> int:
    # Monday=1 .. Sunday=7
    return day.isoweekday()


def is_valid_time_of_day(value: str) -> bool:
    return isinstance(value, str) and HHMM_PATTERN.match(value) is not None


def parse_time_of_day(value: str, reference: datetime) -> datetime | None:
    """Anchor a strict ``HH:MM`` string to the UTC day of ``reference``.

    Returns ``None`` for anything that is not a 24-hour ``HH:MM`` value.
    """
    if not isinstance(value, str):
        return None
    match = HHMM_PATTERN.match(value)
    if match is None:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2))
    return datetime.combine(calendar_date(reference), time(hour=hour, minute=minute), tzinfo=timezone.utc)


def classify_check_in(
    check_in: datetime,
    schedule_entry: datetime | None,
    grace_minutes: int,
) -> AttendanceStatus | None:
    if schedule_entry is None:
        return None
    grace_limit = normalize_ts(schedule_entry) + timedelta(minutes=max(0, int(grace_minutes)))
    if normalize_ts(check_in) <= grace_limit:
        return AttendanceStatus.ON_TIME
    return AttendanceStatus.LATE


def format_for_log(value: datetime | date | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()

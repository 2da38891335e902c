"""Business-calendar elapsed time.

A business day is any Monday-Friday calendar day and is worth a flat 8 hours.
Time of day is ignored: both ends are truncated to midnight and every weekday
in the inclusive range counts in full. There is no holiday calendar.
"""

from datetime import datetime, timedelta
from typing import Optional

from analytics.config import HOURS_PER_BUSINESS_DAY


def _midnight(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def business_hours_between(start: Optional[datetime], end: Optional[datetime]) -> int:
    """Working hours between two instants, counting whole business days.

    Returns 0 when either bound is missing or ``end <= start``.
    """
    if start is None or end is None or end <= start:
        return 0

    current = _midnight(start)
    last = _midnight(end)

    hours = 0
    while current <= last:
        if current.weekday() < 5:  # Monday = 0, Friday = 4
            hours += HOURS_PER_BUSINESS_DAY
        current += timedelta(days=1)

    return hours


def business_days_between(start: Optional[datetime], end: Optional[datetime]) -> float:
    return business_hours_between(start, end) / HOURS_PER_BUSINESS_DAY


def hours_to_days(hours: float) -> float:
    return round(hours / HOURS_PER_BUSINESS_DAY, 1)

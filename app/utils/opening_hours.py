"""
Opening hours evaluation for weekly opening periods.
Days follow the directory convention: 0 is Sunday.
"""

from datetime import datetime
from typing import Optional, Sequence

from app.schemas.recommendations import OpeningPeriod

MINUTES_PER_DAY = 24 * 60
MINUTES_PER_WEEK = 7 * MINUTES_PER_DAY


def day_and_minutes(instant: datetime):
    """Sunday-based weekday and minutes since midnight of a wall-clock instant."""
    return (instant.weekday() + 1) % 7, instant.hour * 60 + instant.minute


def is_open_at(periods: Optional[Sequence[OpeningPeriod]], instant: datetime) -> Optional[bool]:
    """Whether a place is open at ``instant``. None when there are no periods."""
    if not periods:
        return None

    day, minutes = day_and_minutes(instant)
    for period in periods:
        opens = period.open.minutes

        if period.close is None:
            if period.open.day == day:
                return minutes >= opens
            continue

        closes = period.close.minutes
        if period.open.day == period.close.day:
            if day == period.open.day and opens <= minutes < closes:
                return True
        else:
            # overnight period, e.g. Friday 22:00 to Saturday 02:00
            if day == period.open.day and minutes >= opens:
                return True
            if day == period.close.day and minutes < closes:
                return True

    return False


def minutes_until_open(periods: Optional[Sequence[OpeningPeriod]], instant: datetime) -> Optional[int]:
    """Minutes until the next opening within the week, or None without periods."""
    if not periods:
        return None

    day, minutes = day_and_minutes(instant)
    now = day * MINUTES_PER_DAY + minutes
    waits = [
        (period.open.day * MINUTES_PER_DAY + period.open.minutes - now) % MINUTES_PER_WEEK
        for period in periods
    ]
    upcoming = [wait for wait in waits if wait > 0]
    return min(upcoming) if upcoming else None

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import SpendingLimitType


@dataclass(frozen=True)
class Period:
    slug: str
    start: datetime
    end: datetime


FIXED_WINDOWS: dict[SpendingLimitType, timedelta] = {
    SpendingLimitType.daily: timedelta(hours=24),
    SpendingLimitType.weekly: timedelta(days=7),
}


def local_now() -> datetime:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).replace(tzinfo=None)


def month_start(moment: datetime) -> datetime:
    return datetime.combine(moment.date().replace(day=1), time.min)


def window_expired(
    limit_type: SpendingLimitType, last_reset: datetime, now: datetime
) -> bool:
    """True once the window that began at ``last_reset`` no longer covers ``now``.

    Daily and Weekly windows are fixed lengths measured from ``last_reset``.
    Monthly windows follow the calendar: they expire as soon as ``now`` falls
    in a different month (or year) than ``last_reset``.
    """
    if limit_type == SpendingLimitType.monthly:
        return (last_reset.year, last_reset.month) != (now.year, now.month)
    return now - last_reset >= FIXED_WINDOWS[limit_type]


def window_anchor(limit_type: SpendingLimitType, now: datetime) -> datetime:
    """Start of a freshly opened window.

    Monthly windows always open on the first instant of the calendar month so
    that expenses booked earlier in the month are never dropped.
    """
    if limit_type == SpendingLimitType.monthly:
        return month_start(now)
    return now


def parse_limit_type(value: str) -> Optional[SpendingLimitType]:
    for member in SpendingLimitType:
        if member.value.lower() == (value or "").strip().lower():
            return member
    return None


def resolve_trend_period(period: Optional[str], *, now: datetime) -> Period:
    slug = (period or "monthly").lower()
    if slug == "daily":
        return Period("daily", now - timedelta(hours=24), now)
    if slug == "weekly":
        return Period("weekly", now - timedelta(days=7), now)
    return Period("monthly", month_start(now), now)


def occurred_at_for(entry_date: date, now: datetime) -> datetime:
    # Same-day entries take the current time so they land inside a Daily window.
    if entry_date == now.date():
        return now
    return datetime.combine(entry_date, time.min)

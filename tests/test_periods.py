from datetime import date, datetime, timedelta

from models import SpendingLimitType
from periods import (
    occurred_at_for,
    parse_limit_type,
    resolve_trend_period,
    window_anchor,
    window_expired,
)


def test_fixed_windows_expire_on_elapsed_time() -> None:
    start = datetime(2025, 3, 14, 12, 0)
    daily = SpendingLimitType.daily
    weekly = SpendingLimitType.weekly
    assert not window_expired(daily, start, start + timedelta(hours=23, minutes=59))
    assert window_expired(daily, start, start + timedelta(hours=24))
    assert not window_expired(weekly, start, start + timedelta(days=6, hours=23))
    assert window_expired(weekly, start, start + timedelta(days=7))


def test_monthly_window_expires_on_month_change() -> None:
    monthly = SpendingLimitType.monthly
    start = datetime(2025, 3, 1)
    assert not window_expired(monthly, start, datetime(2025, 3, 31, 23, 59))
    assert window_expired(monthly, start, datetime(2025, 4, 1, 0, 0))
    assert window_expired(monthly, datetime(2024, 3, 5), datetime(2025, 3, 5))
    assert window_expired(monthly, datetime(2024, 12, 20), datetime(2025, 1, 2))


def test_window_anchor() -> None:
    now = datetime(2025, 2, 17, 9, 30)
    assert window_anchor(SpendingLimitType.daily, now) == now
    assert window_anchor(SpendingLimitType.weekly, now) == now
    assert window_anchor(SpendingLimitType.monthly, now) == datetime(2025, 2, 1)


def test_parse_limit_type_is_case_insensitive() -> None:
    assert parse_limit_type("daily") == SpendingLimitType.daily
    assert parse_limit_type(" Weekly ") == SpendingLimitType.weekly
    assert parse_limit_type("MONTHLY") == SpendingLimitType.monthly
    assert parse_limit_type("Yearly") is None
    assert parse_limit_type("") is None


def test_trend_periods() -> None:
    now = datetime(2025, 3, 14, 12, 0)
    assert resolve_trend_period("daily", now=now).start == datetime(2025, 3, 13, 12, 0)
    assert resolve_trend_period("weekly", now=now).start == datetime(2025, 3, 7, 12, 0)
    monthly = resolve_trend_period(None, now=now)
    assert monthly.slug == "monthly"
    assert monthly.start == datetime(2025, 3, 1)
    assert monthly.end == now


def test_occurred_at_for_today_uses_the_clock() -> None:
    now = datetime(2025, 3, 14, 12, 0)
    assert occurred_at_for(date(2025, 3, 14), now) == now
    assert occurred_at_for(date(2025, 3, 2), now) == datetime(2025, 3, 2)

import pytest

from limits import (
    LimitSnapshot,
    check_would_exceed,
    evaluate,
    is_exceeded,
    is_near_limit,
    percentage_used,
    remaining,
    summarize,
)
from models import SpendingLimitType


def snapshot(amount: int, spent: int, kind=SpendingLimitType.daily) -> LimitSnapshot:
    return LimitSnapshot(type=kind, amount_cents=amount, current_spending_cents=spent)


def test_percentage_is_monotonic_and_capped() -> None:
    values = [percentage_used(10_000, spent) for spent in range(0, 20_001, 500)]
    assert values == sorted(values)
    assert values[0] == 0.0
    assert values[-1] == 100.0


def test_exceeded_limits_are_never_near() -> None:
    for spent in range(0, 30_001, 250):
        if is_exceeded(20_000, spent):
            assert not is_near_limit(20_000, spent)


def test_near_limit_threshold() -> None:
    assert not is_near_limit(100_000, 79_999)
    assert is_near_limit(100_000, 80_000)
    assert is_near_limit(100_000, 99_999)
    assert not is_near_limit(100_000, 100_000)
    assert is_near_limit(100_000, 50_000, ratio=0.5)


@pytest.mark.parametrize("amount", [0, -100])
def test_disabled_limits_never_trigger(amount: int) -> None:
    status = evaluate(snapshot(amount, 50_000))
    assert status.percentage == 0.0
    assert status.remaining_cents == 0
    assert status.is_exceeded is False
    assert status.is_near_limit is False
    assert status.status == "normal"
    assert check_would_exceed([snapshot(amount, 50_000)], 10_000) == []


def test_remaining_never_goes_negative() -> None:
    assert remaining(10_000, 2_500) == 7_500
    assert remaining(10_000, 12_000) == 0


def test_evaluate_rounds_percentage_for_display() -> None:
    status = evaluate(snapshot(30_000, 10_000))
    assert status.as_dict()["percentage"] == 33.3
    assert status.percentage == pytest.approx(33.333, rel=1e-3)


def test_summary_prefers_exceeded_over_warning() -> None:
    statuses = [
        evaluate(snapshot(10_000, 9_000)),
        evaluate(snapshot(10_000, 10_000, SpendingLimitType.weekly)),
        evaluate(snapshot(0, 0, SpendingLimitType.monthly)),
    ]
    result = summarize(statuses)
    assert result["has_warning"] is True
    assert result["has_exceeded"] is True
    assert result["overall_status"] == "exceeded"
    assert [item["status"] for item in result["limits"]] == [
        "warning",
        "exceeded",
        "normal",
    ]


def test_summary_of_no_limits_is_normal() -> None:
    assert summarize([])["overall_status"] == "normal"


def test_check_would_exceed_lists_every_violated_window() -> None:
    limits = [
        snapshot(50_000, 48_000, SpendingLimitType.daily),
        snapshot(200_000, 100_000, SpendingLimitType.weekly),
        snapshot(500_000, 480_000, SpendingLimitType.monthly),
    ]
    violations = check_would_exceed(limits, 30_000)
    assert [v.type for v in violations] == [
        SpendingLimitType.daily,
        SpendingLimitType.monthly,
    ]
    assert violations[0].excess_cents == 28_000
    assert violations[1].projected_cents == 510_000
    assert violations[1].excess_cents == 10_000


def test_spending_exactly_to_the_limit_is_allowed() -> None:
    assert check_would_exceed([snapshot(10_000, 4_000)], 6_000) == []

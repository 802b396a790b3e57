"""Pure evaluation of spending limits.

Every function works on integer cents and treats ``amount_cents <= 0`` as a
disabled limit: never exceeded, never near the limit, 0% used and nothing
remaining.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from models import SpendingLimitType

DEFAULT_NEAR_LIMIT_RATIO = 0.8


@dataclass(frozen=True)
class LimitSnapshot:
    type: SpendingLimitType
    amount_cents: int
    current_spending_cents: int
    last_reset: Optional[datetime] = None


@dataclass(frozen=True)
class LimitStatus:
    type: SpendingLimitType
    amount_cents: int
    current_spending_cents: int
    remaining_cents: int
    percentage: float
    is_exceeded: bool
    is_near_limit: bool
    last_reset: Optional[datetime]

    @property
    def status(self) -> str:
        if self.is_exceeded:
            return "exceeded"
        if self.is_near_limit:
            return "warning"
        return "normal"

    def as_dict(self) -> dict[str, object]:
        return {
            "type": self.type.value,
            "amount_cents": self.amount_cents,
            "current_spending_cents": self.current_spending_cents,
            "remaining_cents": self.remaining_cents,
            "percentage": round(self.percentage, 1),
            "is_exceeded": self.is_exceeded,
            "is_near_limit": self.is_near_limit,
            "last_reset": self.last_reset.isoformat() if self.last_reset else None,
            "status": self.status,
        }


@dataclass(frozen=True)
class LimitViolation:
    type: SpendingLimitType
    limit_cents: int
    current_cents: int
    projected_cents: int
    excess_cents: int

    def as_dict(self) -> dict[str, object]:
        return {
            "type": self.type.value,
            "limit_cents": self.limit_cents,
            "current_cents": self.current_cents,
            "after_transaction_cents": self.projected_cents,
            "exceeded_by_cents": self.excess_cents,
        }


def percentage_used(amount_cents: int, current_spending_cents: int) -> float:
    if amount_cents <= 0:
        return 0.0
    return min(current_spending_cents / amount_cents * 100, 100.0)


def is_exceeded(amount_cents: int, current_spending_cents: int) -> bool:
    return amount_cents > 0 and current_spending_cents >= amount_cents


def is_near_limit(
    amount_cents: int,
    current_spending_cents: int,
    ratio: float = DEFAULT_NEAR_LIMIT_RATIO,
) -> bool:
    if amount_cents <= 0 or is_exceeded(amount_cents, current_spending_cents):
        return False
    return current_spending_cents >= amount_cents * ratio


def remaining(amount_cents: int, current_spending_cents: int) -> int:
    if amount_cents <= 0:
        return 0
    return max(amount_cents - current_spending_cents, 0)


def evaluate(
    limit: LimitSnapshot, *, ratio: float = DEFAULT_NEAR_LIMIT_RATIO
) -> LimitStatus:
    amount = limit.amount_cents
    spent = limit.current_spending_cents
    return LimitStatus(
        type=limit.type,
        amount_cents=amount,
        current_spending_cents=spent,
        remaining_cents=remaining(amount, spent),
        percentage=percentage_used(amount, spent),
        is_exceeded=is_exceeded(amount, spent),
        is_near_limit=is_near_limit(amount, spent, ratio),
        last_reset=limit.last_reset,
    )


def summarize(statuses: Iterable[LimitStatus]) -> dict[str, object]:
    statuses = list(statuses)
    has_exceeded = any(s.is_exceeded for s in statuses)
    has_warning = any(s.is_near_limit for s in statuses)
    if has_exceeded:
        overall = "exceeded"
    elif has_warning:
        overall = "warning"
    else:
        overall = "normal"
    return {
        "limits": [s.as_dict() for s in statuses],
        "has_exceeded": has_exceeded,
        "has_warning": has_warning,
        "overall_status": overall,
    }


def check_would_exceed(
    limits: Iterable[LimitSnapshot], proposed_expense_cents: int
) -> list[LimitViolation]:
    violations: list[LimitViolation] = []
    for limit in limits:
        if limit.amount_cents <= 0:
            continue
        projected = limit.current_spending_cents + proposed_expense_cents
        if projected > limit.amount_cents:
            violations.append(
                LimitViolation(
                    type=limit.type,
                    limit_cents=limit.amount_cents,
                    current_cents=limit.current_spending_cents,
                    projected_cents=projected,
                    excess_cents=projected - limit.amount_cents,
                )
            )
    return violations

from __future__ import annotations

import logging
import math
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Iterator, Optional, Union

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, sessionmaker

from config import get_settings
from database import session_scope
from limits import (
    LimitSnapshot,
    check_would_exceed,
    evaluate,
    summarize,
)
from models import (
    Account,
    AccountKind,
    ActivityLog,
    AllocationType,
    SavingsAllocation,
    SpendingLimit,
    SpendingLimitType,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from periods import (
    local_now,
    occurred_at_for,
    parse_limit_type,
    resolve_trend_period,
    window_anchor,
    window_expired,
)
from schemas import (
    AccountIn,
    SavingsAllocationIn,
    TransactionIn,
    TransactionUpdateIn,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
LedgerEntry = Union[Transaction, SavingsAllocation]

LIMIT_ORDER = list(SpendingLimitType)


class LedgerValidationError(ValueError):
    pass


class EntityNotFound(ValueError):
    pass


class LedgerConsistencyError(RuntimeError):
    pass


def get_current_user_id() -> int:
    return 1


def format_cents(cents: int) -> str:
    return f"{cents / 100:.2f}"


@dataclass
class LedgerFilters:
    type: Optional[str] = None
    status: Optional[TransactionStatus] = None
    account_id: Optional[int] = None
    start: Optional[date] = None
    end: Optional[date] = None


@dataclass
class Page:
    items: list
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass(frozen=True)
class LedgerEffect:
    account_id: int
    delta_cents: int


def ledger_effect(entry: LedgerEntry) -> LedgerEffect:
    """The signed amount ``entry`` currently contributes to its account."""
    amount = int(entry.amount_cents)
    if isinstance(entry, SavingsAllocation):
        # Deposits move money out of the account into savings.
        delta = amount if entry.type == AllocationType.withdrawal else -amount
    elif entry.status != TransactionStatus.completed:
        delta = 0
    else:
        delta = amount if entry.type == TransactionType.income else -amount
    return LedgerEffect(account_id=entry.account_id, delta_cents=delta)


@contextmanager
def atomic_ledger_write(session: Session, action: str) -> Iterator[None]:
    """Commit the record write and its balance delta together, or neither."""
    try:
        yield
        session.commit()
    except Exception as exc:
        try:
            session.rollback()
        except SQLAlchemyError as rollback_exc:
            logger.critical(
                f"ledger_rollback_failed: action={action} error={rollback_exc!r}"
            )
            raise LedgerConsistencyError(
                f"{action} failed and could not be rolled back; "
                "account balance may no longer match its ledger"
            ) from rollback_exc
        if not isinstance(exc, ValueError):
            logger.exception(f"ledger_write_failed: action={action}")
        raise


def record_activity(
    session: Session, user_id: int, action: str, description: str
) -> None:
    session.add(ActivityLog(user_id=user_id, action=action, description=description))


def _paginate(session: Session, stmt, page: int, limit: int) -> Page:
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    total = int(
        session.execute(
            select(func.count()).select_from(stmt.order_by(None).subquery())
        ).scalar_one()
        or 0
    )
    items = session.scalars(stmt.offset((page - 1) * limit).limit(limit)).unique().all()
    return Page(items=list(items), total=total, page=page, limit=limit)


class ActivityLogService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def recent(self, limit: int = 20) -> list[ActivityLog]:
        stmt = (
            select(ActivityLog)
            .where(ActivityLog.user_id == self.user_id)
            .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
            .limit(limit)
        )
        return self.session.scalars(stmt).all()


class AccountService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_active(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id, Account.is_active.is_(True))
            .order_by(Account.created_at.asc(), Account.id.asc())
        )
        return self.session.scalars(stmt).all()

    def get(self, account_id: int, *, active_only: bool = True) -> Account:
        stmt = select(Account).where(
            Account.user_id == self.user_id, Account.id == account_id
        )
        if active_only:
            stmt = stmt.where(Account.is_active.is_(True))
        account = self.session.scalar(stmt)
        if not account:
            raise EntityNotFound("Account not found")
        return account

    def create(self, data: AccountIn) -> Account:
        # The opening balance is the only balance written outside BalanceMutator.
        account = Account(
            user_id=self.user_id,
            name=data.name.strip(),
            kind=data.kind,
            account_number=data.account_number,
            balance_cents=data.opening_balance_cents,
            is_active=True,
        )
        self.session.add(account)
        record_activity(
            self.session,
            self.user_id,
            "account_created",
            f"Connected {account.kind.value} account: {account.name}",
        )
        self.session.commit()
        self.session.refresh(account)
        logger.info(
            f"account_created: user_id={self.user_id} account_id={account.id} "
            f"opening_balance={account.balance_cents}"
        )
        return account

    def deactivate(self, account_id: int) -> None:
        account = self.get(account_id)
        account.is_active = False
        record_activity(
            self.session,
            self.user_id,
            "account_disconnected",
            f"Disconnected account: {account.name}",
        )
        self.session.commit()

    def ensure_default_cash(self) -> Account:
        name = get_settings().default_cash_account
        existing = self.session.scalar(
            select(Account).where(
                Account.user_id == self.user_id,
                Account.name == name,
                Account.is_active.is_(True),
            )
        )
        if existing:
            return existing
        logger.info(f"default_cash_account: user_id={self.user_id} creating")
        return self.create(AccountIn(name=name, kind=AccountKind.cash))


class BalanceMutator:
    """Sole writer of ``Account.balance_cents`` after an account is created.

    Every adjustment is one server-side ``balance = balance + delta`` statement
    executed inside the caller's database transaction, so concurrent writers
    never lose updates and a failed record write rolls the delta back with it.
    """

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def adjust(
        self,
        account_id: int,
        delta_cents: int,
        *,
        minimum_balance_cents: Optional[int] = None,
    ) -> None:
        stmt = (
            update(Account)
            .where(
                Account.id == account_id,
                Account.user_id == self.user_id,
                Account.is_active.is_(True),
            )
            .values(balance_cents=Account.balance_cents + delta_cents)
            .execution_options(synchronize_session=False)
        )
        if minimum_balance_cents is not None:
            stmt = stmt.where(Account.balance_cents >= minimum_balance_cents)
        elif delta_cents == 0:
            self._require_active(account_id)
            return

        result = self.session.execute(stmt)
        self._expire_cached(account_id)
        if result.rowcount != 1:
            account = self._require_active(account_id)
            raise LedgerValidationError(
                f"Insufficient balance. Account balance is "
                f"{format_cents(account.balance_cents)}"
            )
        logger.info(
            f"balance_delta: user_id={self.user_id} account_id={account_id} "
            f"delta={delta_cents}"
        )

    def _expire_cached(self, account_id: int) -> None:
        cached = self.session.identity_map.get(
            self.session.identity_key(Account, account_id)
        )
        if cached is not None:
            self.session.expire(cached, ["balance_cents"])

    def _require_active(self, account_id: int) -> Account:
        account = self.session.scalar(
            select(Account)
            .where(
                Account.id == account_id,
                Account.user_id == self.user_id,
                Account.is_active.is_(True),
            )
            .execution_options(populate_existing=True)
        )
        if not account:
            raise EntityNotFound("Account not found")
        return account

    def apply_create(
        self, entry: LedgerEntry, *, minimum_balance_cents: Optional[int] = None
    ) -> None:
        effect = ledger_effect(entry)
        self.adjust(
            effect.account_id,
            effect.delta_cents,
            minimum_balance_cents=minimum_balance_cents,
        )

    def apply_update(self, before: LedgerEffect, entry: LedgerEntry) -> None:
        after = ledger_effect(entry)
        if before.account_id == after.account_id:
            self.adjust(after.account_id, after.delta_cents - before.delta_cents)
            return
        self.adjust(before.account_id, -before.delta_cents)
        self.adjust(after.account_id, after.delta_cents)

    def apply_delete(self, entry: LedgerEntry) -> None:
        effect = ledger_effect(entry)
        self.adjust(effect.account_id, -effect.delta_cents)


class TransactionService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.clock = clock or local_now

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.account))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise EntityNotFound("Transaction not found")
        return txn

    def list(self, filters: LedgerFilters, page: int = 1, limit: int = 20) -> Page:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.account))
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.created_at.desc())
        )
        if filters.type:
            try:
                txn_type = TransactionType(filters.type)
            except ValueError as exc:
                raise LedgerValidationError(
                    "Transaction type must be income or expense"
                ) from exc
            stmt = stmt.where(Transaction.type == txn_type)
        if filters.status:
            stmt = stmt.where(Transaction.status == filters.status)
        if filters.account_id:
            stmt = stmt.where(Transaction.account_id == filters.account_id)
        if filters.start:
            stmt = stmt.where(Transaction.date >= filters.start)
        if filters.end:
            stmt = stmt.where(Transaction.date <= filters.end)
        return _paginate(self.session, stmt, page, limit)

    def create(self, data: TransactionIn) -> Transaction:
        if data.amount_cents <= 0:
            raise LedgerValidationError("Amount must be greater than 0")
        AccountService(self.session, self.user_id).get(data.account_id)

        now = self.clock()
        # An explicit occurred_at wins so limits and date-based reports agree.
        if data.occurred_at:
            txn_date = data.occurred_at.date()
        else:
            txn_date = data.date or now.date()
        txn = Transaction(
            user_id=self.user_id,
            account_id=data.account_id,
            type=data.type,
            status=data.status,
            amount_cents=data.amount_cents,
            date=txn_date,
            occurred_at=data.occurred_at or occurred_at_for(txn_date, now),
            description=data.description,
            notes=data.notes,
        )
        with atomic_ledger_write(self.session, "transaction_created"):
            self.session.add(txn)
            self.session.flush()
            BalanceMutator(self.session, self.user_id).apply_create(txn)
            record_activity(
                self.session,
                self.user_id,
                "transaction_created",
                f"Created {txn.type.value} transaction: {txn.description}",
            )
        self.session.refresh(txn)
        return txn

    def update(self, transaction_id: int, data: TransactionUpdateIn) -> Transaction:
        txn = self.get(transaction_id)
        before = ledger_effect(txn)

        changes = data.model_dump(exclude_unset=True)
        for key in ("account_id", "type", "amount_cents", "description", "date", "status"):
            if key in changes and changes[key] is None:
                del changes[key]
        if "account_id" in changes and changes["account_id"] != txn.account_id:
            AccountService(self.session, self.user_id).get(changes["account_id"])
        occurred_at = changes.pop("occurred_at", None)
        if occurred_at is not None:
            changes["occurred_at"] = occurred_at
            changes["date"] = occurred_at.date()
        elif "date" in changes:
            changes["occurred_at"] = occurred_at_for(changes["date"], self.clock())

        with atomic_ledger_write(self.session, "transaction_updated"):
            for key, value in changes.items():
                setattr(txn, key, value)
            self.session.flush()
            BalanceMutator(self.session, self.user_id).apply_update(before, txn)
            record_activity(
                self.session,
                self.user_id,
                "transaction_updated",
                f"Updated transaction: {txn.description}",
            )
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        description = txn.description
        with atomic_ledger_write(self.session, "transaction_deleted"):
            BalanceMutator(self.session, self.user_id).apply_delete(txn)
            self.session.delete(txn)
            record_activity(
                self.session,
                self.user_id,
                "transaction_deleted",
                f"Deleted transaction: {description}",
            )

    def stats(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> dict[str, int]:
        stmt = select(
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.income,
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ).label("income"),
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.expense,
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ).label("expenses"),
            func.coalesce(
                func.sum(case((Transaction.type == TransactionType.income, 1), else_=0)),
                0,
            ).label("income_count"),
            func.coalesce(
                func.sum(case((Transaction.type == TransactionType.expense, 1), else_=0)),
                0,
            ).label("expense_count"),
        ).where(Transaction.user_id == self.user_id)
        if start:
            stmt = stmt.where(Transaction.date >= start)
        if end:
            stmt = stmt.where(Transaction.date <= end)
        row = self.session.execute(stmt).one()
        income = int(row.income)
        expenses = int(row.expenses)
        return {
            "total_income_cents": income,
            "total_expenses_cents": expenses,
            "net_cash_flow_cents": income - expenses,
            "income_count": int(row.income_count),
            "expense_count": int(row.expense_count),
        }


class SavingsService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.clock = clock or local_now

    def _signed_amount(self):
        return case(
            (
                SavingsAllocation.type == AllocationType.deposit,
                SavingsAllocation.amount_cents,
            ),
            else_=-SavingsAllocation.amount_cents,
        )

    def total_savings(self) -> int:
        stmt = select(func.coalesce(func.sum(self._signed_amount()), 0)).where(
            SavingsAllocation.user_id == self.user_id
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def summary(self) -> dict[str, int]:
        rows = self.session.execute(
            select(
                SavingsAllocation.type,
                func.coalesce(func.sum(SavingsAllocation.amount_cents), 0).label(
                    "total"
                ),
                func.count(SavingsAllocation.id).label("count"),
            )
            .where(SavingsAllocation.user_id == self.user_id)
            .group_by(SavingsAllocation.type)
        ).all()
        by_type = {row.type: (int(row.total), int(row.count)) for row in rows}
        deposits, deposit_count = by_type.get(AllocationType.deposit, (0, 0))
        withdrawals, withdrawal_count = by_type.get(AllocationType.withdrawal, (0, 0))
        return {
            "total_savings_cents": deposits - withdrawals,
            "deposits_cents": deposits,
            "withdrawals_cents": withdrawals,
            "deposit_count": deposit_count,
            "withdrawal_count": withdrawal_count,
        }

    def get(self, allocation_id: int) -> SavingsAllocation:
        stmt = (
            select(SavingsAllocation)
            .options(joinedload(SavingsAllocation.account))
            .where(
                SavingsAllocation.user_id == self.user_id,
                SavingsAllocation.id == allocation_id,
            )
        )
        allocation = self.session.scalar(stmt)
        if not allocation:
            raise EntityNotFound("Savings allocation not found")
        return allocation

    def list(self, filters: LedgerFilters, page: int = 1, limit: int = 20) -> Page:
        stmt = (
            select(SavingsAllocation)
            .options(joinedload(SavingsAllocation.account))
            .where(SavingsAllocation.user_id == self.user_id)
            .order_by(SavingsAllocation.date.desc(), SavingsAllocation.created_at.desc())
        )
        if filters.type:
            try:
                allocation_type = AllocationType(filters.type)
            except ValueError as exc:
                raise LedgerValidationError(
                    "Allocation type must be deposit or withdrawal"
                ) from exc
            stmt = stmt.where(SavingsAllocation.type == allocation_type)
        if filters.account_id:
            stmt = stmt.where(SavingsAllocation.account_id == filters.account_id)
        if filters.start:
            stmt = stmt.where(SavingsAllocation.date >= filters.start)
        if filters.end:
            stmt = stmt.where(SavingsAllocation.date <= filters.end)
        return _paginate(self.session, stmt, page, limit)

    def _lock_account(self, account_id: int) -> Account:
        account = self.session.scalar(
            select(Account)
            .where(
                Account.id == account_id,
                Account.user_id == self.user_id,
                Account.is_active.is_(True),
            )
            .with_for_update()
        )
        if not account:
            raise EntityNotFound("Account not found")
        return account

    def create(self, data: SavingsAllocationIn) -> SavingsAllocation:
        if data.amount_cents <= 0:
            raise LedgerValidationError("Amount must be greater than 0")

        now = self.clock()
        entry_date = data.date or now.date()
        allocation = SavingsAllocation(
            user_id=self.user_id,
            account_id=data.account_id,
            type=data.type,
            amount_cents=data.amount_cents,
            description=data.description,
            date=entry_date,
            occurred_at=occurred_at_for(entry_date, now),
        )
        with atomic_ledger_write(self.session, "savings_allocation_created"):
            self._lock_account(data.account_id)
            minimum_balance = None
            if data.type == AllocationType.deposit:
                minimum_balance = data.amount_cents
            else:
                current = self.total_savings()
                if current < data.amount_cents:
                    raise LedgerValidationError(
                        f"Insufficient savings. Current savings is {format_cents(current)}"
                    )
            self.session.add(allocation)
            self.session.flush()
            BalanceMutator(self.session, self.user_id).apply_create(
                allocation, minimum_balance_cents=minimum_balance
            )
            verb = "Deposited" if data.type == AllocationType.deposit else "Withdrew"
            direction = "to" if data.type == AllocationType.deposit else "from"
            record_activity(
                self.session,
                self.user_id,
                "savings_allocation_created",
                f"{verb} {format_cents(data.amount_cents)} {direction} savings",
            )
        self.session.refresh(allocation)
        return allocation

    def delete(self, allocation_id: int) -> None:
        allocation = self.get(allocation_id)
        summary = f"{allocation.type.value}: {format_cents(allocation.amount_cents)}"
        with atomic_ledger_write(self.session, "savings_allocation_deleted"):
            BalanceMutator(self.session, self.user_id).apply_delete(allocation)
            self.session.delete(allocation)
            record_activity(
                self.session,
                self.user_id,
                "savings_allocation_deleted",
                f"Deleted savings {summary}",
            )


def limit_snapshot(limit: SpendingLimit) -> LimitSnapshot:
    return LimitSnapshot(
        type=limit.type,
        amount_cents=int(limit.amount_cents),
        current_spending_cents=int(limit.current_spending_cents),
        last_reset=limit.last_reset,
    )


class SpendingLimitService:
    """Lazily reset, fully recomputed Daily/Weekly/Monthly spending limits.

    Windows are never advanced by a timer. Every read goes through
    ``check_and_reset`` first and then re-sums completed expenses since
    ``last_reset``, so edits and deletes of older transactions are always
    reflected and repeated or concurrent refreshes converge on the same value.
    """

    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.clock = clock or local_now
        self.near_limit_ratio = get_settings().near_limit_ratio

    @staticmethod
    def parse_type(value: Union[str, SpendingLimitType]) -> SpendingLimitType:
        if isinstance(value, SpendingLimitType):
            return value
        parsed = parse_limit_type(value)
        if parsed is None:
            raise LedgerValidationError(
                "Invalid limit type. Must be Daily, Weekly, or Monthly."
            )
        return parsed

    def _load(self) -> list[SpendingLimit]:
        limits = self.session.scalars(
            select(SpendingLimit).where(SpendingLimit.user_id == self.user_id)
        ).all()
        return sorted(limits, key=lambda limit: LIMIT_ORDER.index(limit.type))

    def get(self, limit_type: Union[str, SpendingLimitType]) -> SpendingLimit:
        parsed = self.parse_type(limit_type)
        limit = self.session.scalar(
            select(SpendingLimit).where(
                SpendingLimit.user_id == self.user_id, SpendingLimit.type == parsed
            )
        )
        if not limit:
            raise EntityNotFound(f"{parsed.value} spending limit not found")
        return limit

    def _new_limit(
        self, limit_type: SpendingLimitType, amount_cents: int, now: datetime
    ) -> SpendingLimit:
        return SpendingLimit(
            user_id=self.user_id,
            type=limit_type,
            amount_cents=amount_cents,
            current_spending_cents=0,
            last_reset=window_anchor(limit_type, now),
        )

    def ensure_limits(self) -> list[SpendingLimit]:
        limits = self._load()
        present = {limit.type for limit in limits}
        missing = [t for t in LIMIT_ORDER if t not in present]
        if not missing:
            return limits

        now = self.clock()
        created = []
        for limit_type in missing:
            self.session.add(self._new_limit(limit_type, 0, now))
            try:
                self.session.commit()
            except IntegrityError:
                # Another request created it first; theirs is equivalent.
                self.session.rollback()
                logger.info(
                    f"spending_limit_create_race: user_id={self.user_id} "
                    f"type={limit_type.value}"
                )
                continue
            created.append(limit_type)
        if created:
            logger.info(
                f"spending_limits_initialized: user_id={self.user_id} "
                f"types={','.join(t.value for t in created)}"
            )
        return self._load()

    def check_and_reset(
        self, limit: SpendingLimit, now: Optional[datetime] = None
    ) -> bool:
        now = now or self.clock()
        if not window_expired(limit.type, limit.last_reset, now):
            return False
        anchor = window_anchor(limit.type, now)
        # Compare-and-set on last_reset so racing resets apply at most once.
        result = self.session.execute(
            update(SpendingLimit)
            .where(
                SpendingLimit.id == limit.id,
                SpendingLimit.last_reset == limit.last_reset,
            )
            .values(last_reset=anchor, current_spending_cents=0)
            .execution_options(synchronize_session=False)
        )
        self.session.refresh(limit)
        performed = result.rowcount == 1
        if performed:
            logger.info(
                f"spending_limit_reset: user_id={self.user_id} "
                f"type={limit.type.value} last_reset={anchor.isoformat()}"
            )
        return performed

    def spent_since(self, start: datetime, end: datetime) -> int:
        stmt = select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
            Transaction.user_id == self.user_id,
            Transaction.type == TransactionType.expense,
            Transaction.status == TransactionStatus.completed,
            Transaction.occurred_at >= start,
            Transaction.occurred_at <= end,
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def recompute(
        self, limit: SpendingLimit, now: Optional[datetime] = None
    ) -> SpendingLimit:
        now = now or self.clock()
        self.check_and_reset(limit, now)
        total = self.spent_since(limit.last_reset, now)
        if limit.current_spending_cents != total:
            limit.current_spending_cents = total
        return limit

    def refresh_all(self) -> list[SpendingLimit]:
        limits = self.ensure_limits()
        now = self.clock()
        for limit in limits:
            self.recompute(limit, now)
        self.session.commit()
        return limits

    def list_limits(self) -> list[SpendingLimit]:
        return self.refresh_all()

    def status(self) -> dict[str, object]:
        limits = self.refresh_all()
        statuses = [
            evaluate(limit_snapshot(limit), ratio=self.near_limit_ratio)
            for limit in limits
        ]
        return summarize(statuses)

    def update_amount(
        self, limit_type: Union[str, SpendingLimitType], amount_cents: Optional[int]
    ) -> tuple[SpendingLimit, bool]:
        parsed = self.parse_type(limit_type)
        if amount_cents is None or amount_cents < 0:
            raise LedgerValidationError("Amount must be a non-negative number.")

        limit = self.session.scalar(
            select(SpendingLimit).where(
                SpendingLimit.user_id == self.user_id, SpendingLimit.type == parsed
            )
        )
        created = limit is None
        if created:
            limit = self._new_limit(parsed, amount_cents, self.clock())
            self.session.add(limit)
        else:
            limit.amount_cents = amount_cents
        self.session.commit()
        self.session.refresh(limit)
        logger.info(
            f"spending_limit_amount: user_id={self.user_id} type={parsed.value} "
            f"amount={amount_cents} created={created}"
        )
        return limit, created

    def reset(self, limit_type: Union[str, SpendingLimitType, None] = None) -> int:
        """Start a fresh window at ``now`` for one limit type, or all of them.

        Unlike lazy resets, Monthly is not pulled back to the month start here:
        a manual reset is meant to forget the spending booked so far, and a
        month-start anchor would re-sum it on the next refresh. The window
        still closes at the next calendar-month boundary.
        """
        parsed = self.parse_type(limit_type) if limit_type else None
        now = self.clock()
        limits = [
            limit for limit in self._load() if parsed is None or limit.type == parsed
        ]
        for limit in limits:
            limit.current_spending_cents = 0
            limit.last_reset = now
        self.session.commit()
        logger.info(
            f"spending_limit_manual_reset: user_id={self.user_id} "
            f"type={parsed.value if parsed else 'all'} rows={len(limits)}"
        )
        return len(limits)

    def check(
        self,
        amount_cents: int,
        transaction_type: TransactionType = TransactionType.expense,
    ) -> dict[str, object]:
        """Advisory pre-check for a proposed expense. Never writes."""
        if transaction_type != TransactionType.expense:
            return {
                "can_proceed": True,
                "violations": [],
                "message": "Transaction type does not affect spending limits.",
            }
        if amount_cents is None or amount_cents <= 0:
            raise LedgerValidationError("Invalid transaction amount.")

        now = self.clock()
        snapshots = []
        for limit in self._load():
            start = limit.last_reset
            if window_expired(limit.type, limit.last_reset, now):
                start = window_anchor(limit.type, now)
            # Summed from the ledger; the stored total may predate recent writes.
            snapshots.append(
                LimitSnapshot(
                    type=limit.type,
                    amount_cents=int(limit.amount_cents),
                    current_spending_cents=self.spent_since(start, now),
                    last_reset=start,
                )
            )

        violations = check_would_exceed(snapshots, amount_cents)
        can_proceed = not violations
        if can_proceed:
            message = "Transaction within all spending limits."
        else:
            message = f"Transaction would exceed {len(violations)} spending limit(s)."
        return {
            "can_proceed": can_proceed,
            "violations": [v.as_dict() for v in violations],
            "message": message,
        }

    def trends(self, period: Optional[str] = None) -> dict[str, object]:
        window = resolve_trend_period(period, now=self.clock())
        stmt = (
            select(
                Transaction.date,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.status == TransactionStatus.completed,
                Transaction.occurred_at >= window.start,
                Transaction.occurred_at <= window.end,
            )
            .group_by(Transaction.date)
            .order_by(Transaction.date.asc())
        )
        return {
            "period": window.slug,
            "trends": [
                {"date": row.date.isoformat(), "total_cents": int(row.total)}
                for row in self.session.execute(stmt)
            ],
        }


def refresh_limits_quietly(
    user_id: int, factory: Optional[sessionmaker] = None
) -> None:
    """Opportunistic per-request refresh; failures are logged, never raised."""
    try:
        with session_scope(factory) as session:
            SpendingLimitService(session, user_id).refresh_all()
    except Exception:
        logger.exception(f"spending_limit_background_check_failed: user_id={user_id}")

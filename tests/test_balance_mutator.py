import logging
from datetime import datetime

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from database import Base
from models import (
    Account,
    AccountKind,
    ActivityLog,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from schemas import AccountIn, TransactionIn, TransactionUpdateIn
from services import (
    AccountService,
    EntityNotFound,
    LedgerFilters,
    LedgerConsistencyError,
    LedgerValidationError,
    TransactionService,
    atomic_ledger_write,
)

NOW = datetime(2025, 3, 14, 12, 0)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def open_account(session, balance_cents: int, name: str = "Checking") -> Account:
    return AccountService(session).create(
        AccountIn(name=name, kind=AccountKind.bank, opening_balance_cents=balance_cents)
    )


def balance_of(session, account_id: int) -> int:
    return session.scalar(select(Account.balance_cents).where(Account.id == account_id))


def entry(account_id: int, amount_cents: int, **extra) -> TransactionIn:
    payload = {
        "account_id": account_id,
        "type": TransactionType.expense,
        "amount_cents": amount_cents,
        "description": "Groceries",
        "date": NOW.date(),
    }
    payload.update(extra)
    return TransactionIn(**payload)


def test_expense_create_edit_delete_scenario() -> None:
    session = make_session()
    account = open_account(session, 100_000)
    txns = TransactionService(session, clock=lambda: NOW)

    txn = txns.create(entry(account.id, 30_000))
    assert balance_of(session, account.id) == 70_000

    txns.update(txn.id, TransactionUpdateIn(amount_cents=50_000))
    assert balance_of(session, account.id) == 50_000

    txns.delete(txn.id)
    assert balance_of(session, account.id) == 100_000
    with pytest.raises(EntityNotFound):
        txns.get(txn.id)


def test_editing_amount_back_and_forth_leaves_balance_unchanged() -> None:
    session = make_session()
    account = open_account(session, 25_000)
    txns = TransactionService(session, clock=lambda: NOW)
    txn = txns.create(entry(account.id, 4_000))
    before = balance_of(session, account.id)

    txns.update(txn.id, TransactionUpdateIn(amount_cents=9_999))
    txns.update(txn.id, TransactionUpdateIn(amount_cents=4_000))

    assert balance_of(session, account.id) == before


def test_balance_equals_opening_plus_final_deltas() -> None:
    session = make_session()
    account = open_account(session, 10_000)
    txns = TransactionService(session, clock=lambda: NOW)

    salary = txns.create(
        entry(account.id, 200_000, type=TransactionType.income, description="Salary")
    )
    rent = txns.create(entry(account.id, 80_000, description="Rent"))
    coffee = txns.create(entry(account.id, 450, description="Coffee"))
    refund = txns.create(entry(account.id, 1_500, description="Refund"))

    txns.update(rent.id, TransactionUpdateIn(amount_cents=85_000))
    txns.update(refund.id, TransactionUpdateIn(type=TransactionType.income))
    txns.update(coffee.id, TransactionUpdateIn(amount_cents=500))
    txns.delete(coffee.id)
    txns.update(salary.id, TransactionUpdateIn(amount_cents=210_000))

    assert balance_of(session, account.id) == 10_000 + 210_000 - 85_000 + 1_500


def test_description_and_date_edits_do_not_touch_balance(caplog) -> None:
    session = make_session()
    account = open_account(session, 50_000)
    txns = TransactionService(session, clock=lambda: NOW)
    txn = txns.create(entry(account.id, 2_000))

    with caplog.at_level(logging.INFO, logger="services"):
        updated = txns.update(
            txn.id,
            TransactionUpdateIn(
                description="Farmers market", date=datetime(2025, 3, 10).date()
            ),
        )

    assert updated.description == "Farmers market"
    assert updated.occurred_at == datetime(2025, 3, 10, 0, 0)
    assert balance_of(session, account.id) == 48_000
    assert not any("balance_delta" in r.getMessage() for r in caplog.records)


def test_moving_transaction_between_accounts_reverses_and_reapplies() -> None:
    session = make_session()
    checking = open_account(session, 10_000, name="Checking")
    wallet = open_account(session, 5_000, name="Wallet")
    txns = TransactionService(session, clock=lambda: NOW)
    txn = txns.create(entry(checking.id, 3_000))

    txns.update(txn.id, TransactionUpdateIn(account_id=wallet.id, amount_cents=1_000))

    assert balance_of(session, checking.id) == 10_000
    assert balance_of(session, wallet.id) == 4_000


def test_pending_transactions_apply_only_once_completed() -> None:
    session = make_session()
    account = open_account(session, 10_000)
    txns = TransactionService(session, clock=lambda: NOW)

    txn = txns.create(entry(account.id, 2_500, status=TransactionStatus.pending))
    assert balance_of(session, account.id) == 10_000

    txns.update(txn.id, TransactionUpdateIn(status=TransactionStatus.completed))
    assert balance_of(session, account.id) == 7_500

    txns.delete(txn.id)
    assert balance_of(session, account.id) == 10_000


def test_expenses_may_overdraw_the_account() -> None:
    session = make_session()
    account = open_account(session, 1_000)
    TransactionService(session, clock=lambda: NOW).create(entry(account.id, 4_000))
    assert balance_of(session, account.id) == -3_000


def test_inactive_account_rejects_writes_without_side_effects() -> None:
    session = make_session()
    account = open_account(session, 10_000)
    txns = TransactionService(session, clock=lambda: NOW)
    txn = txns.create(entry(account.id, 1_000))

    AccountService(session).deactivate(account.id)

    with pytest.raises(EntityNotFound):
        txns.create(entry(account.id, 2_000))
    with pytest.raises(EntityNotFound):
        txns.delete(txn.id)

    count = session.scalar(select(func.count(Transaction.id)))
    assert count == 1
    assert balance_of(session, account.id) == 9_000


def test_foreign_account_is_not_found() -> None:
    session = make_session()
    account = open_account(session, 10_000)
    with pytest.raises(EntityNotFound):
        TransactionService(session, user_id=2, clock=lambda: NOW).create(
            entry(account.id, 500)
        )
    assert balance_of(session, account.id) == 10_000


def test_ledger_writes_are_logged_as_activity() -> None:
    session = make_session()
    account = open_account(session, 10_000)
    txns = TransactionService(session, clock=lambda: NOW)
    txn = txns.create(entry(account.id, 1_000))
    txns.update(txn.id, TransactionUpdateIn(amount_cents=1_200))
    txns.delete(txn.id)

    actions = session.scalars(
        select(ActivityLog.action).order_by(ActivityLog.id.asc())
    ).all()
    assert actions == [
        "account_created",
        "transaction_created",
        "transaction_updated",
        "transaction_deleted",
    ]


def test_transaction_stats_and_filters() -> None:
    session = make_session()
    account = open_account(session, 0)
    txns = TransactionService(session, clock=lambda: NOW)
    txns.create(entry(account.id, 300_000, type=TransactionType.income))
    txns.create(entry(account.id, 12_000))
    txns.create(entry(account.id, 8_000))

    stats = txns.stats()
    assert stats["total_income_cents"] == 300_000
    assert stats["total_expenses_cents"] == 20_000
    assert stats["net_cash_flow_cents"] == 280_000
    assert stats["expense_count"] == 2

    page = txns.list(LedgerFilters(type="expense"), page=1, limit=1)
    assert page.total == 2
    assert page.total_pages == 2
    assert len(page.items) == 1
    with pytest.raises(LedgerValidationError):
        txns.list(LedgerFilters(type="transfer"))


class _BrokenSession:
    def __init__(self, rollback_fails: bool) -> None:
        self.rollback_fails = rollback_fails

    def commit(self) -> None:
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    def rollback(self) -> None:
        if self.rollback_fails:
            raise OperationalError("ROLLBACK", {}, Exception("disk I/O error"))


def test_failed_commit_is_rolled_back_and_reraised() -> None:
    with pytest.raises(OperationalError):
        with atomic_ledger_write(_BrokenSession(rollback_fails=False), "test_write"):
            pass


def test_failed_rollback_is_a_consistency_error() -> None:
    with pytest.raises(LedgerConsistencyError):
        with atomic_ledger_write(_BrokenSession(rollback_fails=True), "test_write"):
            pass


def test_occurred_at_decides_the_booking_date() -> None:
    session = make_session()
    account = open_account(session, 10_000)
    txns = TransactionService(session, clock=lambda: NOW)

    txn = txns.create(
        entry(
            account.id,
            1_000,
            date=datetime(2025, 2, 1).date(),
            occurred_at=datetime(2025, 3, 14, 9, 30),
        )
    )
    assert txn.date == datetime(2025, 3, 14).date()
    assert txn.occurred_at == datetime(2025, 3, 14, 9, 30)

    updated = txns.update(
        txn.id,
        TransactionUpdateIn(
            date=datetime(2025, 3, 1).date(), occurred_at=datetime(2025, 2, 20, 18, 0)
        ),
    )
    assert updated.date == datetime(2025, 2, 20).date()
    assert updated.occurred_at == datetime(2025, 2, 20, 18, 0)

import datetime as dt
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class AccountKind(str, Enum):
    cash = "Cash"
    bank = "Bank"
    e_wallet = "E-Wallet"


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class TransactionStatus(str, Enum):
    completed = "completed"
    pending = "pending"


class AllocationType(str, Enum):
    deposit = "deposit"
    withdrawal = "withdrawal"


class SpendingLimitType(str, Enum):
    daily = "Daily"
    weekly = "Weekly"
    monthly = "Monthly"


ACCOUNT_KIND_ENUM = SAEnum(
    AccountKind, name="accountkind", values_callable=_values
)
SPENDING_LIMIT_TYPE_ENUM = SAEnum(
    SpendingLimitType, name="spendinglimittype", values_callable=_values
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[AccountKind] = mapped_column(ACCOUNT_KIND_ENUM, nullable=False)
    account_number: Mapped[Optional[str]] = mapped_column(String(50))
    # Written only through BalanceMutator once the row exists.
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="account"
    )
    allocations: Mapped[list["SavingsAllocation"]] = relationship(
        "SavingsAllocation", back_populates="account"
    )

    __table_args__ = (Index("ix_accounts_user_active", "user_id", "is_active"),)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    status: Mapped[TransactionStatus] = mapped_column(
        SAEnum(TransactionStatus), nullable=False, default=TransactionStatus.completed
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    account: Mapped["Account"] = relationship("Account", back_populates="transactions")

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_account", "user_id", "account_id"),
        Index(
            "ix_transactions_user_type_status_at",
            "user_id",
            "type",
            "status",
            "occurred_at",
        ),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )


class SavingsAllocation(Base, TimestampMixin):
    __tablename__ = "savings_allocations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    type: Mapped[AllocationType] = mapped_column(SAEnum(AllocationType), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(200))
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    account: Mapped["Account"] = relationship("Account", back_populates="allocations")

    __table_args__ = (
        Index("ix_savings_user_date", "user_id", "date"),
        CheckConstraint("amount_cents > 0", name="ck_savings_amount_positive"),
    )


class SpendingLimit(Base, TimestampMixin):
    __tablename__ = "spending_limits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    type: Mapped[SpendingLimitType] = mapped_column(
        SPENDING_LIMIT_TYPE_ENUM, nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_spending_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    last_reset: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "type", name="uq_spending_limit_user_type"),
        Index("ix_spending_limits_last_reset", "last_reset"),
        CheckConstraint("amount_cents >= 0", name="ck_spending_limit_amount_positive"),
        CheckConstraint(
            "current_spending_cents >= 0", name="ck_spending_limit_current_positive"
        ),
    )


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    __table_args__ = (Index("ix_activity_logs_user_at", "user_id", "created_at"),)

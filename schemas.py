import datetime as dt
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import AccountKind, AllocationType, TransactionStatus, TransactionType


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    kind: AccountKind
    account_number: Optional[str] = Field(default=None, max_length=50)
    opening_balance_cents: int = 0


class TransactionIn(BaseModel):
    account_id: int
    type: TransactionType
    amount_cents: int = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=200)
    date: Optional[dt.date] = None
    occurred_at: Optional[datetime] = None
    status: TransactionStatus = TransactionStatus.completed
    notes: Optional[str] = None


class TransactionUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_id: Optional[int] = None
    type: Optional[TransactionType] = None
    amount_cents: Optional[int] = Field(default=None, gt=0)
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    date: Optional[dt.date] = None
    occurred_at: Optional[datetime] = None
    status: Optional[TransactionStatus] = None
    notes: Optional[str] = None


class SavingsAllocationIn(BaseModel):
    account_id: int
    type: AllocationType
    amount_cents: int = Field(..., gt=0)
    description: Optional[str] = Field(default=None, max_length=200)
    date: Optional[dt.date] = None


class SpendingLimitAmountIn(BaseModel):
    amount_cents: int


class SpendingLimitResetIn(BaseModel):
    type: Optional[str] = None


class SpendingCheckIn(BaseModel):
    amount_cents: int
    type: TransactionType = TransactionType.expense

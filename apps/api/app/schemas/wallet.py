from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class WalletBalanceRead(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str
    balance: str
    credits: int


class TransactionRead(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: int
    type: str
    amount: str
    credits_added: str
    balance_after: str
    description: str | None
    reference_id: str | None
    created_at: datetime


class TransactionListRead(BaseModel):
    model_config = ConfigDict(extra="forbid")

    transactions: list[TransactionRead]


class TopUpCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    payment_method: str | None = Field(default=None, max_length=64)


class TopUpRead(BaseModel):
    model_config = ConfigDict(extra="forbid")

    new_balance: str
    credits_added: str
    transaction_amount: str
    transaction_id: int | None


class TopUpIntentCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)


class TopUpIntentRead(BaseModel):
    model_config = ConfigDict(extra="forbid")

    client_secret: str
    amount: str
    credits_to_add: str

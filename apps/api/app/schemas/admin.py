from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from apps.api.app.schemas.wallet import TransactionRead


class AdminLedgerCheckRead(BaseModel):
    model_config = ConfigDict(extra="forbid")

    derived_balance: str
    transaction_count: int
    consistent: bool
    first_mismatch_transaction_id: int | None


class AdminWalletRead(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str
    balance: str
    recent_transactions: list[TransactionRead]
    ledger: AdminLedgerCheckRead


class AdminGrantRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Decimal = Field(gt=0, le=Decimal("100000"), decimal_places=2)
    note: str | None = Field(default=None, max_length=200)


class AdminGrantResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str
    new_balance: str
    transaction_id: int | None


class AdminImageFailRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(min_length=1, max_length=256)


class AdminImageFailResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    image_id: str
    status: str
    refunded_amount: str
    new_balance: str | None
    already_failed: bool
    processed_at: datetime


class AdminReconcileRead(BaseModel):
    model_config = ConfigDict(extra="forbid")

    job_id: str | None
    status: str

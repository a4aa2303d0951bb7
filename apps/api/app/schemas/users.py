from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class UserProfileRead(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    email: str
    name: str | None
    picture: str | None
    wallet_balance: str
    auto_recharge_enabled: bool
    auto_recharge_threshold: str
    auto_recharge_amount: str


class UserProfileUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, max_length=200)
    auto_recharge_enabled: bool = False
    auto_recharge_threshold: Decimal | None = Field(default=None, gt=0, max_digits=14, decimal_places=2)
    auto_recharge_amount: Decimal | None = Field(default=None, gt=0, max_digits=14, decimal_places=2)

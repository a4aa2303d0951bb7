from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from apps.api.app.db.models import User
from apps.api.app.services.billing.errors import storage_guard

DEFAULT_AUTO_RECHARGE_THRESHOLD = Decimal("100")
DEFAULT_AUTO_RECHARGE_AMOUNT = Decimal("500")


@dataclass(frozen=True)
class ProfileUpdate:
    name: str | None
    auto_recharge_enabled: bool
    auto_recharge_threshold: Decimal | None = None
    auto_recharge_amount: Decimal | None = None


async def get_or_create_user(
    db: AsyncSession,
    *,
    user_id: str,
    email: str,
    name: str | None = None,
    picture: str | None = None,
) -> User:
    async with storage_guard("get_or_create_user"):
        user = await db.get(User, user_id)
        if user is not None:
            return user

        user = User(
            id=user_id,
            email=email or f"{user_id}@users.invalid",
            name=name,
            picture=picture,
            wallet_balance=Decimal("0"),
            auto_recharge_enabled=False,
            auto_recharge_threshold=DEFAULT_AUTO_RECHARGE_THRESHOLD,
            auto_recharge_amount=DEFAULT_AUTO_RECHARGE_AMOUNT,
        )
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            # Concurrent first request for the same identity already inserted the row.
            await db.rollback()
            existing = await db.get(User, user_id)
            if existing is None:
                raise
            return existing
        await db.refresh(user)
        return user


async def update_profile(db: AsyncSession, user: User, update: ProfileUpdate) -> User:
    user.name = update.name
    user.auto_recharge_enabled = update.auto_recharge_enabled
    user.auto_recharge_threshold = (
        update.auto_recharge_threshold
        if update.auto_recharge_threshold is not None
        else DEFAULT_AUTO_RECHARGE_THRESHOLD
    )
    user.auto_recharge_amount = (
        update.auto_recharge_amount
        if update.auto_recharge_amount is not None
        else DEFAULT_AUTO_RECHARGE_AMOUNT
    )
    user.updated_at = datetime.now(timezone.utc)
    async with storage_guard("update_profile"):
        await db.commit()
        await db.refresh(user)
    return user

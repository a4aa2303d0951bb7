from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from apps.api.app.db.models import User
from apps.api.app.db.session import get_db
from apps.api.app.dependencies.auth import get_current_user
from apps.api.app.schemas.users import UserProfileRead, UserProfileUpdate
from apps.api.app.services.users import ProfileUpdate, get_or_create_user, update_profile
from apps.api.app.utils.decimal_format import format_decimal

router = APIRouter(prefix="/users", tags=["users"])


async def get_current_account(
    current_user: dict[str, str] = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> User:
    return await get_or_create_user(
        db,
        user_id=current_user["user_id"],
        email=current_user.get("email") or "",
        name=current_user.get("name") or None,
        picture=current_user.get("picture") or None,
    )


def _profile_read(user: User) -> UserProfileRead:
    return UserProfileRead(
        id=user.id,
        email=user.email,
        name=user.name,
        picture=user.picture,
        wallet_balance=format_decimal(user.wallet_balance),
        auto_recharge_enabled=bool(user.auto_recharge_enabled),
        auto_recharge_threshold=format_decimal(user.auto_recharge_threshold),
        auto_recharge_amount=format_decimal(user.auto_recharge_amount),
    )


@router.get("/me", response_model=UserProfileRead)
async def get_me(user: User = Depends(get_current_account)) -> UserProfileRead:
    return _profile_read(user)


@router.put("/me", response_model=UserProfileRead)
async def put_me(
    payload: UserProfileUpdate,
    user: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> UserProfileRead:
    updated = await update_profile(
        db,
        user,
        ProfileUpdate(
            name=payload.name,
            auto_recharge_enabled=payload.auto_recharge_enabled,
            auto_recharge_threshold=payload.auto_recharge_threshold,
            auto_recharge_amount=payload.auto_recharge_amount,
        ),
    )
    return _profile_read(updated)

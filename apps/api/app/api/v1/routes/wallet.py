from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from apps.api.app.api.v1.routes.users import get_current_account
from apps.api.app.core.config import Settings, get_settings
from apps.api.app.db.models import User, WalletTransaction
from apps.api.app.db.session import get_db
from apps.api.app.dependencies.services import get_wallet_service
from apps.api.app.schemas.wallet import (
    TopUpCreate,
    TopUpIntentCreate,
    TopUpIntentRead,
    TopUpRead,
    TransactionListRead,
    TransactionRead,
    WalletBalanceRead,
)
from apps.api.app.services.billing.errors import raise_for_billing_error
from apps.api.app.services.billing.pricing import credits_for_amount
from apps.api.app.services.billing.stripe_client import create_payment_intent
from apps.api.app.services.billing.wallet import WalletService
from apps.api.app.utils.decimal_format import format_decimal

router = APIRouter(prefix="/wallet", tags=["wallet"])


def transaction_read(row: WalletTransaction) -> TransactionRead:
    return TransactionRead(
        id=row.id,
        type=row.type,
        amount=format_decimal(row.amount),
        credits_added=format_decimal(row.credits_added),
        balance_after=format_decimal(row.balance_after),
        description=row.description,
        reference_id=row.reference_id,
        created_at=row.created_at,
    )


def _check_top_up_amount(amount: Decimal, settings: Settings) -> None:
    if amount < settings.top_up_min_amount or amount > settings.top_up_max_amount:
        raise HTTPException(
            status_code=422,
            detail=(
                f"amount must be between {format_decimal(settings.top_up_min_amount)} "
                f"and {format_decimal(settings.top_up_max_amount)}"
            ),
        )


@router.get("/balance", response_model=WalletBalanceRead)
async def get_balance(
    user: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    wallet_service: WalletService = Depends(get_wallet_service),
) -> WalletBalanceRead:
    balance = await wallet_service.get_balance(db, user.id)
    return WalletBalanceRead(
        user_id=user.id,
        balance=format_decimal(balance),
        credits=int(credits_for_amount(balance)),
    )


@router.get("/transactions", response_model=TransactionListRead)
async def get_transactions(
    limit: int = Query(default=20, ge=1, le=100),
    user: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    wallet_service: WalletService = Depends(get_wallet_service),
) -> TransactionListRead:
    rows = await wallet_service.get_transactions(db, user.id, limit=limit)
    return TransactionListRead(transactions=[transaction_read(row) for row in rows])


@router.post("/topup", response_model=TopUpRead)
async def direct_top_up(
    payload: TopUpCreate,
    user: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    wallet_service: WalletService = Depends(get_wallet_service),
) -> TopUpRead:
    if not settings.direct_topup_enabled:
        raise HTTPException(status_code=403, detail="Direct top-up is disabled; use /wallet/top-up-intent.")
    _check_top_up_amount(payload.amount, settings)

    credits = credits_for_amount(payload.amount)
    method = payload.payment_method or "manual"
    result = await wallet_service.add_credits(
        db,
        user.id,
        payload.amount,
        f"Wallet top-up - {format_decimal(credits)} credits via {method}",
        kind="topup",
        credits_added=credits,
    )
    if result.error is not None:
        raise_for_billing_error(result.error)
    return TopUpRead(
        new_balance=format_decimal(result.new_balance),
        credits_added=format_decimal(credits),
        transaction_amount=format_decimal(payload.amount),
        transaction_id=result.transaction_id,
    )


@router.post("/top-up-intent", response_model=TopUpIntentRead)
async def create_top_up_intent(
    payload: TopUpIntentCreate,
    user: User = Depends(get_current_account),
    settings: Settings = Depends(get_settings),
) -> TopUpIntentRead:
    if not settings.stripe_secret_key:
        raise HTTPException(status_code=503, detail="payment not configured")
    _check_top_up_amount(payload.amount, settings)

    credits = credits_for_amount(payload.amount)
    intent = await create_payment_intent(
        api_key=settings.stripe_secret_key,
        amount=payload.amount,
        metadata={
            "user_id": user.id,
            "amount": format_decimal(payload.amount),
            "credits": format_decimal(credits),
        },
    )
    client_secret = getattr(intent, "client_secret", None)
    if not isinstance(client_secret, str) or not client_secret:
        if isinstance(intent, dict):
            client_secret = intent.get("client_secret")
    if not isinstance(client_secret, str) or not client_secret:
        raise HTTPException(status_code=502, detail="payment intent creation failed")

    return TopUpIntentRead(
        client_secret=client_secret,
        amount=format_decimal(payload.amount),
        credits_to_add=format_decimal(credits),
    )

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from apps.api.app.core.config import Settings, get_settings
from apps.api.app.db.session import get_db
from apps.api.app.dependencies.services import get_wallet_service
from apps.api.app.services.billing.errors import raise_for_billing_error
from apps.api.app.services.billing.pricing import credits_for_amount
from apps.api.app.services.billing.stripe_client import (
    construct_webhook_event,
    event_type,
    extract_succeeded_top_up,
)
from apps.api.app.services.billing.wallet import WalletService
from apps.api.app.utils.decimal_format import format_decimal

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
_LOGGER = logging.getLogger(__name__)


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    wallet_service: WalletService = Depends(get_wallet_service),
) -> dict[str, str]:
    payload = await request.body()
    sig_header = request.headers.get("Stripe-Signature", "")

    if settings.stripe_webhook_secret:
        try:
            event = construct_webhook_event(
                payload=payload,
                sig_header=sig_header,
                secret=settings.stripe_webhook_secret,
            )
        except Exception as exc:
            raise HTTPException(status_code=400, detail="invalid stripe signature") from exc
    elif settings.is_production:
        raise HTTPException(status_code=503, detail="stripe webhook secret is not configured")
    else:
        _LOGGER.warning("stripe webhook secret is not configured; signature verification skipped.")
        try:
            event = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise HTTPException(status_code=422, detail="malformed webhook payload") from exc

    if event_type(event) != "payment_intent.succeeded":
        return {"status": "ignored"}

    try:
        top_up = extract_succeeded_top_up(event)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    credits = credits_for_amount(top_up.amount)
    result = await wallet_service.add_credits(
        db,
        top_up.user_id,
        top_up.amount,
        f"Wallet top-up - {format_decimal(credits)} credits via stripe",
        kind="topup",
        reference_id=top_up.payment_intent_id,
        credits_added=credits,
    )
    if result.error is not None:
        raise_for_billing_error(result.error)
    if result.duplicate:
        return {"status": "already_processed"}
    return {"status": "ok"}

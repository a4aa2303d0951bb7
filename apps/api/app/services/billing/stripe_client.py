from __future__ import annotations

import asyncio
import importlib
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

TOP_UP_CURRENCY = "inr"


@dataclass(frozen=True)
class SucceededTopUp:
    payment_intent_id: str
    user_id: str
    amount: Decimal


def _import_stripe() -> Any:
    try:
        return importlib.import_module("stripe")
    except ModuleNotFoundError as exc:
        raise RuntimeError("stripe SDK is not installed.") from exc


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


async def create_payment_intent(
    *,
    api_key: str,
    amount: Decimal,
    metadata: dict[str, str],
) -> Any:
    stripe = _import_stripe()
    stripe.api_key = api_key

    create_async = getattr(stripe.PaymentIntent, "create_async", None)
    if callable(create_async):
        return await create_async(
            amount=to_minor_units(amount),
            currency=TOP_UP_CURRENCY,
            metadata=metadata,
        )

    return await asyncio.to_thread(
        stripe.PaymentIntent.create,
        amount=to_minor_units(amount),
        currency=TOP_UP_CURRENCY,
        metadata=metadata,
    )


def construct_webhook_event(*, payload: bytes, sig_header: str, secret: str) -> Any:
    stripe = _import_stripe()
    return stripe.Webhook.construct_event(payload, sig_header, secret)


def event_type(event: Any) -> str | None:
    return event.get("type") if isinstance(event, dict) else getattr(event, "type", None)


def extract_succeeded_top_up(event: Any) -> SucceededTopUp:
    """Read the top-up fields from a ``payment_intent.succeeded`` event.

    Raises ValueError when the intent id, user id or amount is missing or malformed.
    """
    if isinstance(event, dict):
        obj = (event.get("data") or {}).get("object") or {}
    else:
        obj = getattr(getattr(event, "data", None), "object", None) or {}
    payment_intent_id = obj.get("id")
    metadata = obj.get("metadata") or {}
    user_id = metadata.get("user_id")
    amount_raw = metadata.get("amount")
    if not payment_intent_id or not user_id or amount_raw is None:
        raise ValueError("malformed webhook metadata")
    try:
        amount = Decimal(str(amount_raw))
    except InvalidOperation as exc:
        raise ValueError("malformed webhook metadata") from exc
    if amount <= 0:
        raise ValueError("malformed webhook metadata")
    return SucceededTopUp(payment_intent_id=str(payment_intent_id), user_id=str(user_id), amount=amount)

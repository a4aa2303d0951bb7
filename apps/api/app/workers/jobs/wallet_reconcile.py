from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select

from apps.api.app.db.models import User
from apps.api.app.db.session import get_session_factory
from apps.api.app.services.billing.wallet import WalletService
from apps.api.app.utils.decimal_format import format_decimal

_LOGGER = logging.getLogger(__name__)


async def wallet_reconcile(ctx: dict[str, Any], batch_size: int = 500) -> dict[str, Any]:
    """Replay every user's ledger and report wallets whose stored balance drifted."""
    session_factory = ctx.get("session_factory") or get_session_factory()
    wallet_service: WalletService = ctx.get("wallet_service") or WalletService()

    checked = 0
    mismatched: list[dict[str, Any]] = []
    async with session_factory() as db:
        last_user_id = ""
        while True:
            user_ids = list(
                (
                    await db.scalars(
                        select(User.id)
                        .where(User.id > last_user_id)
                        .order_by(User.id.asc())
                        .limit(batch_size)
                    )
                ).all()
            )
            if not user_ids:
                break
            for user_id in user_ids:
                replay = await wallet_service.replay_balance(db, user_id)
                checked += 1
                if not replay.consistent:
                    _LOGGER.warning(
                        "ledger drift user=%s stored=%s derived=%s first_mismatch_tx=%s",
                        user_id,
                        replay.stored_balance,
                        replay.derived_balance,
                        replay.first_mismatch_transaction_id,
                    )
                    mismatched.append(
                        {
                            "user_id": user_id,
                            "stored_balance": format_decimal(replay.stored_balance),
                            "derived_balance": format_decimal(replay.derived_balance),
                            "first_mismatch_transaction_id": replay.first_mismatch_transaction_id,
                        }
                    )
            last_user_id = user_ids[-1]

    _LOGGER.info("wallet reconcile checked=%s mismatched=%s", checked, len(mismatched))
    return {
        "status": "ok" if not mismatched else "drift",
        "checked": checked,
        "mismatched": mismatched,
        "processed_at": datetime.now(timezone.utc).isoformat(),
    }

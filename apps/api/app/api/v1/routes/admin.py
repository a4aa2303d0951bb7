from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from arq.connections import ArqRedis
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from apps.api.app.api.v1.routes.wallet import transaction_read
from apps.api.app.db.models import User
from apps.api.app.db.session import get_db
from apps.api.app.dependencies.arq import get_arq_redis
from apps.api.app.dependencies.auth import require_admin
from apps.api.app.dependencies.services import get_generation_service, get_wallet_service
from apps.api.app.schemas.admin import (
    AdminGrantRequest,
    AdminGrantResponse,
    AdminImageFailRequest,
    AdminImageFailResponse,
    AdminLedgerCheckRead,
    AdminReconcileRead,
    AdminWalletRead,
)
from apps.api.app.services.billing.errors import raise_for_billing_error, storage_guard
from apps.api.app.services.billing.wallet import WalletService
from apps.api.app.services.generation.flow import GenerationService
from apps.api.app.utils.decimal_format import format_decimal

router = APIRouter(prefix="/admin", tags=["admin"])


async def _require_user(db: AsyncSession, user_id: str) -> None:
    async with storage_guard("admin_load_user"):
        user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found.")


@router.get("/wallets/{user_id}", response_model=AdminWalletRead)
async def get_user_wallet(
    user_id: str,
    _: dict[str, str] = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    wallet_service: WalletService = Depends(get_wallet_service),
) -> AdminWalletRead:
    await _require_user(db, user_id)
    transactions = await wallet_service.get_transactions(db, user_id, limit=20)
    replay = await wallet_service.replay_balance(db, user_id)
    return AdminWalletRead(
        user_id=user_id,
        balance=format_decimal(replay.stored_balance),
        recent_transactions=[transaction_read(row) for row in transactions],
        ledger=AdminLedgerCheckRead(
            derived_balance=format_decimal(replay.derived_balance),
            transaction_count=replay.transaction_count,
            consistent=replay.consistent,
            first_mismatch_transaction_id=replay.first_mismatch_transaction_id,
        ),
    )


@router.post("/wallets/{user_id}/grant", response_model=AdminGrantResponse)
async def grant_user_credits(
    user_id: str,
    payload: AdminGrantRequest,
    current_user: dict[str, str] = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    wallet_service: WalletService = Depends(get_wallet_service),
) -> AdminGrantResponse:
    note = f": {payload.note}" if payload.note else ""
    result = await wallet_service.add_credits(
        db,
        user_id,
        payload.amount,
        f"Admin bonus by {current_user['user_id']}{note}",
        kind="bonus",
        reference_id=f"grant_{uuid4().hex}",
    )
    if result.error is not None:
        raise_for_billing_error(result.error)
    return AdminGrantResponse(
        user_id=user_id,
        new_balance=format_decimal(result.new_balance),
        transaction_id=result.transaction_id,
    )


@router.post("/images/{image_id}/fail", response_model=AdminImageFailResponse)
async def fail_image(
    image_id: str,
    payload: AdminImageFailRequest,
    _: dict[str, str] = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    generation_service: GenerationService = Depends(get_generation_service),
) -> AdminImageFailResponse:
    outcome = await generation_service.mark_failed(db, image_id=image_id, reason=payload.reason)
    if outcome.error is not None:
        raise_for_billing_error(outcome.error)
    return AdminImageFailResponse(
        image_id=outcome.image_id,
        status=outcome.status,
        refunded_amount=format_decimal(outcome.refunded_amount),
        new_balance=format_decimal(outcome.new_balance) if outcome.new_balance is not None else None,
        already_failed=outcome.already_failed,
        processed_at=datetime.now(timezone.utc),
    )


@router.post("/wallets/reconcile", response_model=AdminReconcileRead, status_code=202)
async def enqueue_wallet_reconcile(
    _: dict[str, str] = Depends(require_admin),
    arq_redis: ArqRedis = Depends(get_arq_redis),
) -> AdminReconcileRead:
    job = await arq_redis.enqueue_job("wallet_reconcile")
    if job is None:
        # arq returns None when a job with the same id is already queued.
        return AdminReconcileRead(job_id=None, status="already_queued")
    return AdminReconcileRead(job_id=job.job_id, status="queued")

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from apps.api.app.db.models import User, WalletTransaction
from apps.api.app.services.billing.errors import (
    BillingError,
    BillingErrorKind,
    StorageUnavailableError,
    insufficient_balance,
    invalid_request,
    storage_guard,
)
from apps.api.app.services.billing.pricing import credits_for_amount
from apps.api.app.utils.decimal_format import Amount, to_decimal

_LOGGER = logging.getLogger(__name__)

CREDIT_KINDS = ("topup", "bonus", "refund")


@dataclass(frozen=True)
class LedgerResult:
    success: bool
    new_balance: Decimal
    transaction_id: int | None
    error: BillingError | None
    duplicate: bool = False


@dataclass(frozen=True)
class LedgerReplay:
    user_id: str
    derived_balance: Decimal
    stored_balance: Decimal
    transaction_count: int
    first_mismatch_transaction_id: int | None

    @property
    def consistent(self) -> bool:
        return self.first_mismatch_transaction_id is None and self.derived_balance == self.stored_balance


def _non_negative(balance: Decimal | None) -> Decimal:
    if balance is None:
        return Decimal("0")
    balance = to_decimal(balance)
    return balance if balance > 0 else Decimal("0")


def _failed(error: BillingError, balance: Decimal = Decimal("0")) -> LedgerResult:
    return LedgerResult(success=False, new_balance=balance, transaction_id=None, error=error)


class WalletService:
    """Sole owner of balance mutation and the append-only wallet ledger.

    Mutations are serialized per user in two layers: an in-process
    ``asyncio.Lock`` keyed by user id (held from the balance update through
    commit) and a conditional ``UPDATE`` that never lets the stored balance
    drop below zero, which also holds across processes.

    ``stage_*`` methods do not commit and expect the caller to hold
    ``locked(user_id)`` until its own commit. ``deduct_credits`` and
    ``add_credits`` take the lock and commit themselves, so they must not be
    called while the same user's lock is already held.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_refs: dict[str, int] = {}

    @asynccontextmanager
    async def locked(self, user_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        self._lock_refs[user_id] = self._lock_refs.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_refs[user_id] - 1
            if remaining:
                self._lock_refs[user_id] = remaining
            else:
                del self._lock_refs[user_id]
                del self._locks[user_id]

    def active_lock_count(self) -> int:
        return len(self._locks)

    async def get_balance(self, db: AsyncSession, user_id: str) -> Decimal:
        async with storage_guard("get_balance"):
            balance = await db.scalar(select(User.wallet_balance).where(User.id == user_id))
        return _non_negative(balance)

    async def has_insufficient_balance(
        self, db: AsyncSession, user_id: str, required_amount: Amount
    ) -> bool:
        return await self.get_balance(db, user_id) < to_decimal(required_amount)

    async def get_transactions(self, db: AsyncSession, user_id: str, limit: int = 20) -> list[WalletTransaction]:
        async with storage_guard("get_transactions"):
            rows = await db.scalars(
                select(WalletTransaction)
                .where(WalletTransaction.user_id == user_id)
                .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
                .limit(max(limit, 0))
            )
            return list(rows.all())

    async def find_transaction(
        self, db: AsyncSession, *, user_id: str, kind: str, reference_id: str
    ) -> WalletTransaction | None:
        async with storage_guard("find_transaction"):
            return await db.scalar(
                select(WalletTransaction).where(
                    WalletTransaction.user_id == user_id,
                    WalletTransaction.type == kind,
                    WalletTransaction.reference_id == reference_id,
                )
            )

    async def stage_deduct(
        self,
        db: AsyncSession,
        user_id: str,
        amount: Amount,
        description: str,
        reference_id: str | None = None,
    ) -> LedgerResult:
        debit_amount = to_decimal(amount)
        if debit_amount <= 0:
            return _failed(invalid_request({"amount": "must be greater than zero"}))

        now = datetime.now(timezone.utc)
        async with storage_guard("stage_deduct"):
            result = await db.execute(
                update(User)
                .where(User.id == user_id, User.wallet_balance >= debit_amount)
                .values(wallet_balance=User.wallet_balance - debit_amount, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                current = _non_negative(
                    await db.scalar(select(User.wallet_balance).where(User.id == user_id))
                )
                return _failed(insufficient_balance(required=debit_amount, current=current), current)

            new_balance = to_decimal(await db.scalar(select(User.wallet_balance).where(User.id == user_id)))
            transaction = WalletTransaction(
                user_id=user_id,
                type="deduct",
                amount=-debit_amount,
                credits_added=Decimal("0"),
                balance_after=new_balance,
                description=description,
                reference_id=reference_id,
                created_at=now,
            )
            db.add(transaction)
            await db.flush()

        return LedgerResult(success=True, new_balance=new_balance, transaction_id=transaction.id, error=None)

    async def stage_credit(
        self,
        db: AsyncSession,
        user_id: str,
        amount: Amount,
        description: str,
        kind: str = "topup",
        reference_id: str | None = None,
        credits_added: Decimal | None = None,
    ) -> LedgerResult:
        if kind not in CREDIT_KINDS:
            raise ValueError(f"Unsupported credit kind: {kind}")
        credit_amount = to_decimal(amount)
        if credit_amount <= 0:
            return _failed(invalid_request({"amount": "must be greater than zero"}))

        if reference_id is not None:
            existing = await self.find_transaction(db, user_id=user_id, kind=kind, reference_id=reference_id)
            if existing is not None:
                return LedgerResult(
                    success=True,
                    new_balance=await self.get_balance(db, user_id),
                    transaction_id=existing.id,
                    error=None,
                    duplicate=True,
                )

        now = datetime.now(timezone.utc)
        async with storage_guard("stage_credit"):
            result = await db.execute(
                update(User)
                .where(User.id == user_id)
                .values(wallet_balance=User.wallet_balance + credit_amount, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return _failed(
                    BillingError(
                        kind=BillingErrorKind.ACCOUNT_NOT_FOUND,
                        message="Wallet account not found.",
                        details={"user_id": user_id},
                    )
                )

            new_balance = to_decimal(await db.scalar(select(User.wallet_balance).where(User.id == user_id)))
            transaction = WalletTransaction(
                user_id=user_id,
                type=kind,
                amount=credit_amount,
                credits_added=credits_for_amount(credit_amount) if credits_added is None else credits_added,
                balance_after=new_balance,
                description=description,
                reference_id=reference_id,
                created_at=now,
            )
            db.add(transaction)
            await db.flush()

        return LedgerResult(success=True, new_balance=new_balance, transaction_id=transaction.id, error=None)

    async def deduct_credits(
        self,
        db: AsyncSession,
        user_id: str,
        amount: Amount,
        description: str,
        reference_id: str | None = None,
    ) -> LedgerResult:
        async with self.locked(user_id):
            try:
                result = await self.stage_deduct(
                    db, user_id, amount, description, reference_id=reference_id
                )
                if not result.success:
                    await db.rollback()
                    return result
                async with storage_guard("commit_deduct"):
                    await db.commit()
            except StorageUnavailableError as exc:
                await db.rollback()
                return _failed(exc.to_error())

        _LOGGER.info(
            "wallet deduct user=%s amount=%s balance_after=%s tx=%s",
            user_id,
            amount,
            result.new_balance,
            result.transaction_id,
        )
        return result

    async def add_credits(
        self,
        db: AsyncSession,
        user_id: str,
        amount: Amount,
        description: str,
        kind: str = "topup",
        reference_id: str | None = None,
        credits_added: Decimal | None = None,
    ) -> LedgerResult:
        async with self.locked(user_id):
            try:
                result = await self.stage_credit(
                    db,
                    user_id,
                    amount,
                    description,
                    kind=kind,
                    reference_id=reference_id,
                    credits_added=credits_added,
                )
                if not result.success or result.duplicate:
                    await db.rollback()
                    return result
                async with storage_guard("commit_credit"):
                    await db.commit()
            except IntegrityError:
                # Another process credited the same reference first.
                await db.rollback()
                existing = await self.find_transaction(
                    db, user_id=user_id, kind=kind, reference_id=reference_id or ""
                )
                if existing is None:
                    raise
                return LedgerResult(
                    success=True,
                    new_balance=await self.get_balance(db, user_id),
                    transaction_id=existing.id,
                    error=None,
                    duplicate=True,
                )
            except StorageUnavailableError as exc:
                await db.rollback()
                return _failed(exc.to_error())

        _LOGGER.info(
            "wallet %s user=%s amount=%s balance_after=%s tx=%s",
            kind,
            user_id,
            amount,
            result.new_balance,
            result.transaction_id,
        )
        return result

    async def replay_balance(self, db: AsyncSession, user_id: str) -> LedgerReplay:
        # Balance and log are read in one statement so both come from the same snapshot.
        async with self.locked(user_id), storage_guard("replay_balance"):
            result = await db.execute(
                select(User.wallet_balance, WalletTransaction)
                .outerjoin(WalletTransaction, WalletTransaction.user_id == User.id)
                .where(User.id == user_id)
                .order_by(WalletTransaction.id.asc())
            )
            rows = result.all()
        stored_balance = _non_negative(rows[0][0]) if rows else Decimal("0")
        transactions = [transaction for _, transaction in rows if transaction is not None]

        running = Decimal("0")
        first_mismatch: int | None = None
        for transaction in transactions:
            running += to_decimal(transaction.amount)
            if first_mismatch is None and running != to_decimal(transaction.balance_after):
                first_mismatch = transaction.id
        return LedgerReplay(
            user_id=user_id,
            derived_balance=running,
            stored_balance=stored_balance,
            transaction_count=len(transactions),
            first_mismatch_transaction_id=first_mismatch,
        )

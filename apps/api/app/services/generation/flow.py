from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from apps.api.app.db.models import GeneratedImage, User
from apps.api.app.services.billing.errors import (
    BillingError,
    BillingErrorKind,
    StorageUnavailableError,
    insufficient_balance,
    invalid_request,
    storage_guard,
)
from apps.api.app.services.billing.pricing import calculate_cost
from apps.api.app.services.billing.wallet import WalletService
from apps.api.app.services.generation.image_provider import (
    ImageGenerationError,
    ImageGenerator,
    ImageRequest,
)
from apps.api.app.services.generation.prompts import GENERATION_TYPES, enhance_prompt
from apps.api.app.utils.decimal_format import to_decimal

_LOGGER = logging.getLogger(__name__)

MAX_PROMPT_LENGTH = 1000
MIN_PRODUCT_IMAGES = 1
MAX_PRODUCT_IMAGES = 5
MAX_IDEMPOTENCY_KEY_LENGTH = 128


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    resolution: str
    generation_type: str
    product_images: tuple[str, ...]
    background_removal: bool = False
    style_transfer: bool = False


@dataclass(frozen=True)
class GenerationResult:
    image_id: str
    image_url: str
    credits_used: Decimal
    new_balance: Decimal
    enhanced_prompt: str | None
    status: str
    low_balance: bool
    created_at: datetime


@dataclass(frozen=True)
class GenerationOutcome:
    result: GenerationResult | None
    error: BillingError | None
    replayed: bool = False

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class RefundOutcome:
    image_id: str
    status: str
    refunded_amount: Decimal
    new_balance: Decimal | None
    already_failed: bool
    error: BillingError | None


def validate_generation_request(request: GenerationRequest, idempotency_key: str | None) -> BillingError | None:
    errors: dict[str, str] = {}
    prompt = request.prompt.strip()
    if not prompt:
        errors["prompt"] = "must not be empty"
    elif len(prompt) > MAX_PROMPT_LENGTH:
        errors["prompt"] = f"must be at most {MAX_PROMPT_LENGTH} characters"
    if not MIN_PRODUCT_IMAGES <= len(request.product_images) <= MAX_PRODUCT_IMAGES:
        errors["product_images"] = f"must contain {MIN_PRODUCT_IMAGES} to {MAX_PRODUCT_IMAGES} images"
    if request.generation_type not in GENERATION_TYPES:
        errors["generation_type"] = f"must be one of {', '.join(GENERATION_TYPES)}"
    if not idempotency_key or not idempotency_key.strip():
        errors["idempotency_key"] = "is required"
    elif len(idempotency_key) > MAX_IDEMPOTENCY_KEY_LENGTH:
        errors["idempotency_key"] = f"must be at most {MAX_IDEMPOTENCY_KEY_LENGTH} characters"
    return invalid_request(errors) if errors else None


class GenerationService:
    """Quote, admit, execute and settle a generation request.

    Admit is an advisory balance check. Settle re-verifies the balance through
    the ledger's conditional deduction under the user's lock and commits the
    deduction and the image row together, so a completed image always has a
    matching deduct transaction (``reference_id`` = image id).
    """

    def __init__(self, wallet_service: WalletService, image_generator: ImageGenerator) -> None:
        self._wallet = wallet_service
        self._images = image_generator

    async def generate(
        self,
        db: AsyncSession,
        *,
        user_id: str,
        request: GenerationRequest,
        idempotency_key: str | None,
    ) -> GenerationOutcome:
        validation_error = validate_generation_request(request, idempotency_key)
        if validation_error is not None:
            return GenerationOutcome(result=None, error=validation_error)
        key = (idempotency_key or "").strip()

        try:
            existing = await self._find_by_key(db, user_id=user_id, idempotency_key=key)
            if existing is not None:
                return await self._replay(db, existing)

            # Quote
            cost = calculate_cost(
                request.resolution,
                len(request.product_images),
                request.background_removal,
                request.style_transfer,
            )
            # Admit
            if await self._wallet.has_insufficient_balance(db, user_id, cost.rupees):
                current = await self._wallet.get_balance(db, user_id)
                return GenerationOutcome(
                    result=None, error=insufficient_balance(required=cost.rupees, current=current)
                )
            threshold = await self._load_threshold(db, user_id)
        except StorageUnavailableError as exc:
            return GenerationOutcome(result=None, error=exc.to_error())

        # Execute
        enhanced = enhance_prompt(request.prompt, request.generation_type, request.resolution)
        try:
            image_url = await self._images.generate_image(
                ImageRequest(
                    prompt=enhanced,
                    resolution=request.resolution,
                    generation_type=request.generation_type,
                )
            )
        except ImageGenerationError as exc:
            _LOGGER.warning("image generation failed user=%s: %s", user_id, exc)
            return GenerationOutcome(
                result=None,
                error=BillingError(
                    kind=BillingErrorKind.GENERATION_FAILED,
                    message="Image generation failed. No credits were charged.",
                    details={"reason": str(exc)},
                ),
            )

        # Settle
        image_id = f"img_{uuid4().hex}"
        now = datetime.now(timezone.utc)
        async with self._wallet.locked(user_id):
            try:
                existing = await self._find_by_key(db, user_id=user_id, idempotency_key=key)
                if existing is not None:
                    return await self._replay(db, existing)

                debit = await self._wallet.stage_deduct(
                    db,
                    user_id,
                    cost.rupees,
                    f"Image generation - {request.resolution} - {cost.credits} credits",
                    reference_id=image_id,
                )
                if not debit.success:
                    await db.rollback()
                    _LOGGER.info("settle rejected user=%s image=%s: %s", user_id, image_id, debit.error)
                    return GenerationOutcome(result=None, error=debit.error)

                image = GeneratedImage(
                    id=image_id,
                    user_id=user_id,
                    original_prompt=request.prompt,
                    enhanced_prompt=enhanced,
                    image_url=image_url,
                    resolution=request.resolution,
                    generation_type=request.generation_type,
                    credits_used=cost.credits,
                    status="completed",
                    idempotency_key=key,
                    created_at=now,
                    updated_at=now,
                )
                db.add(image)
                async with storage_guard("commit_generation"):
                    await db.commit()
            except IntegrityError:
                # A duplicate request in another process settled first.
                await db.rollback()
                existing = await self._find_by_key(db, user_id=user_id, idempotency_key=key)
                if existing is None:
                    raise
                return await self._replay(db, existing)
            except StorageUnavailableError as exc:
                await db.rollback()
                return GenerationOutcome(result=None, error=exc.to_error())

        _LOGGER.info(
            "image generated user=%s image=%s credits=%s balance_after=%s",
            user_id,
            image_id,
            cost.credits,
            debit.new_balance,
        )
        return GenerationOutcome(
            result=GenerationResult(
                image_id=image_id,
                image_url=image_url,
                credits_used=cost.credits,
                new_balance=debit.new_balance,
                enhanced_prompt=enhanced,
                status="completed",
                low_balance=threshold is not None and debit.new_balance < threshold,
                created_at=now,
            ),
            error=None,
        )

    async def list_images(self, db: AsyncSession, user_id: str, limit: int = 50) -> list[GeneratedImage]:
        async with storage_guard("list_images"):
            rows = await db.scalars(
                select(GeneratedImage)
                .where(GeneratedImage.user_id == user_id)
                .order_by(GeneratedImage.created_at.desc(), GeneratedImage.id.desc())
                .limit(limit)
            )
            return list(rows.all())

    async def mark_failed(self, db: AsyncSession, *, image_id: str, reason: str) -> RefundOutcome:
        try:
            async with storage_guard("load_image"):
                image = await db.get(GeneratedImage, image_id)
            if image is None:
                return RefundOutcome(
                    image_id=image_id,
                    status="missing",
                    refunded_amount=Decimal("0"),
                    new_balance=None,
                    already_failed=False,
                    error=BillingError(
                        kind=BillingErrorKind.IMAGE_NOT_FOUND,
                        message="Image not found.",
                        details={"image_id": image_id},
                    ),
                )
            user_id = image.user_id

            async with self._wallet.locked(user_id):
                async with storage_guard("lock_image"):
                    await db.refresh(image)
                if image.status == "failed":
                    await db.rollback()
                    return RefundOutcome(
                        image_id=image_id,
                        status="failed",
                        refunded_amount=Decimal("0"),
                        new_balance=await self._wallet.get_balance(db, user_id),
                        already_failed=True,
                        error=None,
                    )

                previous_status = image.status
                credits_used = to_decimal(image.credits_used)
                image.status = "failed"
                image.failure_reason = reason[:256]
                image.updated_at = datetime.now(timezone.utc)

                refunded = Decimal("0")
                new_balance: Decimal | None = None
                deduction = await self._wallet.find_transaction(
                    db, user_id=user_id, kind="deduct", reference_id=image_id
                )
                if deduction is not None:
                    refunded = -to_decimal(deduction.amount)
                    credit = await self._wallet.stage_credit(
                        db,
                        user_id,
                        refunded,
                        f"Refund for failed image {image_id}",
                        kind="refund",
                        reference_id=image_id,
                        credits_added=credits_used,
                    )
                    if not credit.success:
                        await db.rollback()
                        return RefundOutcome(
                            image_id=image_id,
                            status=previous_status,
                            refunded_amount=Decimal("0"),
                            new_balance=None,
                            already_failed=False,
                            error=credit.error,
                        )
                    new_balance = credit.new_balance
                async with storage_guard("commit_refund"):
                    await db.commit()
        except StorageUnavailableError as exc:
            await db.rollback()
            return RefundOutcome(
                image_id=image_id,
                status="unknown",
                refunded_amount=Decimal("0"),
                new_balance=None,
                already_failed=False,
                error=exc.to_error(),
            )

        _LOGGER.info("image marked failed image=%s user=%s refunded=%s", image_id, user_id, refunded)
        return RefundOutcome(
            image_id=image_id,
            status="failed",
            refunded_amount=refunded,
            new_balance=new_balance,
            already_failed=False,
            error=None,
        )

    async def _find_by_key(self, db: AsyncSession, *, user_id: str, idempotency_key: str) -> GeneratedImage | None:
        async with storage_guard("find_generation"):
            return await db.scalar(
                select(GeneratedImage).where(
                    GeneratedImage.user_id == user_id,
                    GeneratedImage.idempotency_key == idempotency_key,
                )
            )

    async def _replay(self, db: AsyncSession, image: GeneratedImage) -> GenerationOutcome:
        balance = await self._wallet.get_balance(db, image.user_id)
        threshold = await self._load_threshold(db, image.user_id)
        return GenerationOutcome(
            result=GenerationResult(
                image_id=image.id,
                image_url=image.image_url,
                credits_used=to_decimal(image.credits_used),
                new_balance=balance,
                enhanced_prompt=image.enhanced_prompt,
                status=image.status,
                low_balance=threshold is not None and balance < threshold,
                created_at=image.created_at,
            ),
            error=None,
            replayed=True,
        )

    async def _load_threshold(self, db: AsyncSession, user_id: str) -> Decimal | None:
        async with storage_guard("load_threshold"):
            threshold = await db.scalar(select(User.auto_recharge_threshold).where(User.id == user_id))
        return to_decimal(threshold) if threshold is not None else None

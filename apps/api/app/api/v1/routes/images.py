from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession

from apps.api.app.api.v1.routes.users import get_current_account
from apps.api.app.db.models import User
from apps.api.app.db.session import get_db
from apps.api.app.dependencies.rate_limit import enforce_generate_rate_limit
from apps.api.app.dependencies.services import get_generation_service
from apps.api.app.schemas.images import (
    GeneratedImageListRead,
    GeneratedImageRead,
    GenerationCreate,
    GenerationRead,
)
from apps.api.app.services.billing.errors import raise_for_billing_error
from apps.api.app.services.generation.flow import GenerationRequest, GenerationService
from apps.api.app.utils.decimal_format import format_decimal

router = APIRouter(prefix="/images", tags=["images"])


@router.post(
    "/generate",
    response_model=GenerationRead,
    dependencies=[Depends(enforce_generate_rate_limit)],
)
async def generate_image(
    payload: GenerationCreate,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    user: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    generation_service: GenerationService = Depends(get_generation_service),
) -> GenerationRead:
    outcome = await generation_service.generate(
        db,
        user_id=user.id,
        request=GenerationRequest(
            prompt=payload.prompt,
            resolution=payload.resolution,
            generation_type=payload.generation_type,
            product_images=tuple(payload.product_images),
            background_removal=payload.background_removal,
            style_transfer=payload.style_transfer,
        ),
        idempotency_key=idempotency_key,
    )
    if outcome.error is not None:
        raise_for_billing_error(outcome.error)

    result = outcome.result
    return GenerationRead(
        image_id=result.image_id,
        image_url=result.image_url,
        credits_used=format_decimal(result.credits_used),
        new_balance=format_decimal(result.new_balance),
        enhanced_prompt=result.enhanced_prompt,
        status=result.status,
        low_balance=result.low_balance,
        replayed=outcome.replayed,
        created_at=result.created_at,
    )


@router.get("", response_model=GeneratedImageListRead)
async def list_images(
    limit: int = Query(default=50, ge=1, le=100),
    user: User = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    generation_service: GenerationService = Depends(get_generation_service),
) -> GeneratedImageListRead:
    rows = await generation_service.list_images(db, user.id, limit=limit)
    return GeneratedImageListRead(
        images=[
            GeneratedImageRead(
                id=row.id,
                original_prompt=row.original_prompt,
                enhanced_prompt=row.enhanced_prompt,
                image_url=row.image_url,
                resolution=row.resolution,
                generation_type=row.generation_type,
                credits_used=format_decimal(row.credits_used),
                status=row.status,
                created_at=row.created_at,
            )
            for row in rows
        ]
    )

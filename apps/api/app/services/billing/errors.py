from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from fastapi import HTTPException
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from apps.api.app.utils.decimal_format import format_decimal

_LOGGER = logging.getLogger(__name__)


class BillingErrorKind(str, Enum):
    INSUFFICIENT_BALANCE = "insufficient_balance"
    INVALID_REQUEST = "invalid_request"
    GENERATION_FAILED = "generation_failed"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    ACCOUNT_NOT_FOUND = "account_not_found"
    IMAGE_NOT_FOUND = "image_not_found"


_HTTP_STATUS_BY_KIND: dict[BillingErrorKind, int] = {
    BillingErrorKind.INSUFFICIENT_BALANCE: 402,
    BillingErrorKind.INVALID_REQUEST: 422,
    BillingErrorKind.GENERATION_FAILED: 502,
    BillingErrorKind.STORAGE_UNAVAILABLE: 503,
    BillingErrorKind.ACCOUNT_NOT_FOUND: 404,
    BillingErrorKind.IMAGE_NOT_FOUND: 404,
}


@dataclass(frozen=True)
class BillingError:
    kind: BillingErrorKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def retryable(self) -> bool:
        return self.kind in (BillingErrorKind.GENERATION_FAILED, BillingErrorKind.STORAGE_UNAVAILABLE)

    def to_detail(self) -> dict[str, Any]:
        return {"code": self.kind.value, "message": self.message, **self.details}


def insufficient_balance(*, required: Decimal, current: Decimal) -> BillingError:
    return BillingError(
        kind=BillingErrorKind.INSUFFICIENT_BALANCE,
        message=(
            f"Insufficient wallet balance. Required: {format_decimal(required)}, "
            f"Current: {format_decimal(current)}"
        ),
        details={"required": format_decimal(required), "current": format_decimal(current)},
    )


def invalid_request(errors: dict[str, str]) -> BillingError:
    return BillingError(
        kind=BillingErrorKind.INVALID_REQUEST,
        message="Request validation failed.",
        details={"fields": errors},
    )


def storage_unavailable(reason: str) -> BillingError:
    return BillingError(
        kind=BillingErrorKind.STORAGE_UNAVAILABLE,
        message="Storage is temporarily unavailable. Please retry.",
        details={"reason": reason},
    )


class StorageUnavailableError(RuntimeError):
    """Raised by storage helpers when the database cannot be reached in time."""

    def to_error(self) -> BillingError:
        return storage_unavailable(str(self))


@asynccontextmanager
async def storage_guard(operation: str) -> AsyncIterator[None]:
    try:
        yield
    except (OperationalError, InterfaceError, PoolTimeoutError, TimeoutError) as exc:
        _LOGGER.exception("Storage failure during %s", operation)
        raise StorageUnavailableError(f"{operation} failed: {exc.__class__.__name__}") from exc


def raise_for_billing_error(error: BillingError) -> None:
    status_code = _HTTP_STATUS_BY_KIND[error.kind]
    headers = {"Retry-After": "1"} if error.kind is BillingErrorKind.STORAGE_UNAVAILABLE else None
    raise HTTPException(status_code=status_code, detail=error.to_detail(), headers=headers)

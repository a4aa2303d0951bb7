from __future__ import annotations

from fastapi import Request

from apps.api.app.services.billing.wallet import WalletService
from apps.api.app.services.generation.flow import GenerationService


def get_wallet_service(request: Request) -> WalletService:
    return request.app.state.wallet_service


def get_generation_service(request: Request) -> GenerationService:
    return request.app.state.generation_service

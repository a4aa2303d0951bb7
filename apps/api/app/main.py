from __future__ import annotations

import inspect
import logging
import time
from contextlib import asynccontextmanager
from uuid import uuid4

from arq import create_pool
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from apps.api.app.api.v1.routes.admin import router as admin_router
from apps.api.app.api.v1.routes.auth import router as auth_router
from apps.api.app.api.v1.routes.health import router as health_router
from apps.api.app.api.v1.routes.images import router as images_router
from apps.api.app.api.v1.routes.users import router as users_router
from apps.api.app.api.v1.routes.wallet import router as wallet_router
from apps.api.app.api.v1.routes.webhooks import router as webhooks_router
from apps.api.app.core.config import get_settings
from apps.api.app.dependencies.rate_limit import client_address, global_rule
from apps.api.app.services.billing.errors import StorageUnavailableError
from apps.api.app.services.billing.wallet import WalletService
from apps.api.app.services.generation.flow import GenerationService
from apps.api.app.services.generation.image_provider import PlaceholderImageGenerator
from apps.api.app.services.rate_limit import InMemoryRateLimitStore, RateLimiter, RedisRateLimitStore
from apps.api.app.workers.arq_worker import redis_settings_from_env

_LOGGER = logging.getLogger(__name__)

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
}
_UNLIMITED_PATHS = {"/health", "/webhooks/stripe"}


@asynccontextmanager
async def _lifespan(app: FastAPI):
    app.state.arq_redis = None
    try:
        redis_settings = redis_settings_from_env()
    except RuntimeError as exc:
        _LOGGER.warning("ARQ pool startup skipped, rate limits stay in-process: %s", exc)
    else:
        app.state.arq_redis = await create_pool(redis_settings)
        app.state.rate_limiter = RateLimiter(RedisRateLimitStore(app.state.arq_redis))
    try:
        yield
    finally:
        redis_pool = getattr(app.state, "arq_redis", None)
        if redis_pool is not None:
            aclose = getattr(redis_pool, "aclose", None)
            if callable(aclose):
                await aclose()
            else:
                close = getattr(redis_pool, "close", None)
                if callable(close):
                    maybe_awaitable = close()
                    if inspect.isawaitable(maybe_awaitable):
                        await maybe_awaitable


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    app = FastAPI(title="PixelForge API", version=settings.app_version, lifespan=_lifespan)

    wallet_service = WalletService()
    app.state.wallet_service = wallet_service
    app.state.generation_service = GenerationService(
        wallet_service,
        PlaceholderImageGenerator(settings.image_placeholder_base_url),
    )
    app.state.rate_limiter = RateLimiter(InMemoryRateLimitStore())
    app.state.arq_redis = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api_cors_allowed_origins or ["*"],
        allow_credentials=bool(settings.api_cors_allowed_origins),
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        started = time.perf_counter()

        declared_length = request.headers.get("Content-Length")
        if declared_length and declared_length.isdigit() and int(declared_length) > settings.max_request_bytes:
            response = JSONResponse(status_code=413, content={"detail": "request body too large"})
            response.headers["X-Request-ID"] = request_id
            return response

        decision = None
        if request.method != "OPTIONS" and request.url.path not in _UNLIMITED_PATHS:
            decision = await request.app.state.rate_limiter.hit(
                f"ip:{client_address(request)}", global_rule(settings)
            )
            if decision is not None and not decision.allowed:
                response = JSONResponse(
                    status_code=429,
                    content={
                        "detail": "rate limit exceeded",
                        "retry_after_seconds": decision.retry_after_seconds,
                    },
                    headers={"Retry-After": str(decision.retry_after_seconds), **decision.headers()},
                )
                response.headers["X-Request-ID"] = request_id
                return response

        response = await call_next(request)
        if decision is not None:
            # Route-level limits set their own headers first and take precedence.
            for name, value in decision.headers().items():
                response.headers.setdefault(name, value)
        for name, value in _SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        response.headers["X-Request-ID"] = request_id

        elapsed_ms = (time.perf_counter() - started) * 1000
        _LOGGER.info(
            "%s %s -> %s in %.1fms request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            request_id,
        )
        return response

    @app.exception_handler(StorageUnavailableError)
    async def storage_unavailable_handler(request: Request, exc: StorageUnavailableError) -> JSONResponse:
        return JSONResponse(
            status_code=503,
            content={"detail": exc.to_error().to_detail()},
            headers={"Retry-After": "1"},
        )

    app.include_router(health_router)
    app.include_router(auth_router, prefix="/api/v1")
    app.include_router(users_router, prefix="/api/v1")
    app.include_router(wallet_router, prefix="/api/v1")
    app.include_router(images_router, prefix="/api/v1")
    app.include_router(admin_router, prefix="/api/v1")
    app.include_router(webhooks_router)
    return app


app = create_app()

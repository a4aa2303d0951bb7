from __future__ import annotations

from fastapi import Depends, HTTPException, Request, Response

from apps.api.app.core.config import Settings, get_settings
from apps.api.app.dependencies.auth import get_current_user
from apps.api.app.services.rate_limit import RateLimitDecision, RateLimiter, RateLimitRule


def client_address(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    first_hop = forwarded.split(",", 1)[0].strip()
    if first_hop:
        return first_hop
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


def global_rule(settings: Settings) -> RateLimitRule:
    return RateLimitRule(
        name="api",
        max_requests=settings.rate_limit_global_max_requests,
        window_seconds=settings.rate_limit_global_window_seconds,
    )


def generate_rule(settings: Settings) -> RateLimitRule:
    return RateLimitRule(
        name="generate",
        max_requests=settings.rate_limit_generate_per_minute,
        window_seconds=60,
    )


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def too_many_requests(decision: RateLimitDecision) -> HTTPException:
    return HTTPException(
        status_code=429,
        detail={"detail": "rate limit exceeded", "retry_after_seconds": decision.retry_after_seconds},
        headers={"Retry-After": str(decision.retry_after_seconds), **decision.headers()},
    )


async def enforce_generate_rate_limit(
    response: Response,
    current_user: dict[str, str] = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
) -> None:
    decision = await rate_limiter.hit(f"user:{current_user['user_id']}", generate_rule(settings))
    if decision is None:
        return
    if not decision.allowed:
        raise too_many_requests(decision)
    response.headers.update(decision.headers())

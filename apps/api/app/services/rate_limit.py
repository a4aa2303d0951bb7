from __future__ import annotations

import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Protocol

_LOGGER = logging.getLogger(__name__)

_SWEEP_INTERVAL_SECONDS = 60.0


@dataclass(frozen=True)
class RateLimitRule:
    name: str
    max_requests: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int
    reset_at: int

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }


class RateLimitStore(Protocol):
    async def hit(self, key: str, rule: RateLimitRule, now: float) -> RateLimitDecision: ...


class InMemoryRateLimitStore:
    """Sliding-window log per key, scoped to one process."""

    def __init__(self) -> None:
        self._hits: dict[str, tuple[deque[float], int]] = {}
        self._last_sweep = 0.0

    def __len__(self) -> int:
        return len(self._hits)

    async def hit(self, key: str, rule: RateLimitRule, now: float) -> RateLimitDecision:
        self._sweep(now)
        bucket_key = f"{rule.name}:{key}"
        entry = self._hits.get(bucket_key)
        if entry is None:
            entry = (deque(), rule.window_seconds)
            self._hits[bucket_key] = entry
        hits = entry[0]
        cutoff = now - rule.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()

        if len(hits) >= rule.max_requests:
            oldest = hits[0]
            return RateLimitDecision(
                allowed=False,
                limit=rule.max_requests,
                remaining=0,
                retry_after_seconds=max(1, math.ceil(oldest + rule.window_seconds - now)),
                reset_at=math.ceil(oldest + rule.window_seconds),
            )

        hits.append(now)
        return RateLimitDecision(
            allowed=True,
            limit=rule.max_requests,
            remaining=max(0, rule.max_requests - len(hits)),
            retry_after_seconds=0,
            reset_at=math.ceil(hits[0] + rule.window_seconds),
        )

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < _SWEEP_INTERVAL_SECONDS:
            return
        self._last_sweep = now
        expired = [
            key for key, (hits, window) in self._hits.items() if not hits or hits[-1] <= now - window
        ]
        for key in expired:
            del self._hits[key]


async def _redis_incr_with_ttl(redis_pool: object, key: str, ttl_seconds: int) -> int:
    incr = getattr(redis_pool, "incr", None)
    if callable(incr):
        value = await incr(key)
    else:
        value = await redis_pool.execute_command("INCR", key)  # pragma: no cover
    value_int = int(value)

    expire = getattr(redis_pool, "expire", None)
    if value_int == 1 and callable(expire):
        await expire(key, ttl_seconds)
    elif value_int == 1:
        await redis_pool.execute_command("EXPIRE", key, ttl_seconds)  # pragma: no cover
    return value_int


class RedisRateLimitStore:
    """Sliding-window counter: current fixed bucket plus the weighted tail of the previous one."""

    def __init__(self, redis_pool: object) -> None:
        self._redis = redis_pool

    async def hit(self, key: str, rule: RateLimitRule, now: float) -> RateLimitDecision:
        window = rule.window_seconds
        bucket = int(now // window)
        elapsed = now - bucket * window
        current_key = f"ratelimit:{rule.name}:{key}:{bucket}"
        previous_key = f"ratelimit:{rule.name}:{key}:{bucket - 1}"

        previous_raw = await self._redis.get(previous_key)
        previous_count = int(previous_raw) if previous_raw is not None else 0
        current_count = await _redis_incr_with_ttl(self._redis, current_key, ttl_seconds=window * 2)

        weighted = previous_count * (window - elapsed) / window + current_count
        reset_at = (bucket + 1) * window
        if weighted > rule.max_requests:
            return RateLimitDecision(
                allowed=False,
                limit=rule.max_requests,
                remaining=0,
                retry_after_seconds=max(1, math.ceil(window - elapsed)),
                reset_at=reset_at,
            )
        return RateLimitDecision(
            allowed=True,
            limit=rule.max_requests,
            remaining=max(0, rule.max_requests - math.ceil(weighted)),
            retry_after_seconds=0,
            reset_at=reset_at,
        )


class RateLimiter:
    def __init__(self, store: RateLimitStore) -> None:
        self.store = store

    async def hit(self, key: str, rule: RateLimitRule) -> RateLimitDecision | None:
        try:
            return await self.store.hit(key, rule, time.time())
        except Exception as exc:
            _LOGGER.warning("Rate limiting skipped: store error: %s", exc)
            return None

from __future__ import annotations

import asyncio
import math
import os
import unittest
from dataclasses import dataclass, field
from decimal import Decimal
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "dummy-service-role-key")
os.environ.setdefault("API_CORS_ALLOWED_ORIGINS", "http://localhost:3000")

from apps.api.app.core.config import get_settings
from apps.api.app.db.models import Base, GeneratedImage, User, WalletTransaction
from apps.api.app.db.session import get_db
from apps.api.app.dependencies.auth import get_current_user
from apps.api.app.main import app
from apps.api.app.services.rate_limit import (
    InMemoryRateLimitStore,
    RateLimitDecision,
    RateLimiter,
    RateLimitRule,
    RedisRateLimitStore,
)


@dataclass
class FakeRedisPool:
    counts: dict[str, int] = field(default_factory=dict)
    expiries: dict[str, int] = field(default_factory=dict)

    async def get(self, key: str) -> bytes | None:
        value = self.counts.get(key)
        return str(value).encode() if value is not None else None

    async def incr(self, key: str) -> int:
        value = self.counts.get(key, 0) + 1
        self.counts[key] = value
        return value

    async def expire(self, key: str, ttl: int) -> bool:
        self.expiries[key] = ttl
        return True


class BrokenStore:
    async def hit(self, key: str, rule: RateLimitRule, now: float) -> RateLimitDecision:
        raise ConnectionError("redis down")


class DenyingStore:
    async def hit(self, key: str, rule: RateLimitRule, now: float) -> RateLimitDecision:
        return RateLimitDecision(allowed=False, limit=rule.max_requests, remaining=0, retry_after_seconds=42, reset_at=0)


class InMemoryStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryRateLimitStore()
        self.rule = RateLimitRule(name="generate", max_requests=3, window_seconds=60)

    def _hit(self, key: str, now: float) -> RateLimitDecision:
        return asyncio.run(self.store.hit(key, self.rule, now))

    def test_allows_up_to_limit_then_denies(self) -> None:
        decisions = [self._hit("user:a", 1000.0 + i) for i in range(4)]
        self.assertEqual([d.allowed for d in decisions], [True, True, True, False])
        self.assertEqual([d.remaining for d in decisions], [2, 1, 0, 0])
        self.assertEqual(decisions[3].retry_after_seconds, 57)

    def test_window_slides(self) -> None:
        for offset in range(3):
            self._hit("user:a", 1000.0 + offset)
        self.assertFalse(self._hit("user:a", 1059.0).allowed)
        self.assertTrue(self._hit("user:a", 1060.5).allowed)

    def test_denied_hits_are_not_counted(self) -> None:
        for offset in range(3):
            self._hit("user:a", 1000.0 + offset)
        for _ in range(10):
            self._hit("user:a", 1030.0)
        self.assertTrue(self._hit("user:a", 1061.0).allowed)

    def test_keys_are_independent(self) -> None:
        for offset in range(3):
            self._hit("user:a", 1000.0 + offset)
        self.assertTrue(self._hit("user:b", 1003.0).allowed)

    def test_idle_keys_are_swept(self) -> None:
        self._hit("user:a", 1000.0)
        self._hit("user:b", 1000.0)
        self.assertEqual(len(self.store), 2)
        self._hit("user:c", 2000.0)
        self.assertEqual(len(self.store), 1)


class RedisStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.rule = RateLimitRule(name="generate", max_requests=10, window_seconds=60)

    def test_counts_in_current_bucket_with_ttl(self) -> None:
        pool = FakeRedisPool()
        store = RedisRateLimitStore(pool)
        now = 1_700_000_000.0
        decision = asyncio.run(store.hit("user:a", self.rule, now))
        bucket = int(now // 60)
        key = f"ratelimit:generate:user:a:{bucket}"
        self.assertTrue(decision.allowed)
        self.assertEqual(pool.counts[key], 1)
        self.assertEqual(pool.expiries[key], 120)

    def test_previous_bucket_weighs_into_decision(self) -> None:
        now = 1_700_000_000.0
        bucket = int(now // 60)
        elapsed = now - bucket * 60
        pool = FakeRedisPool(counts={f"ratelimit:generate:user:a:{bucket - 1}": 10})
        decision = asyncio.run(RedisRateLimitStore(pool).hit("user:a", self.rule, now))
        weighted = 10 * (60 - elapsed) / 60 + 1
        self.assertEqual(decision.allowed, weighted <= 10)

    def test_denies_over_limit(self) -> None:
        now = 1_700_000_005.0
        bucket = int(now // 60)
        pool = FakeRedisPool(counts={f"ratelimit:generate:user:a:{bucket}": 10})
        decision = asyncio.run(RedisRateLimitStore(pool).hit("user:a", self.rule, now))
        self.assertFalse(decision.allowed)
        self.assertEqual(decision.retry_after_seconds, max(1, math.ceil(60 - now % 60)))


class RateLimiterTests(unittest.TestCase):
    def test_store_failure_fails_open(self) -> None:
        limiter = RateLimiter(BrokenStore())
        rule = RateLimitRule(name="api", max_requests=1, window_seconds=60)
        self.assertIsNone(asyncio.run(limiter.hit("ip:1.2.3.4", rule)))


class RateLimitingRouteTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.session_factory = async_sessionmaker(
            bind=cls.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        cls.current_user_id = "ratelimit-user"
        cls.current_email = "ratelimit-user@example.com"

        async def init_db() -> None:
            async with cls.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        asyncio.run(init_db())

        async def override_get_db():
            async with cls.session_factory() as session:
                yield session

        def override_current_user() -> dict[str, str]:
            return {"user_id": cls.current_user_id, "email": cls.current_email}

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_current_user] = override_current_user
        cls.client = TestClient(app)

    @classmethod
    def tearDownClass(cls) -> None:
        app.dependency_overrides.clear()
        app.state.rate_limiter = RateLimiter(InMemoryRateLimitStore())

        async def shutdown_db() -> None:
            async with cls.engine.begin() as conn:
                await conn.run_sync(Base.metadata.drop_all)
            await cls.engine.dispose()

        asyncio.run(shutdown_db())

    def setUp(self) -> None:
        get_settings.cache_clear()
        app.state.rate_limiter = RateLimiter(InMemoryRateLimitStore())

        async def reset_rows() -> None:
            async with self.session_factory() as session:
                await session.execute(delete(GeneratedImage))
                await session.execute(delete(WalletTransaction))
                await session.execute(delete(User))
                session.add(User(id=self.current_user_id, email=self.current_email, wallet_balance=Decimal("1000")))
                await session.commit()

        asyncio.run(reset_rows())

    def _generate(self, key: str):
        return self.client.post(
            "/api/v1/images/generate",
            json={
                "prompt": "steel water bottle",
                "resolution": "1024x1024",
                "generation_type": "studio",
                "product_images": ["aGVsbG8="],
            },
            headers={"Idempotency-Key": key},
        )

    def test_generate_limited_to_ten_per_minute(self) -> None:
        statuses = [self._generate(f"burst-{i}").status_code for i in range(11)]
        self.assertEqual(statuses[:10], [200] * 10)
        self.assertEqual(statuses[10], 429)

    def test_generate_rate_limit_response_shape(self) -> None:
        now = 1_700_000_005
        bucket = now // 60
        pool = FakeRedisPool(counts={f"ratelimit:generate:user:{self.current_user_id}:{bucket}": 10})
        app.state.rate_limiter = RateLimiter(RedisRateLimitStore(pool))
        with patch("apps.api.app.services.rate_limit.time.time", return_value=now):
            response = self._generate("limited")
        self.assertEqual(response.status_code, 429)
        expected_retry = max(1, 60 - (now % 60))
        self.assertEqual(response.json()["detail"]["detail"], "rate limit exceeded")
        self.assertEqual(response.json()["detail"]["retry_after_seconds"], expected_retry)
        self.assertEqual(response.headers.get("Retry-After"), str(expected_retry))
        self.assertEqual(response.headers.get("X-RateLimit-Remaining"), "0")

    def test_global_limit_rejects_before_routing(self) -> None:
        app.state.rate_limiter = RateLimiter(DenyingStore())
        response = self.client.get("/info")
        self.assertEqual(response.status_code, 429)
        self.assertEqual(response.json(), {"detail": "rate limit exceeded", "retry_after_seconds": 42})
        self.assertEqual(response.headers.get("Retry-After"), "42")

    def test_health_is_never_limited(self) -> None:
        app.state.rate_limiter = RateLimiter(DenyingStore())
        self.assertEqual(self.client.get("/health").status_code, 200)

    def test_store_outage_does_not_block_requests(self) -> None:
        app.state.rate_limiter = RateLimiter(BrokenStore())
        self.assertEqual(self._generate("outage").status_code, 200)


if __name__ == "__main__":
    unittest.main()

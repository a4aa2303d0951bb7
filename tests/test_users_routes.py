from __future__ import annotations

import asyncio
import os
import unittest
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Keep import-time settings self-contained for CI/local test runs.
os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "dummy-service-role-key")
os.environ.setdefault("API_CORS_ALLOWED_ORIGINS", "http://localhost:3000")

from apps.api.app.db.models import Base, User
from apps.api.app.db.session import get_db
from apps.api.app.dependencies.auth import get_current_user
from apps.api.app.main import app
from apps.api.app.services.rate_limit import InMemoryRateLimitStore, RateLimiter


class UsersRoutesTests(unittest.TestCase):
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
        cls.auth_user_id = "users-test-default"
        cls.auth_email = "users-test-default@example.com"

        async def init_db() -> None:
            async with cls.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        asyncio.run(init_db())

        async def override_get_db():
            async with cls.session_factory() as session:
                yield session

        def override_current_user() -> dict[str, str]:
            return {
                "user_id": cls.auth_user_id,
                "email": cls.auth_email,
                "name": "Asha Rao",
                "picture": "https://avatars.example.test/asha.png",
            }

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_current_user] = override_current_user
        cls.client = TestClient(app)

    @classmethod
    def tearDownClass(cls) -> None:
        app.dependency_overrides.clear()

        async def shutdown_db() -> None:
            async with cls.engine.begin() as conn:
                await conn.run_sync(Base.metadata.drop_all)
            await cls.engine.dispose()

        asyncio.run(shutdown_db())

    def setUp(self) -> None:
        app.state.rate_limiter = RateLimiter(InMemoryRateLimitStore())

        async def reset_rows() -> None:
            async with self.session_factory() as session:
                await session.execute(delete(User))
                await session.commit()

        asyncio.run(reset_rows())

    def _user_count(self) -> int:
        async def run() -> int:
            async with self.session_factory() as session:
                rows = await session.scalars(select(User).where(User.id == self.auth_user_id))
                return len(rows.all())

        return asyncio.run(run())

    def test_first_request_creates_profile_with_defaults(self) -> None:
        response = self.client.get("/api/v1/users/me")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {
                "id": self.auth_user_id,
                "email": self.auth_email,
                "name": "Asha Rao",
                "picture": "https://avatars.example.test/asha.png",
                "wallet_balance": "0",
                "auto_recharge_enabled": False,
                "auto_recharge_threshold": "100",
                "auto_recharge_amount": "500",
            },
        )

    def test_repeat_requests_reuse_profile(self) -> None:
        self.client.get("/api/v1/users/me")
        self.client.get("/api/v1/users/me")
        self.assertEqual(self._user_count(), 1)

    def test_existing_balance_is_reported(self) -> None:
        async def seed() -> None:
            async with self.session_factory() as session:
                session.add(User(id=self.auth_user_id, email=self.auth_email, wallet_balance=Decimal("262.5")))
                await session.commit()

        asyncio.run(seed())
        response = self.client.get("/api/v1/users/me")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["wallet_balance"], "262.5")

    def test_update_profile(self) -> None:
        response = self.client.put(
            "/api/v1/users/me",
            json={
                "name": "Asha R.",
                "auto_recharge_enabled": True,
                "auto_recharge_threshold": "50",
                "auto_recharge_amount": "1000",
            },
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["name"], "Asha R.")
        self.assertTrue(body["auto_recharge_enabled"])
        self.assertEqual(body["auto_recharge_threshold"], "50")
        self.assertEqual(body["auto_recharge_amount"], "1000")

    def test_update_profile_falls_back_to_default_recharge_settings(self) -> None:
        response = self.client.put("/api/v1/users/me", json={"name": "Asha", "auto_recharge_enabled": False})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["auto_recharge_threshold"], "100")
        self.assertEqual(body["auto_recharge_amount"], "500")

    def test_update_profile_rejects_unknown_fields(self) -> None:
        response = self.client.put("/api/v1/users/me", json={"wallet_balance": "1000000"})
        self.assertEqual(response.status_code, 422)


if __name__ == "__main__":
    unittest.main()

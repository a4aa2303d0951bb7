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

from apps.api.app.db.models import Base, GeneratedImage, User, WalletTransaction
from apps.api.app.db.session import get_db
from apps.api.app.dependencies.auth import get_current_user
from apps.api.app.main import app
from apps.api.app.services.rate_limit import InMemoryRateLimitStore, RateLimiter


def _payload(**overrides) -> dict:
    payload = {
        "prompt": "ceramic coffee mug on a wooden table",
        "resolution": "2560x1440",
        "generation_type": "lifestyle",
        "product_images": ["aGVsbG8="],
    }
    payload.update(overrides)
    return payload


class ImagesRoutesTests(unittest.TestCase):
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
        cls.user_id = "images-route-user"
        cls.user_email = "images-route-user@example.com"

        async def init_db() -> None:
            async with cls.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        asyncio.run(init_db())

        async def override_get_db():
            async with cls.session_factory() as session:
                yield session

        def override_current_user() -> dict[str, str]:
            return {"user_id": cls.user_id, "email": cls.user_email}

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
        self._reset(balance=Decimal("100"))

    def _reset(self, *, balance: Decimal) -> None:
        async def reset_rows() -> None:
            async with self.session_factory() as session:
                await session.execute(delete(GeneratedImage))
                await session.execute(delete(WalletTransaction))
                await session.execute(delete(User))
                session.add(User(id=self.user_id, email=self.user_email, wallet_balance=balance))
                await session.commit()

        asyncio.run(reset_rows())

    def _counts(self) -> tuple[Decimal, int, int]:
        async def run() -> tuple[Decimal, int, int]:
            async with self.session_factory() as session:
                balance = await session.scalar(select(User.wallet_balance).where(User.id == self.user_id))
                transactions = await session.scalars(select(WalletTransaction))
                images = await session.scalars(select(GeneratedImage))
                return Decimal(str(balance)), len(transactions.all()), len(images.all())

        return asyncio.run(run())

    def test_generate_deducts_and_returns_image(self) -> None:
        response = self.client.post(
            "/api/v1/images/generate", json=_payload(), headers={"Idempotency-Key": "gen-1"}
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["image_id"].startswith("img_"))
        self.assertTrue(body["image_url"].startswith("https://picsum.photos/2560/1440?random="))
        self.assertEqual(body["credits_used"], "3")
        self.assertEqual(body["new_balance"], "25")
        self.assertEqual(body["status"], "completed")
        self.assertTrue(body["low_balance"])
        self.assertFalse(body["replayed"])
        self.assertTrue(body["enhanced_prompt"].startswith("Professional lifestyle product photography"))
        self.assertEqual(self._counts(), (Decimal("25"), 1, 1))

    def test_generate_insufficient_balance(self) -> None:
        self._reset(balance=Decimal("50"))
        response = self.client.post(
            "/api/v1/images/generate", json=_payload(), headers={"Idempotency-Key": "gen-1"}
        )
        self.assertEqual(response.status_code, 402)
        detail = response.json()["detail"]
        self.assertEqual(detail["code"], "insufficient_balance")
        self.assertEqual(detail["required"], "75")
        self.assertEqual(detail["current"], "50")
        self.assertEqual(self._counts(), (Decimal("50"), 0, 0))

    def test_generate_requires_idempotency_key(self) -> None:
        response = self.client.post("/api/v1/images/generate", json=_payload())
        self.assertEqual(response.status_code, 422)
        detail = response.json()["detail"]
        self.assertEqual(detail["code"], "invalid_request")
        self.assertIn("idempotency_key", detail["fields"])
        self.assertEqual(self._counts(), (Decimal("100"), 0, 0))

    def test_generate_replays_duplicate_key(self) -> None:
        headers = {"Idempotency-Key": "gen-dup"}
        first = self.client.post("/api/v1/images/generate", json=_payload(resolution="1024x1024"), headers=headers)
        second = self.client.post("/api/v1/images/generate", json=_payload(resolution="1024x1024"), headers=headers)
        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.status_code, 200)
        self.assertEqual(second.json()["image_id"], first.json()["image_id"])
        self.assertTrue(second.json()["replayed"])
        self.assertEqual(self._counts(), (Decimal("75"), 1, 1))

    def test_generate_schema_validation(self) -> None:
        cases = [
            _payload(prompt=""),
            _payload(prompt="x" * 1001),
            _payload(resolution="800x600"),
            _payload(generation_type="cartoon"),
            _payload(product_images=[]),
            _payload(product_images=["a"] * 6),
            _payload(unexpected=True),
        ]
        for payload in cases:
            response = self.client.post(
                "/api/v1/images/generate", json=payload, headers={"Idempotency-Key": "gen-invalid"}
            )
            self.assertEqual(response.status_code, 422, payload)
        self.assertEqual(self._counts(), (Decimal("100"), 0, 0))

    def test_generate_sets_route_rate_limit_headers(self) -> None:
        response = self.client.post(
            "/api/v1/images/generate", json=_payload(), headers={"Idempotency-Key": "gen-headers"}
        )
        self.assertEqual(response.headers.get("X-RateLimit-Limit"), "10")
        self.assertEqual(response.headers.get("X-RateLimit-Remaining"), "9")

    def test_list_images_newest_first(self) -> None:
        self._reset(balance=Decimal("1000"))
        first = self.client.post(
            "/api/v1/images/generate", json=_payload(resolution="1024x1024"), headers={"Idempotency-Key": "a"}
        ).json()
        second = self.client.post(
            "/api/v1/images/generate", json=_payload(resolution="1920x1080"), headers={"Idempotency-Key": "b"}
        ).json()

        response = self.client.get("/api/v1/images")
        self.assertEqual(response.status_code, 200)
        images = response.json()["images"]
        self.assertEqual([image["id"] for image in images], [second["image_id"], first["image_id"]])
        self.assertEqual(images[0]["credits_used"], "2")
        self.assertEqual(images[0]["original_prompt"], "ceramic coffee mug on a wooden table")


if __name__ == "__main__":
    unittest.main()

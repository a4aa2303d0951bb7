from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    supabase_url: str
    supabase_anon_key: str | None
    supabase_service_role_key: str
    environment: str
    app_version: str
    log_level: str
    api_cors_allowed_origins: list[str]
    admin_user_ids: frozenset[str]
    rate_limit_global_max_requests: int
    rate_limit_global_window_seconds: int
    rate_limit_generate_per_minute: int
    max_request_bytes: int
    stripe_secret_key: str | None
    stripe_webhook_secret: str | None
    top_up_min_amount: Decimal
    top_up_max_amount: Decimal
    direct_topup_enabled: bool
    image_placeholder_base_url: str

    @property
    def is_production(self) -> bool:
        return self.environment in ("production", "prod")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer.") from exc


def _decimal_env(name: str, default: str) -> Decimal:
    raw = os.getenv(name) or default
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise RuntimeError(f"{name} must be a decimal number.") from exc


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise RuntimeError(f"{name} must be a boolean.")


def _csv_env(name: str) -> list[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    supabase_url = os.getenv("SUPABASE_URL")
    if not supabase_url:
        raise RuntimeError("SUPABASE_URL must be set.")
    supabase_service_role_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    if not supabase_service_role_key:
        raise RuntimeError("SUPABASE_SERVICE_ROLE_KEY must be set.")

    environment = os.getenv("ENVIRONMENT", "local").strip().lower()
    return Settings(
        supabase_url=supabase_url,
        supabase_anon_key=os.getenv("SUPABASE_ANON_KEY"),
        supabase_service_role_key=supabase_service_role_key,
        environment=environment,
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        api_cors_allowed_origins=_csv_env("API_CORS_ALLOWED_ORIGINS"),
        admin_user_ids=frozenset(_csv_env("ADMIN_USER_IDS")),
        rate_limit_global_max_requests=_int_env("RATE_LIMIT_GLOBAL_MAX_REQUESTS", 100),
        rate_limit_global_window_seconds=_int_env("RATE_LIMIT_GLOBAL_WINDOW_SECONDS", 15 * 60),
        rate_limit_generate_per_minute=_int_env("RATE_LIMIT_GENERATE_PER_MINUTE", 10),
        max_request_bytes=_int_env("MAX_REQUEST_BYTES", 10 * 1024 * 1024),
        stripe_secret_key=os.getenv("STRIPE_SECRET_KEY") or None,
        stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET") or None,
        top_up_min_amount=_decimal_env("TOP_UP_MIN_AMOUNT", "25"),
        top_up_max_amount=_decimal_env("TOP_UP_MAX_AMOUNT", "50000"),
        direct_topup_enabled=_bool_env(
            "DIRECT_TOPUP_ENABLED", environment not in ("production", "prod")
        ),
        image_placeholder_base_url=os.getenv(
            "IMAGE_PLACEHOLDER_BASE_URL", "https://picsum.photos"
        ).rstrip("/"),
    )

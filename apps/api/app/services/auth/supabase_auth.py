from __future__ import annotations

from typing import Any

from supabase import create_client

from apps.api.app.core.config import get_settings


def verify_supabase_bearer_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    client = create_client(settings.supabase_url, settings.supabase_service_role_key)
    result = client.auth.get_user(token)
    user = getattr(result, "user", None)
    if user is None:
        raise ValueError("Invalid or expired token.")
    # Google OAuth identities carry display name and avatar in user_metadata.
    metadata = getattr(user, "user_metadata", None) or {}
    return {
        "id": str(user.id),
        "email": user.email,
        "name": metadata.get("full_name") or metadata.get("name"),
        "picture": metadata.get("avatar_url") or metadata.get("picture"),
    }

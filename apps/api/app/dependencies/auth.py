from __future__ import annotations

from fastapi import Depends, Header, HTTPException

from apps.api.app.core.config import Settings, get_settings
from apps.api.app.services.auth.supabase_auth import verify_supabase_bearer_token


def get_current_user(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> dict[str, str]:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token.")
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing Bearer token.")
    if token == "dev-override" and not settings.is_production:
        return {"user_id": "test-user-id", "email": "test@example.com", "name": "", "picture": ""}

    try:
        user = verify_supabase_bearer_token(token)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except Exception as exc:
        raise HTTPException(status_code=500, detail=f"Auth verification failed: {exc}") from exc
    return {
        "user_id": user["id"],
        "email": user.get("email") or "",
        "name": user.get("name") or "",
        "picture": user.get("picture") or "",
    }


def require_admin(
    current_user: dict[str, str] = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
) -> dict[str, str]:
    if current_user["user_id"] not in settings.admin_user_ids:
        raise HTTPException(status_code=403, detail="Admin access required.")
    return current_user

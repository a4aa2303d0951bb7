from fastapi import APIRouter, Depends

from apps.api.app.core.config import Settings, get_settings

router = APIRouter(tags=["health"])


@router.get("/health")
def health(settings: Settings = Depends(get_settings)) -> dict[str, str]:
    return {"status": "ok", "environment": settings.environment}


@router.get("/info")
def info(settings: Settings = Depends(get_settings)) -> dict[str, object]:
    return {
        "name": "PixelForge API",
        "version": settings.app_version,
        "environment": settings.environment,
        "features": ["image-generation", "wallet", "credits", "rate-limiting"],
    }

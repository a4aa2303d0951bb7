from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Resolution = Literal["1024x1024", "1920x1080", "1080x1920", "2560x1440", "3840x2160"]
GenerationType = Literal["standard", "lifestyle", "studio", "seasonal", "ecommerce"]


class GenerationCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    prompt: str = Field(min_length=1, max_length=1000)
    resolution: Resolution
    generation_type: GenerationType
    # Base64-encoded product photos.
    product_images: list[str] = Field(min_length=1, max_length=5)
    background_removal: bool = False
    style_transfer: bool = False


class GenerationRead(BaseModel):
    model_config = ConfigDict(extra="forbid")

    image_id: str
    image_url: str
    credits_used: str
    new_balance: str
    enhanced_prompt: str | None
    status: str
    low_balance: bool
    replayed: bool
    created_at: datetime


class GeneratedImageRead(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    original_prompt: str
    enhanced_prompt: str | None
    image_url: str
    resolution: str
    generation_type: str
    credits_used: str
    status: str
    created_at: datetime


class GeneratedImageListRead(BaseModel):
    model_config = ConfigDict(extra="forbid")

    images: list[GeneratedImageRead]

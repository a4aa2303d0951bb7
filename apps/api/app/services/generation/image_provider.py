from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol
from uuid import uuid4

_LOGGER = logging.getLogger(__name__)


class ImageGenerationError(RuntimeError):
    pass


@dataclass(frozen=True)
class ImageRequest:
    prompt: str
    resolution: str
    generation_type: str


class ImageGenerator(Protocol):
    async def generate_image(self, request: ImageRequest) -> str: ...


class PlaceholderImageGenerator:
    """Returns a random stock image of the requested size instead of synthesizing one."""

    def __init__(self, base_url: str = "https://picsum.photos") -> None:
        self._base_url = base_url.rstrip("/")

    async def generate_image(self, request: ImageRequest) -> str:
        width, sep, height = request.resolution.partition("x")
        if not sep or not width.isdigit() or not height.isdigit():
            raise ImageGenerationError(f"Unsupported resolution: {request.resolution}")
        url = f"{self._base_url}/{width}/{height}?random={uuid4().hex[:12]}"
        _LOGGER.debug("placeholder image generated type=%s url=%s", request.generation_type, url)
        return url

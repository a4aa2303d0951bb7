from __future__ import annotations

GENERATION_TYPES = ("standard", "lifestyle", "studio", "seasonal", "ecommerce")

_STYLE_PREFIXES: dict[str, str] = {
    "lifestyle": "Professional lifestyle product photography, natural lighting, real-world setting, ",
    "studio": "Professional studio product photography, clean background, perfect lighting, commercial quality, ",
    "seasonal": "Seasonal themed product photography, atmospheric lighting, contextual elements, ",
    "ecommerce": "E-commerce product photography, clean white background, sharp focus, high detail, ",
}
_DEFAULT_STYLE_PREFIX = "Professional product photography, high quality, detailed, "
_HIGH_RES_QUALITY = "ultra high resolution, 8K quality, extremely detailed, "
_STANDARD_QUALITY = "high resolution, sharp focus, detailed, "
_SUFFIX = ", professional commercial photography, perfect composition, award-winning photography"


def _is_high_resolution(resolution: str) -> bool:
    width, _, height = resolution.partition("x")
    try:
        return max(int(width), int(height)) >= 2560
    except ValueError:
        return False


def enhance_prompt(prompt: str, generation_type: str, resolution: str) -> str:
    style = _STYLE_PREFIXES.get(generation_type, _DEFAULT_STYLE_PREFIX)
    quality = _HIGH_RES_QUALITY if _is_high_resolution(resolution) else _STANDARD_QUALITY
    return f"{style}{quality}{prompt.strip()}{_SUFFIX}"

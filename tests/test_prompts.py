from __future__ import annotations

import asyncio
import unittest

from apps.api.app.services.generation.image_provider import (
    ImageGenerationError,
    ImageRequest,
    PlaceholderImageGenerator,
)
from apps.api.app.services.generation.prompts import enhance_prompt


class PromptEnhancementTests(unittest.TestCase):
    def test_studio_prefix_and_standard_quality(self) -> None:
        enhanced = enhance_prompt("  red sneaker  ", "studio", "1024x1024")
        self.assertTrue(enhanced.startswith("Professional studio product photography"))
        self.assertIn("high resolution, sharp focus, detailed, red sneaker", enhanced)
        self.assertTrue(enhanced.endswith("award-winning photography"))

    def test_high_resolution_quality(self) -> None:
        for resolution in ("2560x1440", "3840x2160"):
            self.assertIn("ultra high resolution, 8K quality", enhance_prompt("mug", "ecommerce", resolution))

    def test_full_hd_is_not_high_resolution(self) -> None:
        self.assertNotIn("8K quality", enhance_prompt("mug", "lifestyle", "1920x1080"))

    def test_standard_type_uses_default_prefix(self) -> None:
        enhanced = enhance_prompt("lamp", "standard", "1024x1024")
        self.assertTrue(enhanced.startswith("Professional product photography, high quality"))


class PlaceholderImageGeneratorTests(unittest.TestCase):
    def test_url_carries_requested_size(self) -> None:
        generator = PlaceholderImageGenerator("https://images.example.test/")
        url = asyncio.run(
            generator.generate_image(ImageRequest(prompt="p", resolution="1920x1080", generation_type="studio"))
        )
        self.assertTrue(url.startswith("https://images.example.test/1920/1080?random="))

    def test_each_call_returns_a_distinct_url(self) -> None:
        generator = PlaceholderImageGenerator()
        request = ImageRequest(prompt="p", resolution="1024x1024", generation_type="studio")
        first = asyncio.run(generator.generate_image(request))
        second = asyncio.run(generator.generate_image(request))
        self.assertNotEqual(first, second)

    def test_malformed_resolution_raises(self) -> None:
        generator = PlaceholderImageGenerator()
        with self.assertRaises(ImageGenerationError):
            asyncio.run(
                generator.generate_image(ImageRequest(prompt="p", resolution="huge", generation_type="studio"))
            )


if __name__ == "__main__":
    unittest.main()

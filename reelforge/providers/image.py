"""
Image synthesis providers (character swap on a cover frame).

FAL.ai variants call the synchronous `fal.run` endpoints; Wavespeed variants
use `enable_sync_mode` so the result comes back on the same request.
"""

from abc import abstractmethod
import math
from typing import Any, Dict, List

from reelforge.core.exceptions import ProviderError
from reelforge.core.logging_config import get_logger
from reelforge.providers.base import (
    GeneratedImage,
    ImageGenerator,
    ImageRequest,
    aspect_ratio_for,
    parse_size,
    raise_for_provider_status,
)

logger = get_logger(__name__)

FAL_RUN_URL = "https://fal.run"
WAVESPEED_API_URL = "https://api.wavespeed.ai/api/v3"

IMAGE_TIMEOUT_SECONDS = 300.0

# Seedream on Wavespeed rejects anything under ~2 megapixels
WAVESPEED_MIN_PIXELS = 2073600


class FalImageGenerator(ImageGenerator):
    endpoint: str = ""

    @abstractmethod
    def build_body(self, request: ImageRequest) -> Dict[str, Any]:
        """Request body for the FAL endpoint."""

    async def generate(self, request: ImageRequest) -> List[GeneratedImage]:
        logger.info("Generating images", provider=self.name, num_images=request.num_images, size=request.size)

        response = await self.client.post(
            f"{FAL_RUN_URL}/{self.endpoint}",
            headers={"Authorization": f"Key {self.api_key()}"},
            json=self.build_body(request),
            timeout=IMAGE_TIMEOUT_SECONDS,
        )
        raise_for_provider_status(response, "FAL API")

        images = response.json().get("images") or []
        if not images:
            raise ProviderError("FAL returned no images")

        logger.info("Images generated", provider=self.name, count=len(images))
        return [GeneratedImage(url=image["url"]) for image in images]


class FalSeedream40(FalImageGenerator):
    name = "FAL.ai Seedream 4.0"
    endpoint = "fal-ai/bytedance/seedream/v4/edit"

    def build_body(self, request: ImageRequest) -> Dict[str, Any]:
        width, height = parse_size(request.size)
        return {
            "prompt": request.prompt,
            "image_urls": request.ref_image_urls,
            "num_images": request.num_images,
            "image_size": {"width": width, "height": height},
            "enable_safety_checker": not request.enable_nsfw,
        }


class FalSeedream45(FalSeedream40):
    name = "FAL.ai Seedream 4.5"
    endpoint = "fal-ai/bytedance/seedream/v4.5/edit"


class FalNanobanana(FalImageGenerator):
    name = "FAL.ai Nanobanana Pro"
    endpoint = "fal-ai/nano-banana-pro/edit"

    def build_body(self, request: ImageRequest) -> Dict[str, Any]:
        width, height = parse_size(request.size)
        return {
            "prompt": request.prompt,
            "image_urls": request.ref_image_urls,
            "num_images": min(request.num_images, 4),  # model maximum
            "aspect_ratio": aspect_ratio_for(width, height),
            "resolution": "2K",
        }


class WavespeedImageGenerator(ImageGenerator):
    endpoint: str = ""

    @abstractmethod
    def build_body(self, request: ImageRequest, http_urls: List[str]) -> Dict[str, Any]:
        """Request body; reference images must already be http(s) URLs."""

    async def generate(self, request: ImageRequest) -> List[GeneratedImage]:
        # Wavespeed fetches references itself; data URIs are not accepted
        http_urls = [url for url in request.ref_image_urls if not url.startswith("data:")]
        if not http_urls:
            raise ProviderError("Wavespeed requires HTTP URLs, no valid URLs provided")

        logger.info("Generating images", provider=self.name, num_images=request.num_images, size=request.size)

        response = await self.client.post(
            f"{WAVESPEED_API_URL}/{self.endpoint}",
            headers={"Authorization": f"Bearer {self.api_key()}"},
            json=self.build_body(request, http_urls),
            timeout=IMAGE_TIMEOUT_SECONDS,
        )
        raise_for_provider_status(response, "Wavespeed API")

        result = response.json()
        data = result.get("data") or {}
        if data.get("status") == "failed" or data.get("error"):
            raise ProviderError(f"Wavespeed error: {data.get('error') or 'Generation failed'}")
        if result.get("code") != 200:
            raise ProviderError(f"Wavespeed error: {result.get('message') or 'Unknown error'}")

        outputs = data.get("outputs") or result.get("outputs") or []
        if not outputs:
            raise ProviderError("Wavespeed returned no images")

        logger.info("Images generated", provider=self.name, count=len(outputs))
        return [GeneratedImage(url=url) for url in outputs]


def scale_to_min_pixels(width: int, height: int, min_pixels: int = WAVESPEED_MIN_PIXELS) -> tuple[int, int]:
    """Scale up (keeping aspect) to at least min_pixels, rounding each side up to a multiple of 8."""
    if width * height >= min_pixels:
        return width, height
    scale = math.sqrt(min_pixels / (width * height))
    width = math.ceil(width * scale)
    height = math.ceil(height * scale)
    return math.ceil(width / 8) * 8, math.ceil(height / 8) * 8


class WavespeedSeedream40(WavespeedImageGenerator):
    name = "Wavespeed Seedream 4.0"
    endpoint = "bytedance/seedream-v4/edit"

    def build_body(self, request: ImageRequest, http_urls: List[str]) -> Dict[str, Any]:
        width, height = scale_to_min_pixels(*parse_size(request.size))
        return {
            "prompt": request.prompt,
            "images": http_urls,
            "size": f"{width}*{height}",
            "enable_sync_mode": True,
        }


class WavespeedSeedream45(WavespeedSeedream40):
    name = "Wavespeed Seedream 4.5"
    endpoint = "bytedance/seedream-v4.5/edit"


class WavespeedNanobanana(WavespeedImageGenerator):
    name = "Wavespeed Nanobanana Pro"
    endpoint = "google/nano-banana-pro/edit"

    def build_body(self, request: ImageRequest, http_urls: List[str]) -> Dict[str, Any]:
        width, height = parse_size(request.size)
        return {
            "prompt": request.prompt,
            "images": http_urls,
            "aspect_ratio": aspect_ratio_for(width, height),
            "resolution": "2k",
            "enable_sync_mode": True,
        }

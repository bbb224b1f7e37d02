"""
Explicit provider/model -> generator mapping.

Usage:
    image = create_image_generator("FAL.ai", "Seedream 4.5", next_key, client)
    video = create_video_generator("Wavespeed", next_key, client)
"""

from typing import Dict, Tuple, Type

import httpx

from reelforge.core.config import FAL, WAVESPEED
from reelforge.core.exceptions import ConfigurationError
from reelforge.providers.base import ImageGenerator, KeySource, VideoGenerator
from reelforge.providers.image import (
    FalNanobanana,
    FalSeedream40,
    FalSeedream45,
    WavespeedNanobanana,
    WavespeedSeedream40,
    WavespeedSeedream45,
)
from reelforge.providers.video import FalWan, WavespeedWan

# Airtable "API_Provider" values -> credential set name
API_PROVIDERS: Dict[str, str] = {
    "FAL.ai": FAL,
    "Wavespeed": WAVESPEED,
}

DEFAULT_IMAGE_MODEL = "Seedream 4.5"

IMAGE_GENERATORS: Dict[Tuple[str, str], Type[ImageGenerator]] = {
    (FAL, "Seedream 4.0"): FalSeedream40,
    (FAL, "Seedream 4.5"): FalSeedream45,
    (FAL, "Nanobanana Pro"): FalNanobanana,
    (WAVESPEED, "Seedream 4.0"): WavespeedSeedream40,
    (WAVESPEED, "Seedream 4.5"): WavespeedSeedream45,
    (WAVESPEED, "Nanobanana Pro"): WavespeedNanobanana,
}

VIDEO_GENERATORS: Dict[str, Type[VideoGenerator]] = {
    FAL: FalWan,
    WAVESPEED: WavespeedWan,
}


def provider_slug(api_provider: str) -> str:
    try:
        return API_PROVIDERS[api_provider]
    except KeyError:
        raise ConfigurationError(
            f"Unknown API provider {api_provider!r}; expected one of {', '.join(API_PROVIDERS)}"
        ) from None


def create_image_generator(
    api_provider: str, image_model: str, api_key: KeySource, client: httpx.AsyncClient
) -> ImageGenerator:
    slug = provider_slug(api_provider)
    # Unknown models fall back to the provider's Seedream 4.5
    generator_cls = IMAGE_GENERATORS.get((slug, image_model), IMAGE_GENERATORS[(slug, DEFAULT_IMAGE_MODEL)])
    return generator_cls(api_key, client)


def create_video_generator(api_provider: str, api_key: KeySource, client: httpx.AsyncClient) -> VideoGenerator:
    return VIDEO_GENERATORS[provider_slug(api_provider)](api_key, client)

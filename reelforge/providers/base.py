"""
Common interface for the generation providers.

Every image or video backend is a variant behind one capability:
`name` plus `async generate(request)`. Variants are picked from an explicit
mapping in `reelforge.providers.factory`, never by inspecting objects at runtime.

API keys are passed either as a fixed string or as a zero-argument callable
(usually `ApiRotationManager.key_supplier(...)`) so that every outbound call
draws the next key in the rotation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Tuple, Union

import httpx

from reelforge.core.exceptions import ProviderError

KeySource = Union[str, Callable[[], str]]

ERROR_BODY_EXCERPT = 200


@dataclass
class ImageRequest:
    prompt: str
    ref_image_urls: List[str]
    num_images: int = 4
    enable_nsfw: bool = False
    size: str = "720x1280"  # "WIDTHxHEIGHT"


@dataclass
class GeneratedImage:
    url: str


@dataclass
class VideoRequest:
    video_url: str
    image_url: str
    resolution: str = "480p"


@dataclass
class GeneratedVideo:
    url: str
    extra: dict = field(default_factory=dict)


def parse_size(size: str) -> Tuple[int, int]:
    """Parse "720x1280" into (720, 1280)."""
    try:
        width, height = (int(part) for part in size.lower().split("x"))
    except ValueError as e:
        raise ProviderError(f"Invalid image size: {size!r}") from e
    return width, height


def aspect_ratio_for(width: int, height: int) -> str:
    """Snap a pixel size to the nearest aspect ratio the edit models accept."""
    ratio = width / height
    if ratio > 1.7:
        return "16:9"
    if ratio > 1.4:
        return "3:2"
    if ratio > 1.2:
        return "4:3"
    if ratio < 0.6:
        return "9:16"
    if ratio < 0.75:
        return "2:3"
    if ratio < 0.85:
        return "3:4"
    return "1:1"


def raise_for_provider_status(response: httpx.Response, label: str) -> None:
    """Turn a non-2xx response into a ProviderError carrying a body excerpt."""
    if response.is_success:
        return
    raise ProviderError(f"{label} error {response.status_code}: {response.text[:ERROR_BODY_EXCERPT]}")


class _KeyedClient:
    def __init__(self, api_key: KeySource, client: httpx.AsyncClient):
        self._api_key = api_key
        self.client = client

    def api_key(self) -> str:
        return self._api_key() if callable(self._api_key) else self._api_key


class ImageGenerator(_KeyedClient, ABC):
    name: str = ""

    @abstractmethod
    async def generate(self, request: ImageRequest) -> List[GeneratedImage]:
        """Return at least one image or raise ProviderError."""


class VideoGenerator(_KeyedClient, ABC):
    name: str = ""

    @abstractmethod
    async def generate(self, request: VideoRequest) -> GeneratedVideo:
        """Return the generated video or raise ProviderError."""

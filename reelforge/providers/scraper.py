"""
Source video scrapers for TikTok and Instagram links, backed by Apify actors.

Each scraper starts an actor run, polls it until it leaves RUNNING/READY, then
reads the first dataset item and pulls out the video URL, cover image and
dimensions.
"""

from abc import ABC, abstractmethod
import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from reelforge.core.exceptions import ScrapeError
from reelforge.core.logging_config import get_logger

logger = get_logger(__name__)

APIFY_API_URL = "https://api.apify.com/v2"
POLL_SECONDS = 3
MAX_POLLS = 60


@dataclass
class ScrapeResult:
    video_url: str
    cover_url: Optional[str]
    width: int
    height: int


def detect_platform(url: str) -> Optional[str]:
    if "tiktok.com" in url:
        return "tiktok"
    if "instagram.com" in url:
        return "instagram"
    return None


def _first(*values: Any) -> Any:
    for value in values:
        if value:
            return value
    return None


class ApifyScraper(ABC):
    actor_id: str = ""
    platform: str = ""

    def __init__(self, token: str, client: httpx.AsyncClient):
        self.token = token
        self.client = client

    @abstractmethod
    def build_input(self, url: str) -> Dict[str, Any]:
        """Actor input for one post URL."""

    @abstractmethod
    def extract(self, item: Dict[str, Any]) -> ScrapeResult:
        """Map one dataset item to a ScrapeResult or raise ScrapeError."""

    async def fetch(self, url: str) -> ScrapeResult:
        logger.info("Fetching source video", platform=self.platform, url=url)
        params = {"token": self.token}

        run_response = await self.client.post(
            f"{APIFY_API_URL}/acts/{self.actor_id}/runs",
            params=params,
            json=self.build_input(url),
        )
        if not run_response.is_success:
            raise ScrapeError(f"Apify run failed: {run_response.text[:200]}")

        run = run_response.json()["data"]
        run_id = run["id"]
        dataset_id = run["defaultDatasetId"]

        status = run.get("status") or "RUNNING"
        polls = 0
        while status in ("RUNNING", "READY"):
            await asyncio.sleep(POLL_SECONDS)
            polls += 1
            if polls > MAX_POLLS:
                raise ScrapeError("Apify run timed out")

            status_response = await self.client.get(f"{APIFY_API_URL}/actor-runs/{run_id}", params=params)
            if not status_response.is_success:
                continue
            status = status_response.json()["data"]["status"]

        if status != "SUCCEEDED":
            raise ScrapeError(f"Apify run failed with status: {status}")

        dataset_response = await self.client.get(f"{APIFY_API_URL}/datasets/{dataset_id}/items", params=params)
        if not dataset_response.is_success:
            raise ScrapeError(f"Apify dataset read failed: {dataset_response.status_code}")

        items: List[Dict[str, Any]] = dataset_response.json() or []
        if not items:
            raise ScrapeError(f"No results from {self.platform} scraper")

        result = self.extract(items[0])
        logger.info("Source video fetched", platform=self.platform, width=result.width, height=result.height)
        return result


class TikTokScraper(ApifyScraper):
    actor_id = "clockworks~tiktok-video-scraper"
    platform = "tiktok"

    def build_input(self, url: str) -> Dict[str, Any]:
        return {"postURLs": [url], "shouldDownloadVideos": True, "shouldDownloadCovers": True}

    def extract(self, item: Dict[str, Any]) -> ScrapeResult:
        meta = item.get("videoMeta") or {}
        media_urls = item.get("mediaUrls")

        video_url = _first(
            media_urls[0] if isinstance(media_urls, list) and media_urls else None,
            meta.get("downloadAddr"),
            meta.get("originalDownloadAddr"),
            meta.get("playAddr"),
        )
        if not video_url:
            raise ScrapeError("No video URL in TikTok response - video may be private or unavailable")

        cover_url = _first(
            meta.get("coverUrl"),
            meta.get("originalCoverUrl"),
            meta.get("originCover"),
            meta.get("dynamicCover"),
            item.get("coverUrl"),
            (item.get("authorMeta") or {}).get("avatar"),
        )
        return ScrapeResult(
            video_url=video_url,
            cover_url=cover_url,
            width=meta.get("width") or 720,
            height=meta.get("height") or 1280,
        )


class InstagramScraper(ApifyScraper):
    actor_id = "apify~instagram-api-scraper"
    platform = "instagram"

    def build_input(self, url: str) -> Dict[str, Any]:
        return {"directUrls": [url], "resultsType": "posts", "resultsLimit": 1}

    def extract(self, item: Dict[str, Any]) -> ScrapeResult:
        video_versions = (item.get("media") or {}).get("video_versions") or []
        candidates = (item.get("image_versions2") or {}).get("candidates") or []
        dimensions = item.get("dimensions") or {}

        video_url = _first(
            item.get("videoUrl"),
            item.get("video_url"),
            item.get("videoPlaybackUrl"),
            (item.get("video") or {}).get("url"),
            video_versions[0].get("url") if video_versions else None,
        )
        if not video_url:
            raise ScrapeError("No video URL in Instagram response - may not be a video/reel")

        cover_url = _first(
            item.get("displayUrl"),
            item.get("thumbnailUrl"),
            item.get("thumbnail_url"),
            item.get("previewUrl"),
            item.get("imageUrl"),
            candidates[0].get("url") if candidates else None,
        )
        return ScrapeResult(
            video_url=video_url,
            cover_url=cover_url,
            width=_first(dimensions.get("width"), item.get("videoWidth"), item.get("width"), item.get("original_width"))
            or 1080,
            height=_first(
                dimensions.get("height"), item.get("videoHeight"), item.get("height"), item.get("original_height")
            )
            or 1920,
        )


SCRAPERS = {
    "tiktok": TikTokScraper,
    "instagram": InstagramScraper,
}


async def scrape_link(url: str, token: str, client: httpx.AsyncClient) -> ScrapeResult:
    """Fetch the source video behind a TikTok or Instagram link."""
    platform = detect_platform(url)
    if platform is None:
        raise ScrapeError("Unsupported platform. Only TikTok and Instagram are supported.")
    return await SCRAPERS[platform](token, client).fetch(url)

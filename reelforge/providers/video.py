"""
Video synthesis providers (WAN 2.2 Animate, character replace).

Both backends are asynchronous on their side: submit a job, then poll until it
completes, fails, or we run out of polls.
"""

import asyncio
from typing import Any, Dict, Optional

import httpx

from reelforge.core.exceptions import ProviderError
from reelforge.core.logging_config import get_logger
from reelforge.providers.base import (
    GeneratedVideo,
    VideoGenerator,
    VideoRequest,
    raise_for_provider_status,
)

logger = get_logger(__name__)

# Seconds to wait before each poll; the last interval repeats
POLL_INTERVALS = (5, 10, 15, 20, 30)
MAX_POLLS = 100

SUBMIT_TIMEOUT_SECONDS = 60.0
POLL_TIMEOUT_SECONDS = 30.0


def poll_interval(attempt: int) -> int:
    return POLL_INTERVALS[min(attempt, len(POLL_INTERVALS) - 1)]


class FalWan(VideoGenerator):
    name = "FAL.ai WAN 2.2 Animate"

    QUEUE_URL = "https://queue.fal.run/fal-ai/wan"
    SUBMIT_PATH = "v2.2-14b/animate/replace"

    async def generate(self, request: VideoRequest) -> GeneratedVideo:
        api_key = self.api_key()
        headers = {"Authorization": f"Key {api_key}"}

        logger.info("Generating video", provider=self.name, resolution=request.resolution)

        submit = await self.client.post(
            f"{self.QUEUE_URL}/{self.SUBMIT_PATH}",
            headers=headers,
            json={
                "video_url": request.video_url,
                "image_url": request.image_url,
                "resolution": request.resolution or "480p",
                "guidance_scale": 1,
                "num_inference_steps": 20,
                "enable_safety_checker": False,
            },
            timeout=SUBMIT_TIMEOUT_SECONDS,
        )
        raise_for_provider_status(submit, "FAL submit")

        request_id = submit.json().get("request_id")
        if not request_id:
            raise ProviderError("FAL did not return request_id")

        logger.info("Video generation job submitted", provider=self.name, request_id=request_id)

        for attempt in range(MAX_POLLS):
            await asyncio.sleep(poll_interval(attempt))

            try:
                status_response = await self.client.get(
                    f"{self.QUEUE_URL}/requests/{request_id}/status",
                    headers=headers,
                    timeout=POLL_TIMEOUT_SECONDS,
                )
            except httpx.HTTPError as e:
                logger.debug("Status poll failed", provider=self.name, attempt=attempt, error=str(e))
                continue
            if not status_response.is_success:
                continue

            status = status_response.json()
            if status.get("status") == "COMPLETED":
                return await self._fetch_result(request_id, headers)
            if status.get("status") == "FAILED":
                raise ProviderError(f"FAL job failed: {status.get('error') or 'Unknown error'}")

        raise ProviderError("FAL job timed out")

    async def _fetch_result(self, request_id: str, headers: Dict[str, str]) -> GeneratedVideo:
        response = await self.client.get(f"{self.QUEUE_URL}/requests/{request_id}", headers=headers)
        raise_for_provider_status(response, "FAL result")

        video_url = (response.json().get("video") or {}).get("url")
        if not video_url:
            raise ProviderError("FAL returned no video URL in result")

        logger.info("Video generated", provider=self.name)
        return GeneratedVideo(url=video_url)


def extract_wavespeed_video_url(payload: Dict[str, Any]) -> Optional[str]:
    """The result endpoint has returned several shapes over time; accept all of them."""
    data = payload.get("data") or {}
    if payload.get("outputs"):
        return payload["outputs"][0]
    if data.get("outputs"):
        return data["outputs"][0]
    return data.get("video") or payload.get("video")


class WavespeedWan(VideoGenerator):
    name = "Wavespeed WAN 2.2 Animate"

    API_URL = "https://api.wavespeed.ai/api/v3"

    async def generate(self, request: VideoRequest) -> GeneratedVideo:
        api_key = self.api_key()
        headers = {"Authorization": f"Bearer {api_key}"}

        logger.info("Generating video", provider=self.name, resolution=request.resolution)

        submit = await self.client.post(
            f"{self.API_URL}/wavespeed-ai/wan-2.2/animate",
            headers=headers,
            json={
                "image": request.image_url,
                "video": request.video_url,
                "mode": "replace",
                "resolution": request.resolution or "480p",
                "seed": -1,
            },
            timeout=SUBMIT_TIMEOUT_SECONDS,
        )
        raise_for_provider_status(submit, "Wavespeed submit")

        submit_result = submit.json()
        if submit_result.get("code") != 200:
            raise ProviderError(f"Wavespeed error: {submit_result.get('message') or 'Unknown error'}")

        request_id = (submit_result.get("data") or {}).get("id")
        if not request_id:
            raise ProviderError("Wavespeed did not return request ID")

        logger.info("Video generation job submitted", provider=self.name, request_id=request_id)

        for attempt in range(MAX_POLLS):
            await asyncio.sleep(poll_interval(attempt))

            try:
                status_response = await self.client.get(
                    f"{self.API_URL}/predictions/{request_id}/result",
                    headers=headers,
                    timeout=POLL_TIMEOUT_SECONDS,
                )
            except httpx.HTTPError as e:
                logger.debug("Status poll failed", provider=self.name, attempt=attempt, error=str(e))
                continue
            if not status_response.is_success:
                continue

            payload = status_response.json()
            data = payload.get("data") or {}
            status = payload.get("status") or data.get("status")

            if status == "completed":
                video_url = extract_wavespeed_video_url(payload)
                if not video_url:
                    logger.error("Wavespeed completed but no video URL found", response=str(payload)[:500])
                    raise ProviderError("Wavespeed returned no video URL")
                logger.info("Video generated", provider=self.name)
                return GeneratedVideo(url=video_url)
            if status == "failed":
                reason = payload.get("error") or data.get("error") or "Unknown error"
                raise ProviderError(f"Wavespeed job failed: {reason}")

        raise ProviderError("Wavespeed job timed out")

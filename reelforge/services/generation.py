"""
Generation Workflow

The work done for one Generation row:

1. Resolve the source video: an uploaded Source_Video attachment, or scrape the
   TikTok/Instagram Link (and save the scraped video and cover back to the row).
2. Generate character-swapped stills from the cover frame and the AI_Character
   reference, unless Generated_Images already holds some from an earlier attempt.
3. Animate the first still onto the source video and save Output_Video.

Each intermediate result is written back as soon as it exists, so a retry
resumes after the last expensive step that succeeded.
"""

from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from reelforge.core.config import FAL
from reelforge.core.exceptions import JobValidationError
from reelforge.core.logging_config import get_logger
from reelforge.providers.base import ImageRequest, VideoRequest
from reelforge.providers.factory import provider_slug
from reelforge.providers.media import url_to_data_uri
from reelforge.providers.scraper import scrape_link
from reelforge.services.job_queue import JobSnapshot
from reelforge.services.orchestrator import RecordSink
from reelforge.services.run_config import RunConfig

logger = get_logger(__name__)

SWAP_PROMPT = (
    "Replace the person on the first image by the person from the second image. "
    "Keep the exact same pose, clothing style, and background. "
    "The result should look like the person from the second image is in the scene from the first image."
)

DEFAULT_WIDTH = 720
DEFAULT_HEIGHT = 1280


class Attachment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str


class GenerationFields(BaseModel):
    """The Generation table columns the workflow reads."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    link: str = Field(default="", alias="Link")
    source_video: List[Attachment] = Field(default_factory=list, alias="Source_Video")
    ai_character: List[Attachment] = Field(default_factory=list, alias="AI_Character")
    cover_image: List[Attachment] = Field(default_factory=list, alias="Cover_Image")
    generated_images: List[Attachment] = Field(default_factory=list, alias="Generated_Images")


class GenerationPayload(BaseModel):
    id: str
    fields: GenerationFields = Field(default_factory=GenerationFields)


def _attachments(urls: List[str]) -> List[Dict[str, str]]:
    return [{"url": url} for url in urls]


class GenerationHandler:
    def __init__(
        self,
        run_config: RunConfig,
        sink: RecordSink,
        apify_token: str,
        client: httpx.AsyncClient,
        table: str = "Generation",
    ):
        self.config = run_config
        self.sink = sink
        self.apify_token = apify_token
        self.client = client
        self.table = table

    async def __call__(self, job: JobSnapshot) -> None:
        try:
            payload = GenerationPayload.model_validate(job.payload)
        except ValidationError as e:
            raise JobValidationError(job.id, f"Malformed job payload: {e}") from e

        record_id = payload.id
        fields = payload.fields

        if not fields.ai_character:
            raise JobValidationError(record_id, "AI_Character is required")
        character_url = fields.ai_character[0].url

        video_url, cover_url, width, height = await self._resolve_source(record_id, fields)

        if fields.generated_images:
            image_urls = [image.url for image in fields.generated_images]
            logger.info("Reusing generated images", count=len(image_urls))
        else:
            image_urls = await self._generate_images(record_id, cover_url, character_url, width, height)

        video = await self.config.video_generator.generate(
            VideoRequest(
                video_url=video_url,
                image_url=image_urls[0],
                resolution=self.config.video_resolution,
            )
        )

        await self.sink.update_record(
            self.table,
            record_id,
            {"Output_Video": _attachments([video.url]), "Error_Message": ""},
        )

    async def _resolve_source(self, record_id: str, fields: GenerationFields) -> tuple[str, str, int, int]:
        width, height = DEFAULT_WIDTH, DEFAULT_HEIGHT
        existing_cover: Optional[str] = fields.cover_image[0].url if fields.cover_image else None

        if fields.source_video:
            video_url = fields.source_video[0].url
            cover_url = existing_cover
        elif fields.link:
            scraped = await scrape_link(fields.link, self.apify_token, self.client)
            video_url = scraped.video_url
            cover_url = scraped.cover_url or existing_cover
            width, height = scraped.width, scraped.height

            updates: Dict[str, Any] = {"Source_Video": _attachments([scraped.video_url])}
            if scraped.cover_url:
                updates["Cover_Image"] = _attachments([scraped.cover_url])
            await self.sink.update_record(self.table, record_id, updates)
        else:
            raise JobValidationError(record_id, "No Link or Source_Video provided")

        if not cover_url:
            raise JobValidationError(
                record_id,
                "No cover image available. Please upload a video with a cover or use a TikTok/Instagram link.",
            )
        return video_url, cover_url, width, height

    async def _generate_images(
        self, record_id: str, cover_url: str, character_url: str, width: int, height: int
    ) -> List[str]:
        if provider_slug(self.config.api_provider) == FAL:
            ref_image_urls = [
                await url_to_data_uri(cover_url, self.client),
                await url_to_data_uri(character_url, self.client),
            ]
        else:
            ref_image_urls = [cover_url, character_url]

        images = await self.config.image_generator.generate(
            ImageRequest(
                prompt=SWAP_PROMPT,
                ref_image_urls=ref_image_urls,
                num_images=self.config.num_images,
                enable_nsfw=self.config.enable_nsfw,
                size=f"{width}x{height}",
            )
        )

        image_urls = [image.url for image in images]
        await self.sink.update_record(self.table, record_id, {"Generated_Images": _attachments(image_urls)})
        return image_urls

"""
Run configuration: which provider and model this batch uses.

Operators pick the provider, image model, image count, video resolution and
NSFW switch in the first row of the Airtable Configuration table. The row is
read once per run; generators are built with a rotating key supplier for the
chosen provider.
"""

from dataclasses import dataclass
from typing import Dict

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from reelforge.core.config import CredentialSet
from reelforge.core.exceptions import ConfigurationError
from reelforge.core.logging_config import get_logger
from reelforge.providers.base import ImageGenerator, VideoGenerator
from reelforge.providers.factory import create_image_generator, create_video_generator, provider_slug
from reelforge.services.airtable import AirtableClient
from reelforge.services.api_rotation import ApiRotationManager

logger = get_logger(__name__)


class ConfigurationFields(BaseModel):
    """Columns of the Configuration table, with the defaults used when a cell is blank."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_provider: str = Field(default="FAL.ai", alias="API_Provider")
    image_model: str = Field(default="Seedream 4.5", alias="Image_Model")
    num_images: int = Field(default=4, alias="num_images", ge=1)
    video_resolution: str = Field(default="480p", alias="Video_Resolution")
    enable_nsfw: bool = Field(default=False, alias="Enable_NSFW")


@dataclass
class RunConfig:
    api_provider: str
    image_model: str
    num_images: int
    video_resolution: str
    enable_nsfw: bool
    image_generator: ImageGenerator
    video_generator: VideoGenerator


class AirtableRunConfigProvider:
    def __init__(
        self,
        airtable: AirtableClient,
        rotation: ApiRotationManager,
        credentials: Dict[str, CredentialSet],
        client: httpx.AsyncClient,
        table: str = "Configuration",
    ):
        self.airtable = airtable
        self.rotation = rotation
        self.credentials = credentials
        self.client = client
        self.table = table

    async def load(self) -> RunConfig:
        """
        Raises:
            ConfigurationError: no configuration row, unknown provider, or no keys for it
        """
        logger.info("Loading configuration from Airtable", table=self.table)

        records = await self.airtable.fetch_records(self.table)
        if not records:
            raise ConfigurationError(f"No configuration found in Airtable {self.table} table")

        # Blank cells are simply absent from Airtable's fields dict
        raw = {key: value for key, value in (records[0].get("fields") or {}).items() if value not in ("", None)}
        try:
            fields = ConfigurationFields.model_validate(raw)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration row: {e}") from e

        slug = provider_slug(fields.api_provider)
        credential_set = self.credentials.get(slug)
        if credential_set is None or not credential_set.keys:
            raise ConfigurationError(f"{fields.api_provider} API key is missing")

        # Image and video calls rotate independently (rows "fal:image", "fal:video")
        image_key = self.rotation.key_supplier(f"{slug}:image", credential_set.keys, credential_set.requests_per_key)
        video_key = self.rotation.key_supplier(f"{slug}:video", credential_set.keys, credential_set.requests_per_key)
        image_generator = create_image_generator(fields.api_provider, fields.image_model, image_key, self.client)
        video_generator = create_video_generator(fields.api_provider, video_key, self.client)

        logger.info(
            "Configuration loaded",
            api_provider=fields.api_provider,
            image_model=fields.image_model,
            image_api=image_generator.name,
            video_api=video_generator.name,
            num_images=fields.num_images,
            video_resolution=fields.video_resolution,
            api_keys=len(credential_set.keys),
        )

        return RunConfig(
            api_provider=fields.api_provider,
            image_model=fields.image_model,
            num_images=fields.num_images,
            video_resolution=fields.video_resolution,
            enable_nsfw=fields.enable_nsfw,
            image_generator=image_generator,
            video_generator=video_generator,
        )

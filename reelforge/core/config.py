from dataclasses import dataclass
import os
from typing import Any, Dict, List, Mapping, Optional, Tuple

from dotenv import load_dotenv
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

FAL = "fal"
WAVESPEED = "wavespeed"


def load_multiple_keys(prefix: str, environ: Optional[Mapping[str, str]] = None) -> Tuple[str, ...]:
    """
    Collect PREFIX_1, PREFIX_2, ... until the first gap.

    Falls back to the unnumbered PREFIX variable when no numbered key is set.
    """
    env = os.environ if environ is None else environ
    keys: List[str] = []
    index = 1
    while env.get(f"{prefix}_{index}"):
        keys.append(env[f"{prefix}_{index}"])
        index += 1
    if not keys and env.get(prefix):
        keys.append(env[prefix])
    return tuple(keys)


@dataclass(frozen=True)
class CredentialSet:
    """Interchangeable API keys for one provider and how many calls each one takes."""

    keys: Tuple[str, ...]
    requests_per_key: int = 1


class Settings(BaseSettings):
    PROJECT_NAME: str = "reelforge"
    ENVIRONMENT: str = "production"

    # Job store / rotation state
    DATABASE_URL: str = "sqlite:///queue.db"

    # Airtable
    AIRTABLE_TOKEN: str = ""
    AIRTABLE_BASE_ID: str = ""
    AIRTABLE_API_URL: str = "https://api.airtable.com/v0"
    GENERATION_TABLE: str = "Generation"
    CONFIGURATION_TABLE: str = "Configuration"

    # Apify (TikTok / Instagram scraping)
    APIFY_TOKEN: str = ""

    # Generation providers. Filled from FAL_API_KEY_1..N / WAVESPEED_API_KEY_1..N
    FAL_API_KEYS: Tuple[str, ...] = ()
    WAVESPEED_API_KEYS: Tuple[str, ...] = ()
    FAL_REQUESTS_PER_KEY: int = 1
    WAVESPEED_REQUESTS_PER_KEY: int = 1

    # Processing
    CONCURRENCY: int = 2
    MAX_RETRIES: int = 3
    RETRY_BACKOFF_SECONDS: List[float] = [1.0, 2.0, 4.0]
    STALE_JOB_TIMEOUT_MINUTES: int = 30
    JOB_RETENTION_DAYS: int = 7
    HTTP_TIMEOUT_SECONDS: float = 300.0

    # Circuit breaker
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_COOLDOWN_SECONDS: float = 60.0

    # Observability
    SENTRY_DSN: str = ""
    LOG_JSON: bool = False
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore", frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _collect_numbered_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            if not data.get("FAL_API_KEYS"):
                data["FAL_API_KEYS"] = load_multiple_keys("FAL_API_KEY")
            if not data.get("WAVESPEED_API_KEYS"):
                data["WAVESPEED_API_KEYS"] = load_multiple_keys("WAVESPEED_API_KEY")
        return data

    def credential_sets(self) -> Dict[str, CredentialSet]:
        return {
            FAL: CredentialSet(self.FAL_API_KEYS, self.FAL_REQUESTS_PER_KEY),
            WAVESPEED: CredentialSet(self.WAVESPEED_API_KEYS, self.WAVESPEED_REQUESTS_PER_KEY),
        }

    def validate_required(self) -> List[str]:
        """Return the list of configuration problems; empty when the run can start."""
        errors = []
        if not self.AIRTABLE_TOKEN:
            errors.append("AIRTABLE_TOKEN is missing")
        if not self.AIRTABLE_BASE_ID:
            errors.append("AIRTABLE_BASE_ID is missing")
        if not self.APIFY_TOKEN:
            errors.append("APIFY_TOKEN is missing")
        if not self.FAL_API_KEYS and not self.WAVESPEED_API_KEYS:
            errors.append("At least one API provider is required (FAL_API_KEY_1 or WAVESPEED_API_KEY_1)")
        if self.CONCURRENCY < 1:
            errors.append("CONCURRENCY must be at least 1")
        if self.MAX_RETRIES < 1:
            errors.append("MAX_RETRIES must be at least 1")
        if self.CIRCUIT_FAILURE_THRESHOLD < 1:
            errors.append("CIRCUIT_FAILURE_THRESHOLD must be at least 1")
        return errors

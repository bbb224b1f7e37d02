"""
Exception types raised by reelforge.

Everything inherits from ReelforgeError so callers can catch the whole family.
"""


class ReelforgeError(Exception):
    """Base exception for all reelforge failures."""


class ConfigurationError(ReelforgeError):
    """Run-level configuration is missing or invalid. Aborts the run."""


class RecordStoreError(ReelforgeError):
    """The external record store rejected a read or write."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class ProviderError(ReelforgeError):
    """A generation provider failed or returned an empty result."""


class ScrapeError(ProviderError):
    """Fetching the source video for a link failed."""


class JobValidationError(ReelforgeError):
    """A job payload is missing input the workflow needs."""

    def __init__(self, job_id: str, reason: str):
        self.job_id = job_id
        self.reason = reason
        super().__init__(reason)


class NoCredentialsError(ReelforgeError):
    """No API keys are configured for a provider."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"No API keys available for provider: {provider}")


__all__ = [
    "ReelforgeError",
    "ConfigurationError",
    "RecordStoreError",
    "ProviderError",
    "ScrapeError",
    "JobValidationError",
    "NoCredentialsError",
]

"""Application settings loaded from environment variables and .env file."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import (
    DEFAULT_BASE_URL,
    DEFAULT_CONCURRENCY,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_RETRIES,
    DEFAULT_RETRY_DELAY,
)


class Settings(BaseSettings):
    """Settings for the Socket API client.

    Every field maps to a ``SOCKET_*`` environment variable.
    """

    model_config = SettingsConfigDict(
        env_prefix="SOCKET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_token: str | None = None
    base_url: str = DEFAULT_BASE_URL
    timeout: int = DEFAULT_HTTP_TIMEOUT  # ms
    retries: int = DEFAULT_RETRIES
    retry_delay: int = DEFAULT_RETRY_DELAY  # ms
    user_agent: str | None = None
    concurrency: int = DEFAULT_CONCURRENCY


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

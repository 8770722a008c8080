"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root (.env is found no matter where the process starts)
_PROJECT_ROOT = Path(__file__).parent.parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Bluesky API
    bsky_service_url: str = Field(
        default="https://bsky.social", description="PDS used for login and authenticated calls"
    )
    bsky_public_service_url: str = Field(
        default="https://public.api.bsky.app",
        description="Public AppView used for reads when not authenticated",
    )
    bsky_web_url: str = Field(
        default="https://bsky.app", description="Web client used for profile/post links"
    )
    bsky_username: Optional[str] = Field(default=None, description="Home handle")
    bsky_did: Optional[str] = Field(
        default=None, description="DID for the home handle (skips resolution)"
    )
    bsky_app_password: Optional[str] = Field(default=None, description="App password")
    http_timeout: float = Field(default=15.0, description="Upstream request timeout in seconds")

    # Caching
    cache_enabled: bool = Field(default=True, description="Global cache switch")
    cache_duration_ms: int = Field(default=3_600_000, description="Default cache TTL (1 hour)")
    feed_cache_duration_ms: int = Field(
        default=300_000, description="Upper bound for feed TTLs (5 minutes)"
    )

    # Embed styling defaults
    default_theme: Literal["light", "dark"] = Field(default="light")
    default_width: str = Field(default="100%")
    max_width: int = Field(default=550, description="oEmbed default maxwidth")

    # Feeds
    default_feed_limit: int = Field(default=10)
    feed_retry_limit: int = Field(
        default=5, description="Limit used for the second feed attempt after a failure"
    )
    fallback_handles: list[str] = Field(
        default_factory=list,
        description="Handles that get a degraded profile/feed instead of an error",
    )
    suggested_handles: list[str] = Field(
        default_factory=list, description="Profiles suggested on feed pages"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )

    @property
    def home_handle(self) -> Optional[str]:
        if not self.bsky_username:
            return None
        return self.bsky_username.strip().lstrip("@") or None

    @property
    def feed_ttl_ms(self) -> int:
        return min(self.cache_duration_ms, self.feed_cache_duration_ms)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

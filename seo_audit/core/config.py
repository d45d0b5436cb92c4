"""
Configuration system with environment-based settings.
Uses pydantic-settings for validation and type safety.
"""

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    # Application
    APP_VERSION: str = "1.0.0"
    ENV: Literal["development", "staging", "production"] = "development"
    DEBUG: bool = False

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 3001

    # CORS (comma-separated in the environment)
    CORS_ORIGINS: Annotated[list[str], NoDecode] = ["http://localhost:5173"]

    # Crawler
    CRAWLER_MAX_PAGES: int = Field(50, ge=1)
    CRAWLER_MAX_DEPTH: int = Field(3, ge=0)
    CRAWLER_REQUEST_TIMEOUT_MS: int = Field(10_000, gt=0)
    CRAWLER_RESPECT_ROBOTS: bool = True
    CRAWLER_USER_AGENT: str = "SEOAuditBot/1.0 (+https://github.com/seo-audit-tool)"
    CRAWLER_MAX_CONCURRENCY: int = Field(5, ge=1)
    CRAWLER_MAX_REDIRECTS: int = 10

    # External link probing
    EXTERNAL_LINK_TIMEOUT_MS: int = 5_000
    EXTERNAL_LINK_SAMPLE_SIZE: int = 50   # Bounds audit latency
    EXTERNAL_LINK_MAX_REDIRECTS: int = 5

    # Live progress
    PROGRESS_BACKEND: Literal["memory", "redis"] = "memory"
    PROGRESS_GRACE_SECONDS: int = 60      # Kept this long after complete/failed

    # Redis (only used when PROGRESS_BACKEND=redis)
    REDIS_DSN: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 50
    REDIS_SOCKET_TIMEOUT: float = 5.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: Literal["json", "console"] = "console"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors(cls, v: str | list) -> list:
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance - created once per process."""
    return Settings()

"""Application settings loaded from environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_URLS_PER_SITEMAP = 50_000


class Settings(BaseSettings):
    """Runtime configuration sourced from environment variables and .env."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    DATABASE_URL: str = "sqlite+aiosqlite:///./sitemap-builder.sqlite"
    HOST: str = "0.0.0.0"
    PORT: int = Field(default=8000, ge=1, le=65535)
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    LOG_FORMAT: Literal["json", "text"] = "text"
    LOG_FILE: Path | None = None
    LOG_FILE_MAX_BYTES: int = Field(default=10_485_760, ge=1)
    LOG_FILE_BACKUP_COUNT: int = Field(default=5, ge=1)
    SITEMAP_OUTPUT_DIR: Path = Path("./generated-sitemaps")
    SITEMAP_BASE_URL: str = "https://example.com"
    SITEMAP_MAX_URLS_PER_FILE: int = Field(
        default=MAX_URLS_PER_SITEMAP, ge=1, le=MAX_URLS_PER_SITEMAP
    )
    BATCH_MAX_CONCURRENT_FILES: int = Field(default=3, ge=1, le=10)
    BATCH_MAX_RETRIES: int = Field(default=2, ge=0, le=5)
    BATCH_FILE_TIMEOUT_SECONDS: int = Field(default=300, ge=1)
    MAX_UPLOAD_SIZE_MB: int = Field(default=25, ge=1)
    DOWNLOAD_TOKEN_TTL_SECONDS: int = Field(default=86_400, ge=1)
    JOB_RECORD_TTL_SECONDS: int = Field(default=86_400, ge=1)
    SCHEDULER_ENABLED: bool = True
    CLEANUP_INTERVAL_SECONDS: int = Field(default=3600, ge=1)
    SHUTDOWN_GRACE_PERIOD_SECONDS: int = Field(default=30, ge=1)

    @field_validator("LOG_FILE", mode="before")
    @classmethod
    def parse_log_file(cls, value: object) -> object:
        if value in (None, ""):
            return None
        return value

    @field_validator("SITEMAP_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def max_upload_size_bytes(self) -> int:
        return self.MAX_UPLOAD_SIZE_MB * 1024 * 1024


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()

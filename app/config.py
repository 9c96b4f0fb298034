"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Jellyfin", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=60421, alias="PORT")
    public_base_url: str | None = Field(default=None, alias="PUBLIC_URL")

    jellyfin_server: str | None = Field(default=None, alias="JELLYFIN_SERVER")
    jellyfin_user: str = Field(default="", alias="JELLYFIN_USER")
    jellyfin_password: str = Field(default="", alias="JELLYFIN_PASSWORD")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_language: str = Field(default="sv-SE", alias="TMDB_LANGUAGE")

    data_dir: Path = Field(default=Path("./data"), alias="DATA_DIR")
    cache_backend: Literal["json", "database", "memory"] = Field(
        default="json", alias="CACHE_BACKEND"
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/jellybridge.db", alias="DATABASE_URL"
    )

    catalog_cache_seconds: int = Field(
        default=21_600, alias="CATALOG_CACHE_TTL", ge=0
    )
    item_cache_seconds: int = Field(default=1_800, alias="ITEM_CACHE_TTL", ge=0)
    metadata_cache_seconds: int = Field(
        default=86_400, alias="METADATA_CACHE_TTL", ge=0
    )

    catalog_concurrency: int = Field(
        default=8, alias="CATALOG_CONCURRENCY", ge=1, le=64
    )
    library_page_size: int = Field(
        default=500, alias="LIBRARY_PAGE_SIZE", ge=1, le=10_000
    )
    upstream_retries: int = Field(default=2, alias="UPSTREAM_RETRIES", ge=0, le=10)

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("jellyfin_server", "public_base_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value: object) -> object:
        """Drop trailing slashes so paths can be appended directly."""

        if isinstance(value, str):
            value = value.strip().rstrip("/")
            return value or None
        return value

    @field_validator("tmdb_api_key", mode="before")
    @classmethod
    def _blank_key_is_missing(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def public_url(self) -> str:
        """Return the externally reachable base URL of the addon."""

        return self.public_base_url or f"http://localhost:{self.server_port}"

    @property
    def metadata_enabled(self) -> bool:
        return bool(self.tmdb_api_key)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()

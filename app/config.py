"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Iterable, Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .stable_lanes import STABLE_LANES, StableLaneDefinition


DEFAULT_LANE_KEYS: tuple[str, ...] = tuple(definition.key for definition in STABLE_LANES)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="LaneCache", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    recommendation_api_url: HttpUrl | None = Field(
        default=None, alias="RECOMMENDATION_API_URL"
    )

    metadata_cache_seconds: int = Field(
        default=1_800, alias="METADATA_CACHE_TTL", ge=1
    )
    snapshot_ttl_seconds: int = Field(default=3_600, alias="SNAPSHOT_TTL", ge=1)
    enrichment_concurrency: int = Field(
        default=12, alias="ENRICHMENT_CONCURRENCY", ge=1, le=50
    )
    enrichment_window_delay: float = Field(
        default=0.05, alias="ENRICHMENT_WINDOW_DELAY", ge=0, le=5
    )
    metadata_timeout_seconds: float = Field(
        default=10.0, alias="METADATA_TIMEOUT", gt=0
    )
    pending_timeout_seconds: int = Field(
        default=120, alias="PENDING_TIMEOUT", ge=1
    )
    lane_size: int = Field(default=15, alias="LANE_SIZE", ge=1, le=100)
    lane_keys: tuple[str, ...] = Field(default=DEFAULT_LANE_KEYS, alias="LANE_KEYS")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./lanecache.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("lane_keys", mode="before")
    @classmethod
    def _parse_lane_keys(cls, value: object) -> tuple[str, ...]:
        """Normalise lane key selections from environment values."""

        if value is None:
            return DEFAULT_LANE_KEYS
        if isinstance(value, str):
            raw_values = [part.strip() for part in value.split(",")]
        elif isinstance(value, Iterable):
            raw_values = [str(part).strip() for part in value]
        else:
            raise TypeError("LANE_KEYS must be a string or iterable of strings")

        cleaned: list[str] = []
        for entry in raw_values:
            if not entry:
                continue
            slug = entry.replace("_", "-").replace(" ", "-").lower()
            slug = "-".join(filter(None, slug.split("-")))
            if not slug:
                continue
            if slug not in DEFAULT_LANE_KEYS:
                raise ValueError("Unknown lane keys configured")
            if slug not in cleaned:
                cleaned.append(slug)
        if not cleaned:
            return DEFAULT_LANE_KEYS
        return tuple(cleaned)

    @property
    def lane_definitions(self) -> tuple[StableLaneDefinition, ...]:
        """Return ordered lane definitions for the selected keys."""

        definition_map = {definition.key: definition for definition in STABLE_LANES}
        return tuple(definition_map[key] for key in self.lane_keys)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()

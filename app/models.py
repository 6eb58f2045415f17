"""Pydantic models describing recommendation payloads."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any, Literal, NamedTuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .genres import ALL_GENRES, GenreRef, parse_genre_refs
from .utils import slugify

MediaType = Literal["movie", "tv"]
MediaFilter = Literal["all", "movie", "tv"]

_MEDIA_TYPE_ALIASES = {
    "movie": "movie",
    "movies": "movie",
    "film": "movie",
    "tv": "tv",
    "series": "tv",
    "show": "tv",
    "shows": "tv",
}


def normalize_media_type(value: object) -> object:
    """Map provider spellings (``series``, ``show``) onto ``movie``/``tv``."""

    if isinstance(value, str):
        return _MEDIA_TYPE_ALIASES.get(value.strip().lower(), value)
    return value


class ItemKey(NamedTuple):
    """Identity of a content item: ids are only unique per media type."""

    media_type: str
    external_id: int

    def __str__(self) -> str:
        return f"{self.media_type}:{self.external_id}"


class FilterKey(NamedTuple):
    """Media type and genre combination a snapshot was fetched for."""

    media_type: str = "all"
    genre: str = ALL_GENRES

    def storage_key(self, user_id: str) -> str:
        return f"recs:{user_id}:{self.media_type}:{slugify(self.genre)}"


class ContentItem(BaseModel):
    """Canonical view of one movie or show, whatever source it came from."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    external_id: int = Field(
        validation_alias=AliasChoices(
            "external_id", "externalId", "tmdb_id", "tmdbId", "id"
        )
    )
    media_type: MediaType = Field(
        validation_alias=AliasChoices("media_type", "mediaType", "type")
    )
    title: str = Field(default="", validation_alias=AliasChoices("title", "name"))
    poster_ref: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "poster_ref", "posterRef", "poster_path", "posterPath", "poster_url", "poster"
        ),
    )
    backdrop_ref: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "backdrop_ref", "backdropRef", "backdrop_path", "backdropPath", "background"
        ),
    )
    overview: str = ""
    genres: list[GenreRef] = Field(
        default_factory=list, validation_alias=AliasChoices("genres", "genre_ids")
    )
    rating: float | None = Field(
        default=None, validation_alias=AliasChoices("rating", "vote_average")
    )
    release_date: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "release_date", "releaseDate", "first_air_date"
        ),
    )
    original_language: str | None = None
    origin_country: list[str] = Field(default_factory=list)
    is_fully_hydrated: bool = Field(
        default=False,
        validation_alias=AliasChoices("is_fully_hydrated", "isFullyHydrated"),
    )

    @field_validator("media_type", mode="before")
    @classmethod
    def _normalize_media_type(cls, value: object) -> object:
        return normalize_media_type(value)

    @field_validator("title", "overview", mode="before")
    @classmethod
    def _blank_text(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("poster_ref", "backdrop_ref", "release_date", mode="before")
    @classmethod
    def _empty_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("genres", mode="before")
    @classmethod
    def _parse_genres(cls, value: object) -> object:
        return parse_genre_refs(value)  # type: ignore[arg-type]

    @field_validator("origin_country", mode="before")
    @classmethod
    def _parse_countries(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @property
    def key(self) -> ItemKey:
        return ItemKey(self.media_type, self.external_id)

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "ContentItem":
        """Build an item from a flat row or a row with a nested ``content`` object.

        Nested metadata fills the gaps; values present on the outer row win.
        """

        nested = data.get("content")
        merged: dict[str, Any] = dict(nested) if isinstance(nested, Mapping) else {}
        for key, value in data.items():
            if key == "content" or value is None:
                continue
            merged[key] = value
        return cls.model_validate(merged)

    def to_payload(self, genre_names: list[str] | None = None) -> dict[str, object]:
        """Return the camelCase payload served to the UI."""

        payload: dict[str, object] = {
            "id": str(self.key),
            "externalId": self.external_id,
            "mediaType": self.media_type,
            "title": self.title,
            "overview": self.overview,
            "hydrated": self.is_fully_hydrated,
        }
        if self.poster_ref:
            payload["poster"] = self.poster_ref
        if self.backdrop_ref:
            payload["backdrop"] = self.backdrop_ref
        if self.rating is not None:
            payload["rating"] = self.rating
        if self.release_date:
            payload["releaseDate"] = self.release_date
        if genre_names is not None:
            payload["genres"] = genre_names
        return payload


_RECONCILED_FIELDS = (
    "title",
    "poster_ref",
    "backdrop_ref",
    "overview",
    "genres",
    "rating",
    "release_date",
    "original_language",
    "origin_country",
)


def _has_value(value: object) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, list, tuple)) and not value:
        return False
    return True


def reconcile(stale: ContentItem, fresh: ContentItem) -> ContentItem:
    """Merge two views of the same item; fresh non-empty fields win."""

    if stale.key != fresh.key:
        raise ValueError(f"Cannot reconcile {stale.key} with {fresh.key}")

    update: dict[str, Any] = {
        name: getattr(fresh, name)
        for name in _RECONCILED_FIELDS
        if _has_value(getattr(fresh, name))
    }
    update["is_fully_hydrated"] = stale.is_fully_hydrated or fresh.is_fully_hydrated
    return stale.model_copy(update=update)


class RecommendationSnapshot(BaseModel):
    """Most recent recommendation list fetched for one filter combination."""

    media_type: MediaFilter = "all"
    genre: str = ALL_GENRES
    items: list[ContentItem] = Field(default_factory=list)
    fetched_at: datetime

    @property
    def filter_key(self) -> FilterKey:
        return FilterKey(self.media_type, self.genre)


class DisplayHints(BaseModel):
    show_match_score: bool = False
    show_service_badge: bool = False
    show_progress: bool = False


class Lane(BaseModel):
    """Named slice of the filtered pool rendered as one horizontal row."""

    key: str
    title: str
    subtitle: str | None = None
    items: list[ContentItem] = Field(default_factory=list)
    display_hints: DisplayHints = Field(default_factory=DisplayHints)


class HeroAndLanes(BaseModel):
    """Hero pick plus lanes, along with the state flags of the underlying data."""

    hero: ContentItem | None = None
    lanes: list[Lane] = Field(default_factory=list)
    loading: bool = False
    using_cached: bool = False
    error: str | None = None

"""Metadata provider backed by The Movie Database (TMDB)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import Settings
from ..models import ContentItem

logger = logging.getLogger(__name__)

POSTER_BASE_URL = "https://image.tmdb.org/t/p/w500"
BACKDROP_BASE_URL = "https://image.tmdb.org/t/p/w780"


class TMDBMetadataClient:
    """Fetches full metadata records for single titles."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.tmdb_api_key:
            raise ValueError("TMDB API key is required when initialising TMDBMetadataClient")
        self._settings = settings
        self._client = http_client

    async def fetch_metadata(self, external_id: int, media_type: str) -> ContentItem:
        """Return the hydrated item; HTTP failures propagate to the caller."""

        endpoint = f"/{'movie' if media_type == 'movie' else 'tv'}/{external_id}"
        params = {
            "api_key": self._settings.tmdb_api_key,
            "language": "en-US",
        }
        response = await self._client.get(endpoint, params=params)
        if response.status_code >= 400:
            logger.debug(
                "TMDB details fetch for %s %s failed: %s",
                media_type,
                external_id,
                response.text,
            )
        response.raise_for_status()
        return self._to_item(response.json(), media_type)

    def _to_item(self, payload: dict[str, Any], media_type: str) -> ContentItem:
        date_key = "release_date" if media_type == "movie" else "first_air_date"
        origin_country = payload.get("origin_country")
        if not origin_country:
            origin_country = [
                country.get("iso_3166_1")
                for country in payload.get("production_countries") or []
                if isinstance(country, dict) and country.get("iso_3166_1")
            ]
        return ContentItem(
            external_id=int(payload["id"]),
            media_type=media_type,  # type: ignore[arg-type]
            title=payload.get("title") or payload.get("name") or "",
            poster_ref=self._build_image_url(payload.get("poster_path"), POSTER_BASE_URL),
            backdrop_ref=self._build_image_url(
                payload.get("backdrop_path"), BACKDROP_BASE_URL
            ),
            overview=payload.get("overview") or "",
            genres=payload.get("genres") or payload.get("genre_ids") or [],
            rating=payload.get("vote_average"),
            release_date=payload.get(date_key),
            original_language=payload.get("original_language"),
            origin_country=origin_country,
            is_fully_hydrated=True,
        )

    @staticmethod
    def _build_image_url(path: str | None, base_url: str) -> str | None:
        if not path:
            return None
        if path.startswith("http"):
            return path
        return f"{base_url}{path}"

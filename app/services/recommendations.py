"""Client for the personalised recommendation provider."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from ..genres import ALL_GENRES
from ..models import ContentItem, FilterKey

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = {429, 502, 503, 504}


class RecommendationClient:
    """Fetches ranked recommendation lists for a user and filter."""

    _PATH = "/users/{user_id}/recommendations"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        limit: int = 100,
        max_attempts: int = 2,
        retry_delay: float = 0.5,
    ) -> None:
        if not str(http_client.base_url):
            raise ValueError(
                "RECOMMENDATION_API_URL is required when initialising RecommendationClient"
            )
        self._client = http_client
        self._limit = limit
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay

    async def fetch_recommendations(
        self, user_id: str, filter_key: FilterKey, *, force_refresh: bool = False
    ) -> list[ContentItem]:
        """Return the provider's items; transport and HTTP errors propagate."""

        params: dict[str, Any] = {
            "mediaType": filter_key.media_type,
            "limit": self._limit,
        }
        if filter_key.genre and filter_key.genre != ALL_GENRES:
            params["genre"] = filter_key.genre
        if force_refresh:
            params["refresh"] = "true"
        path = self._PATH.format(user_id=user_id)

        attempt = 1
        response = await self._client.get(path, params=params)
        while response.status_code in RETRYABLE_STATUSES and attempt < self._max_attempts:
            logger.info(
                "Recommendation provider returned %s for %s, retrying",
                response.status_code,
                user_id,
            )
            await asyncio.sleep(self._retry_delay)
            attempt += 1
            response = await self._client.get(path, params=params)
        response.raise_for_status()
        return self._parse_items(response.json())

    @staticmethod
    def _parse_items(payload: Any) -> list[ContentItem]:
        if isinstance(payload, dict):
            raw_items = payload.get("items") or payload.get("results") or []
        else:
            raw_items = payload
        if not isinstance(raw_items, list):
            raise ValueError("Recommendation payload does not contain a list of items")

        items: list[ContentItem] = []
        for entry in raw_items:
            if not isinstance(entry, dict):
                continue
            try:
                items.append(ContentItem.from_payload(entry))
            except ValidationError as exc:
                logger.warning("Skipping malformed recommendation entry: %s", exc)
        return items

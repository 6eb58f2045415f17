"""Interfaces of the collaborators the cache components depend on."""

from __future__ import annotations

from typing import Awaitable, Callable, Protocol

from ..models import ContentItem, FilterKey, ItemKey


class MetadataProvider(Protocol):
    async def fetch_metadata(self, external_id: int, media_type: str) -> ContentItem:
        ...


class RecommendationProvider(Protocol):
    async def fetch_recommendations(
        self, user_id: str, filter_key: FilterKey, *, force_refresh: bool = False
    ) -> list[ContentItem]:
        ...


class BlobStore(Protocol):
    async def get(self, key: str) -> bytes | None:
        ...

    async def put(self, key: str, value: bytes) -> None:
        ...


MembershipListener = Callable[[frozenset[ItemKey]], Awaitable[None]]


class ListMembership(Protocol):
    async def current_ids(self) -> frozenset[ItemKey]:
        ...

    def subscribe(self, listener: MembershipListener) -> Callable[[], None]:
        ...

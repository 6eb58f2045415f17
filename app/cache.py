"""In-memory metadata cache with lazy TTL expiry."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from .models import ContentItem, ItemKey

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class CacheEntry:
    """A fetched item together with the moment it was stored."""

    key: ItemKey
    value: ContentItem
    stored_at: datetime


class MetadataCache:
    """Keyed TTL cache for hydrated content items.

    Entries are never evicted by size; an expired entry is simply reported as a
    miss until the next ``put`` overwrites it.
    """

    def __init__(self, ttl: timedelta, *, clock: Clock = utcnow) -> None:
        if ttl <= timedelta(0):
            raise ValueError("Cache TTL must be positive")
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[ItemKey, CacheEntry] = {}

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def get(self, key: ItemKey) -> ContentItem | None:
        """Return the cached item, or ``None`` when missing or expired."""

        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self._ttl:
            return None
        return entry.value

    def put(self, key: ItemKey, item: ContentItem) -> None:
        self._entries[key] = CacheEntry(key=key, value=item, stored_at=self._clock())

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return isinstance(key, tuple) and self.get(key) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._entries)

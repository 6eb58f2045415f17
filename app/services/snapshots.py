"""Stale-while-revalidate management of recommendation snapshots."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Sequence

from pydantic import ValidationError

from ..cache import Clock, utcnow
from ..errors import LaneCacheError, NoSnapshotAvailable, RefreshFailure
from ..genres import ALL_GENRES, GenreResolver
from ..models import (
    ContentItem,
    FilterKey,
    ItemKey,
    RecommendationSnapshot,
    normalize_media_type,
)
from .enrichment import EnrichmentPipeline
from .ports import BlobStore, RecommendationProvider

logger = logging.getLogger(__name__)


class SnapshotState(str, Enum):
    EMPTY = "empty"
    STALE = "stale"
    REFRESHING = "refreshing"
    FRESH = "fresh"


@dataclass
class FilteredResult:
    """Items served for a filter plus the flags describing how fresh they are."""

    items: list[ContentItem]
    state: SnapshotState
    fetched_at: datetime | None = None
    loading: bool = False
    using_cached: bool = False
    error: str | None = None
    pending: asyncio.Task[None] | None = field(default=None, repr=False)


@dataclass
class _FilterSlot:
    snapshot: RecommendationSnapshot | None = None
    error: LaneCacheError | None = None
    checked_store: bool = False


class SnapshotManager:
    """Holds one snapshot per filter and refreshes them in the background.

    Reads never wait on the provider while any snapshot exists for the filter,
    even a stale one. At most one refresh runs per filter; further requests
    join the running one.
    """

    def __init__(
        self,
        user_id: str,
        provider: RecommendationProvider,
        pipeline: EnrichmentPipeline,
        store: BlobStore,
        *,
        ttl: timedelta,
        resolver: GenreResolver | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._user_id = user_id
        self._provider = provider
        self._pipeline = pipeline
        self._store = store
        self._ttl = ttl
        self._resolver = resolver or GenreResolver()
        self._clock = clock
        self._slots: dict[FilterKey, _FilterSlot] = {}
        self._jobs: dict[FilterKey, asyncio.Task[None]] = {}

    def filter_key(self, media_type: str | None = "all", genre: str | None = ALL_GENRES) -> FilterKey:
        """Normalise a media type / genre pair into a snapshot key."""

        raw_type = (media_type or "all").strip().lower()
        normalized = raw_type if raw_type == "all" else normalize_media_type(raw_type)
        if normalized not in {"all", "movie", "tv"}:
            raise ValueError(f"Unsupported media type: {media_type}")
        canonical = self._resolver.canonical_name(genre)
        if canonical is None or canonical.casefold() == ALL_GENRES.casefold():
            canonical = ALL_GENRES
        elif not self._resolver.is_known(canonical):
            # Unknown names share one storage key regardless of the caller's casing.
            canonical = canonical.title()
        return FilterKey(str(normalized), canonical)

    def state(self, key: FilterKey) -> SnapshotState:
        job = self._jobs.get(key)
        if job is not None and not job.done():
            return SnapshotState.REFRESHING
        slot = self._slots.get(key)
        if slot is None or slot.snapshot is None:
            return SnapshotState.EMPTY
        if self._is_stale(slot.snapshot):
            return SnapshotState.STALE
        return SnapshotState.FRESH

    def is_refreshing(self, key: FilterKey) -> bool:
        return self.state(key) is SnapshotState.REFRESHING

    async def get_filtered(
        self,
        media_type: str | None = "all",
        genre: str | None = ALL_GENRES,
        *,
        wait: bool = True,
    ) -> FilteredResult:
        """Return the best items available for the filter.

        With no snapshot at all the call awaits the first fetch, unless
        ``wait`` is false, in which case a loading result carrying the pending
        refresh task is returned instead.
        """

        key = self.filter_key(media_type, genre)
        slot = self._slots.setdefault(key, _FilterSlot())

        if await self._restore_persisted(key, slot):
            # A snapshot from a previous session is always revalidated once.
            self._schedule_refresh(key)
            return self._result(key, slot)

        if slot.snapshot is not None:
            if self._is_stale(slot.snapshot):
                self._schedule_refresh(key)
            return self._result(key, slot)

        task = self._schedule_refresh(key)
        if not wait:
            return FilteredResult(
                items=[], state=SnapshotState.REFRESHING, loading=True, pending=task
            )
        await asyncio.shield(task)
        return self._result(key, slot)

    async def refresh(
        self, media_type: str | None = "all", genre: str | None = ALL_GENRES
    ) -> FilteredResult:
        """Force a provider refresh for one filter, ignoring snapshot age."""

        key = self.filter_key(media_type, genre)
        slot = self._slots.setdefault(key, _FilterSlot())
        await self._restore_persisted(key, slot)
        await asyncio.shield(self._schedule_refresh(key, force=True))
        return self._result(key, slot)

    async def request_refresh(
        self, media_type: str | None = "all", genre: str | None = ALL_GENRES
    ) -> asyncio.Task[None]:
        """Schedule a forced refresh without waiting for it."""

        key = self.filter_key(media_type, genre)
        await self._restore_persisted(key, self._slots.setdefault(key, _FilterSlot()))
        return self._schedule_refresh(key, force=True)

    async def wait_for_refreshes(self) -> None:
        """Wait until every refresh currently in flight has settled."""

        jobs = [job for job in self._jobs.values() if not job.done()]
        if jobs:
            await asyncio.gather(*jobs, return_exceptions=True)

    async def close(self) -> None:
        """Cancel background refreshes; used when the session is torn down."""

        jobs = list(self._jobs.values())
        for job in jobs:
            job.cancel()
        for job in jobs:
            with suppress(asyncio.CancelledError):
                await job
        self._jobs.clear()

    def _schedule_refresh(self, key: FilterKey, *, force: bool = False) -> asyncio.Task[None]:
        existing = self._jobs.get(key)
        if existing is not None and not existing.done():
            return existing

        async def _runner() -> None:
            try:
                await self._refresh(key, force=force)
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception(
                    "Background refresh for %s (%s/%s) failed: %s",
                    self._user_id,
                    key.media_type,
                    key.genre,
                    exc,
                )
            finally:
                self._jobs.pop(key, None)

        task = asyncio.create_task(_runner())
        self._jobs[key] = task
        return task

    async def _refresh(self, key: FilterKey, *, force: bool) -> None:
        slot = self._slots.setdefault(key, _FilterSlot())
        logger.info(
            "Refreshing recommendations for %s (%s/%s)",
            self._user_id,
            key.media_type,
            key.genre,
        )
        try:
            fetched = await self._provider.fetch_recommendations(
                self._user_id, key, force_refresh=force
            )
        except Exception as exc:
            if slot.snapshot is None:
                slot.error = NoSnapshotAvailable(str(exc))
                logger.warning(
                    "No recommendations available for %s (%s/%s): %s",
                    self._user_id,
                    key.media_type,
                    key.genre,
                    exc,
                )
            else:
                slot.error = RefreshFailure(str(exc))
                logger.warning(
                    "Refresh for %s (%s/%s) failed, keeping snapshot from %s: %s",
                    self._user_id,
                    key.media_type,
                    key.genre,
                    slot.snapshot.fetched_at.isoformat(),
                    exc,
                )
            return

        snapshot = RecommendationSnapshot(
            media_type=key.media_type,  # type: ignore[arg-type]
            genre=key.genre,
            items=self._unique(fetched),
            fetched_at=self._clock(),
        )
        slot.snapshot = snapshot
        slot.error = None

        enriched = await self._pipeline.enrich(snapshot.items)
        if slot.snapshot is snapshot:
            snapshot = snapshot.model_copy(update={"items": enriched})
            slot.snapshot = snapshot
        await self._persist(key, snapshot)

    async def _restore_persisted(self, key: FilterKey, slot: _FilterSlot) -> bool:
        """Load the durable snapshot into an unread slot; returns whether one was found."""

        if slot.snapshot is not None or slot.checked_store:
            return False
        slot.checked_store = True
        persisted = await self._load_persisted(key)
        if persisted is None or slot.snapshot is not None:
            return False
        slot.snapshot = persisted
        return True

    async def _load_persisted(self, key: FilterKey) -> RecommendationSnapshot | None:
        storage_key = key.storage_key(self._user_id)
        try:
            raw = await self._store.get(storage_key)
        except Exception as exc:
            logger.warning("Could not read persisted snapshot %s: %s", storage_key, exc)
            return None
        if raw is None:
            return None
        try:
            snapshot = RecommendationSnapshot.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Ignoring unreadable snapshot %s: %s", storage_key, exc)
            return None
        if snapshot.filter_key != key:
            logger.warning("Ignoring snapshot %s stored for %s", storage_key, snapshot.filter_key)
            return None
        return snapshot

    async def _persist(self, key: FilterKey, snapshot: RecommendationSnapshot) -> None:
        storage_key = key.storage_key(self._user_id)
        try:
            await self._store.put(storage_key, snapshot.model_dump_json().encode("utf-8"))
        except Exception as exc:
            logger.warning("Could not persist snapshot %s: %s", storage_key, exc)

    def _result(self, key: FilterKey, slot: _FilterSlot) -> FilteredResult:
        state = self.state(key)
        error = slot.error.code if slot.error is not None else None
        if slot.snapshot is None:
            return FilteredResult(
                items=[],
                state=state,
                loading=state is SnapshotState.REFRESHING,
                error=error,
            )
        return FilteredResult(
            items=self._apply_filter(key, slot.snapshot.items),
            state=state,
            fetched_at=slot.snapshot.fetched_at,
            using_cached=state is not SnapshotState.FRESH or slot.error is not None,
            error=error,
        )

    def _apply_filter(self, key: FilterKey, items: Sequence[ContentItem]) -> list[ContentItem]:
        results: list[ContentItem] = []
        for item in items:
            if key.media_type != "all" and item.media_type != key.media_type:
                continue
            if not self._resolver.item_matches(item, key.genre):
                continue
            results.append(item)
        return results

    def _is_stale(self, snapshot: RecommendationSnapshot) -> bool:
        return self._clock() - snapshot.fetched_at >= self._ttl

    @staticmethod
    def _unique(items: Sequence[ContentItem]) -> list[ContentItem]:
        seen: set[ItemKey] = set()
        unique: list[ContentItem] = []
        for item in items:
            if item.key in seen:
                continue
            seen.add(item.key)
            unique.append(item)
        return unique

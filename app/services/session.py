"""Per-user composition of the recommendation cache components."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable

from ..cache import Clock, MetadataCache, utcnow
from ..config import Settings
from ..genres import ALL_GENRES, GenreResolver
from ..models import HeroAndLanes, ItemKey
from .enrichment import EnrichmentPipeline
from .exclusions import ExclusionCoordinator
from .lanes import LaneAssembler
from .ports import BlobStore, ListMembership, MetadataProvider, RecommendationProvider
from .snapshots import FilteredResult, SnapshotManager

logger = logging.getLogger(__name__)


class RecommendationSession:
    """Everything one signed-in user needs to browse recommendations.

    A session is created on sign-in and closed on logout; nothing in it is
    shared with other users' sessions.
    """

    def __init__(
        self,
        user_id: str,
        *,
        snapshots: SnapshotManager,
        exclusions: ExclusionCoordinator,
        assembler: LaneAssembler,
        membership: ListMembership | None = None,
    ) -> None:
        self.user_id = user_id
        self.snapshots = snapshots
        self.exclusions = exclusions
        self._assembler = assembler
        self.membership = membership
        self._unsubscribe: Callable[[], None] | None = None
        if membership is not None:
            self._unsubscribe = membership.subscribe(exclusions.on_membership_changed)

    @classmethod
    def create(
        cls,
        user_id: str,
        settings: Settings,
        *,
        metadata_provider: MetadataProvider,
        recommendation_provider: RecommendationProvider,
        store: BlobStore,
        membership: ListMembership | None = None,
        clock: Clock = utcnow,
    ) -> "RecommendationSession":
        resolver = GenreResolver()
        cache = MetadataCache(
            timedelta(seconds=settings.metadata_cache_seconds), clock=clock
        )
        pipeline = EnrichmentPipeline(
            metadata_provider,
            cache,
            concurrency=settings.enrichment_concurrency,
            window_delay=settings.enrichment_window_delay,
            timeout=settings.metadata_timeout_seconds,
        )
        snapshots = SnapshotManager(
            user_id,
            recommendation_provider,
            pipeline,
            store,
            ttl=timedelta(seconds=settings.snapshot_ttl_seconds),
            resolver=resolver,
            clock=clock,
        )
        exclusions = ExclusionCoordinator(
            user_id,
            store,
            membership,
            pending_timeout=timedelta(seconds=settings.pending_timeout_seconds),
            clock=clock,
        )
        assembler = LaneAssembler(
            settings.lane_definitions, lane_size=settings.lane_size, resolver=resolver
        )
        return cls(
            user_id,
            snapshots=snapshots,
            exclusions=exclusions,
            assembler=assembler,
            membership=membership,
        )

    async def start(self) -> None:
        await self.exclusions.load()

    async def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.snapshots.close()

    async def get_filtered(
        self,
        media_type: str | None = "all",
        genre: str | None = ALL_GENRES,
        *,
        wait: bool = True,
    ) -> FilteredResult:
        result = await self.snapshots.get_filtered(media_type, genre, wait=wait)
        result.items = self.exclusions.visible(result.items)
        return result

    async def get_hero_and_lanes(
        self, genre: str | None = ALL_GENRES, media_type: str | None = "all"
    ) -> HeroAndLanes:
        result = await self.get_filtered(media_type, genre)
        view = self._assembler.assemble(result.items, genre)
        return view.model_copy(
            update={
                "loading": result.loading,
                "using_cached": result.using_cached,
                "error": result.error,
            }
        )

    async def refresh(
        self, media_type: str | None = "all", genre: str | None = ALL_GENRES
    ) -> FilteredResult:
        result = await self.snapshots.refresh(media_type, genre)
        result.items = self.exclusions.visible(result.items)
        return result

    def mark_pending_confirm(self, key: ItemKey) -> None:
        self.exclusions.mark_pending_confirm(key)

    def confirm_added(self, key: ItemKey) -> None:
        self.exclusions.confirm_added(key)

    def clear_pending(self, key: ItemKey | None = None) -> None:
        self.exclusions.clear_pending(key)

    async def mark_persisted_removed(self, key: ItemKey) -> None:
        await self.exclusions.mark_persisted_removed(key)


SessionFactory = Callable[[str], Awaitable[RecommendationSession]]


class SessionRegistry:
    """Keeps one live session per user id."""

    def __init__(self, factory: SessionFactory) -> None:
        self._factory = factory
        self._sessions: dict[str, RecommendationSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._sessions

    async def get(self, user_id: str) -> RecommendationSession:
        """Return the user's session, creating and starting it on first use."""

        session = self._sessions.get(user_id)
        if session is not None:
            return session
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        async with lock:
            session = self._sessions.get(user_id)
            if session is None:
                session = await self._factory(user_id)
                await session.start()
                self._sessions[user_id] = session
                logger.info("Started recommendation session for %s", user_id)
        return session

    async def end(self, user_id: str) -> bool:
        """Tear down the user's session; returns ``False`` if none was open."""

        session = self._sessions.pop(user_id, None)
        self._locks.pop(user_id, None)
        if session is None:
            return False
        await session.close()
        logger.info("Closed recommendation session for %s", user_id)
        return True

    async def close_all(self) -> None:
        for user_id in list(self._sessions):
            await self.end(user_id)

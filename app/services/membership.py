"""Watchlist membership backed by the database."""

from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import WatchlistEntry
from ..models import ItemKey
from .ports import MembershipListener

logger = logging.getLogger(__name__)


class WatchlistMembership:
    """Authoritative list of the items a user has added to their watchlist."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession], user_id: str
    ) -> None:
        self._session_factory = session_factory
        self._user_id = user_id
        self._listeners: list[MembershipListener] = []

    async def current_ids(self) -> frozenset[ItemKey]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(WatchlistEntry.media_type, WatchlistEntry.external_id).where(
                    WatchlistEntry.user_id == self._user_id
                )
            )
            return frozenset(ItemKey(row[0], row[1]) for row in result.all())

    async def add(self, key: ItemKey) -> bool:
        """Add an item; returns ``False`` when it was already present."""

        async with self._session_factory() as session:
            existing = await session.execute(
                select(WatchlistEntry.id).where(
                    WatchlistEntry.user_id == self._user_id,
                    WatchlistEntry.media_type == key.media_type,
                    WatchlistEntry.external_id == key.external_id,
                )
            )
            if existing.scalar_one_or_none() is not None:
                return False
            session.add(
                WatchlistEntry(
                    user_id=self._user_id,
                    media_type=key.media_type,
                    external_id=key.external_id,
                )
            )
            await session.commit()
        await self._notify()
        return True

    async def remove(self, key: ItemKey) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(WatchlistEntry).where(
                    WatchlistEntry.user_id == self._user_id,
                    WatchlistEntry.media_type == key.media_type,
                    WatchlistEntry.external_id == key.external_id,
                )
            )
            await session.commit()
        removed = bool(result.rowcount)
        if removed:
            await self._notify()
        return removed

    def subscribe(self, listener: MembershipListener) -> Callable[[], None]:
        """Register a change listener; the returned callable unregisters it."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def _notify(self) -> None:
        if not self._listeners:
            return
        ids = await self.current_ids()
        for listener in list(self._listeners):
            try:
                await listener(ids)
            except Exception as exc:  # pragma: no cover - listener safety net
                logger.exception(
                    "Watchlist listener for %s failed: %s", self._user_id, exc
                )

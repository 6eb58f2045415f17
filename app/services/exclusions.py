"""Tracking of items that must never show up in recommendation lanes."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from ..cache import Clock, utcnow
from ..models import ContentItem, ItemKey
from .ports import BlobStore, ListMembership

logger = logging.getLogger(__name__)


class ExclusionCoordinator:
    """Owns the three exclusion sets and derives the visible pool from them.

    ``persisted_removed`` holds explicit dismissals and survives restarts.
    ``pending_confirm`` holds items the user is in the middle of adding; they
    are hidden optimistically and released again if no confirmation arrives
    within ``pending_timeout``. ``external_membership`` mirrors the
    authoritative watchlist and is only ever replaced from it.
    """

    def __init__(
        self,
        user_id: str,
        store: BlobStore,
        membership: ListMembership | None = None,
        *,
        pending_timeout: timedelta = timedelta(minutes=2),
        clock: Clock = utcnow,
    ) -> None:
        self._user_id = user_id
        self._store = store
        self._membership = membership
        self._pending_timeout = pending_timeout
        self._clock = clock
        self._persisted_removed: set[ItemKey] = set()
        self._pending: dict[ItemKey, datetime] = {}
        self._external: frozenset[ItemKey] = frozenset()

    @property
    def storage_key(self) -> str:
        return f"exclusions:{self._user_id}"

    @property
    def persisted_removed(self) -> frozenset[ItemKey]:
        return frozenset(self._persisted_removed)

    @property
    def pending_confirm(self) -> frozenset[ItemKey]:
        self._expire_pending()
        return frozenset(self._pending)

    @property
    def external_membership(self) -> frozenset[ItemKey]:
        return self._external

    async def load(self) -> None:
        """Restore dismissals from the blob store and pull current membership."""

        try:
            raw = await self._store.get(self.storage_key)
        except Exception as exc:
            logger.warning("Could not read exclusions for %s: %s", self._user_id, exc)
            raw = None
        if raw is not None:
            self._persisted_removed.update(self._decode(raw))
        await self.refresh_membership()

    def mark_pending_confirm(self, key: ItemKey) -> None:
        """Hide an item while the user is adding it; repeated calls restart the window."""

        self._pending[key] = self._clock()

    def confirm_added(self, key: ItemKey) -> None:
        """Drop the pending flag; membership is left to the next list refresh."""

        self._pending.pop(key, None)

    def clear_pending(self, key: ItemKey | None = None) -> None:
        """Release one pending item, or all of them, back into the pool."""

        if key is None:
            self._pending.clear()
        else:
            self._pending.pop(key, None)

    async def mark_persisted_removed(self, key: ItemKey) -> None:
        self._persisted_removed.add(key)
        self._pending.pop(key, None)
        await self._save()

    async def restore(self, key: ItemKey) -> None:
        """Undo a dismissal."""

        if key not in self._persisted_removed:
            return
        self._persisted_removed.discard(key)
        await self._save()

    async def refresh_membership(self) -> None:
        """Replace the membership mirror with the authoritative list."""

        if self._membership is None:
            return
        try:
            current = await self._membership.current_ids()
        except Exception as exc:
            logger.warning(
                "Keeping previous watchlist membership for %s: %s", self._user_id, exc
            )
            return
        self.apply_membership(current)

    async def on_membership_changed(self, ids: frozenset[ItemKey]) -> None:
        self.apply_membership(ids)

    def apply_membership(self, ids: Iterable[ItemKey]) -> None:
        self._external = frozenset(ItemKey(*key) for key in ids)

    def is_excluded(self, key: ItemKey) -> bool:
        self._expire_pending()
        return (
            key in self._persisted_removed
            or key in self._pending
            or key in self._external
        )

    def visible(self, pool: Sequence[ContentItem]) -> list[ContentItem]:
        """Return the pool minus every excluded item, preserving order."""

        self._expire_pending()
        excluded = self._persisted_removed | set(self._pending) | self._external
        return [item for item in pool if item.key not in excluded]

    def _expire_pending(self) -> None:
        now = self._clock()
        expired = [
            key
            for key, marked_at in self._pending.items()
            if now - marked_at >= self._pending_timeout
        ]
        for key in expired:
            logger.info("Releasing unconfirmed pending item %s for %s", key, self._user_id)
            del self._pending[key]

    async def _save(self) -> None:
        payload = json.dumps(
            sorted([key.media_type, key.external_id] for key in self._persisted_removed)
        ).encode("utf-8")
        try:
            await self._store.put(self.storage_key, payload)
        except Exception as exc:
            logger.warning("Could not persist exclusions for %s: %s", self._user_id, exc)

    def _decode(self, raw: bytes) -> set[ItemKey]:
        try:
            entries = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.warning("Ignoring unreadable exclusions for %s: %s", self._user_id, exc)
            return set()
        keys: set[ItemKey] = set()
        if not isinstance(entries, list):
            return keys
        for entry in entries:
            if (
                isinstance(entry, list)
                and len(entry) == 2
                and isinstance(entry[0], str)
                and isinstance(entry[1], int)
            ):
                keys.add(ItemKey(entry[0], entry[1]))
        return keys

"""Hero selection and lane slicing over a filtered recommendation pool."""

from __future__ import annotations

from typing import Sequence

from ..genres import ALL_GENRES, GenreResolver
from ..models import ContentItem, DisplayHints, HeroAndLanes, Lane
from ..stable_lanes import STABLE_LANES, StableLaneDefinition


class LaneAssembler:
    """Deterministically splits a pool into a hero item and ordered lanes."""

    def __init__(
        self,
        definitions: Sequence[StableLaneDefinition] = STABLE_LANES,
        *,
        lane_size: int = 15,
        resolver: GenreResolver | None = None,
    ) -> None:
        if lane_size < 1:
            raise ValueError("Lane size must be at least 1")
        self._definitions = tuple(definitions)
        self._lane_size = lane_size
        self._resolver = resolver or GenreResolver()

    def select_hero(
        self, pool: Sequence[ContentItem], genre: str | None
    ) -> ContentItem | None:
        if not pool:
            return None
        target = self._resolver.canonical_name(genre)
        if target is None or target.casefold() == ALL_GENRES.casefold():
            return pool[0]
        for item in pool:
            if self._resolver.item_matches(item, target, primary_only=True):
                return item
        for item in pool:
            if self._resolver.item_matches(item, target):
                return item
        return pool[0]

    def build_lanes(self, remaining: Sequence[ContentItem]) -> list[Lane]:
        lanes: list[Lane] = []
        for position, definition in enumerate(self._definitions):
            start = position * self._lane_size
            items = list(remaining[start : start + self._lane_size])
            if not items:
                continue
            lanes.append(
                Lane(
                    key=definition.key,
                    title=definition.title,
                    subtitle=definition.subtitle,
                    items=items,
                    display_hints=DisplayHints(
                        show_match_score=definition.show_match_score,
                        show_service_badge=definition.show_service_badge,
                        show_progress=definition.show_progress,
                    ),
                )
            )
        return lanes

    def assemble(self, pool: Sequence[ContentItem], genre: str | None) -> HeroAndLanes:
        hero = self.select_hero(pool, genre)
        if hero is None:
            return HeroAndLanes()
        remaining = [item for item in pool if item.key != hero.key]
        return HeroAndLanes(hero=hero, lanes=self.build_lanes(remaining))

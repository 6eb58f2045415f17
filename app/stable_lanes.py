"""Stable lane definitions for the recommendation shelf."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class StableLaneDefinition:
    """Describes a fixed lane rendered below the hero item."""

    key: str
    title: str
    subtitle: str
    show_match_score: bool = False
    show_service_badge: bool = False
    show_progress: bool = False


STABLE_LANES: tuple[StableLaneDefinition, ...] = (
    StableLaneDefinition(
        key="top-picks",
        title="Top Picks For You",
        subtitle="Personalized based on your taste",
        show_match_score=True,
    ),
    StableLaneDefinition(
        key="trending",
        title="Trending on Your Services",
        subtitle="Popular now on your subscriptions",
        show_service_badge=True,
    ),
    StableLaneDefinition(
        key="hidden-gems",
        title="Hidden Gems",
        subtitle="Under-the-radar picks for you",
        show_match_score=True,
    ),
    StableLaneDefinition(
        key="more-like",
        title="Because You Liked Similar Content",
        subtitle="Similar tone and themes",
    ),
    StableLaneDefinition(
        key="keep-exploring",
        title="Keep Exploring",
        subtitle="More picks from your recommendations",
    ),
)

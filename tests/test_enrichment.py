"""Tests for the windowed enrichment pipeline."""

from __future__ import annotations

import asyncio
import random
from datetime import timedelta

import pytest

from app.cache import MetadataCache
from app.models import ContentItem, ItemKey
from app.services.enrichment import EnrichmentPipeline


class RecordingProvider:
    """Metadata provider stub with configurable latency and failures."""

    def __init__(
        self,
        *,
        latencies: dict[int, float] | None = None,
        failing: set[int] | None = None,
        hanging: set[int] | None = None,
    ) -> None:
        self.calls: list[ItemKey] = []
        self.latencies = latencies or {}
        self.failing = failing or set()
        self.hanging = hanging or set()
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_metadata(self, external_id: int, media_type: str) -> ContentItem:
        self.calls.append(ItemKey(media_type, external_id))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if external_id in self.hanging:
                await asyncio.sleep(10)
            await asyncio.sleep(self.latencies.get(external_id, 0))
            if external_id in self.failing:
                raise RuntimeError(f"provider exploded for {external_id}")
            return ContentItem(
                external_id=external_id,
                media_type=media_type,  # type: ignore[arg-type]
                title=f"Fetched {external_id}",
                overview="From the provider",
                poster_ref=f"/poster/{external_id}.jpg",
            )
        finally:
            self.in_flight -= 1


def build_pipeline(provider, clock, **kwargs) -> tuple[EnrichmentPipeline, MetadataCache]:
    cache = MetadataCache(timedelta(minutes=30), clock=clock)
    kwargs.setdefault("window_delay", 0)
    return EnrichmentPipeline(provider, cache, **kwargs), cache


@pytest.mark.anyio("asyncio")
async def test_output_order_matches_input_despite_random_latency(clock, make_item) -> None:
    rng = random.Random(7)
    ids = list(range(1, 41))
    provider = RecordingProvider(
        latencies={external_id: rng.uniform(0, 0.02) for external_id in ids}
    )
    pipeline, _ = build_pipeline(provider, clock, concurrency=10)
    items = [make_item(external_id) for external_id in ids]

    enriched = await pipeline.enrich(items)

    assert [item.external_id for item in enriched] == ids
    assert all(item.is_fully_hydrated for item in enriched)


@pytest.mark.anyio("asyncio")
async def test_single_failure_does_not_abort_the_batch(clock, make_item) -> None:
    provider = RecordingProvider(failing={7})
    pipeline, cache = build_pipeline(provider, clock, concurrency=15)
    items = [make_item(external_id, overview="placeholder") for external_id in range(1, 16)]

    enriched, report = await pipeline.enrich_with_report(items)

    assert len(enriched) == 15
    assert enriched[6] == items[6]
    assert [item.title for item in enriched if item.external_id != 7] == [
        f"Fetched {external_id}" for external_id in range(1, 16) if external_id != 7
    ]
    assert report.fetched == 14
    assert report.failed == 1
    assert cache.get(ItemKey("movie", 7)) is None


@pytest.mark.anyio("asyncio")
async def test_hydrated_items_and_cache_hits_skip_the_provider(clock, make_item) -> None:
    provider = RecordingProvider()
    pipeline, cache = build_pipeline(provider, clock)
    cache.put(ItemKey("tv", 2), make_item(2, "tv", title="Cached", is_fully_hydrated=True))
    items = [
        make_item(1, is_fully_hydrated=True),
        make_item(2, "tv", title="Placeholder"),
        make_item(3),
    ]

    enriched, report = await pipeline.enrich_with_report(items)

    assert provider.calls == [ItemKey("movie", 3)]
    assert enriched[0] is items[0]
    assert enriched[1].title == "Cached"
    assert enriched[1].is_fully_hydrated is True
    assert report.hydrated == 1
    assert report.cache_hits == 1
    assert report.fetched == 1


@pytest.mark.anyio("asyncio")
async def test_successful_fetches_populate_the_cache(clock, make_item) -> None:
    provider = RecordingProvider()
    pipeline, _ = build_pipeline(provider, clock)

    await pipeline.enrich([make_item(1), make_item(2)])
    await pipeline.enrich([make_item(2), make_item(1)])

    assert provider.calls == [ItemKey("movie", 1), ItemKey("movie", 2)]


@pytest.mark.anyio("asyncio")
async def test_duplicate_keys_share_one_fetch(clock, make_item) -> None:
    provider = RecordingProvider()
    pipeline, _ = build_pipeline(provider, clock)

    enriched = await pipeline.enrich([make_item(9), make_item(9, "tv"), make_item(9)])

    assert sorted(provider.calls) == [ItemKey("movie", 9), ItemKey("tv", 9)]
    assert [item.key for item in enriched] == [
        ItemKey("movie", 9),
        ItemKey("tv", 9),
        ItemKey("movie", 9),
    ]


@pytest.mark.anyio("asyncio")
async def test_fetches_respect_the_concurrency_window(clock, make_item) -> None:
    delays: list[float] = []

    async def record_sleep(seconds: float) -> None:
        delays.append(seconds)

    provider = RecordingProvider(latencies={external_id: 0.001 for external_id in range(25)})
    pipeline, _ = build_pipeline(
        provider, clock, concurrency=10, window_delay=0.03, sleep=record_sleep
    )

    await pipeline.enrich([make_item(external_id) for external_id in range(25)])

    assert provider.max_in_flight == 10
    assert len(provider.calls) == 25
    assert delays == [0.03, 0.03]


@pytest.mark.anyio("asyncio")
async def test_timeouts_count_as_failures(clock, make_item) -> None:
    provider = RecordingProvider(hanging={2})
    pipeline, cache = build_pipeline(provider, clock, timeout=0.05)
    items = [make_item(1), make_item(2)]

    enriched, report = await pipeline.enrich_with_report(items)

    assert enriched[1] == items[1]
    assert enriched[0].is_fully_hydrated is True
    assert report.failed == 1
    assert cache.get(ItemKey("movie", 2)) is None


def test_concurrency_must_be_positive(clock) -> None:
    with pytest.raises(ValueError):
        build_pipeline(RecordingProvider(), clock, concurrency=0)

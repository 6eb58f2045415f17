"""Tests for stale-while-revalidate snapshot management."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from app.cache import MetadataCache
from app.models import ContentItem, FilterKey, RecommendationSnapshot
from app.services.enrichment import EnrichmentPipeline
from app.services.snapshots import SnapshotManager, SnapshotState


class StubRecommendations:
    """Recommendation provider returning queued responses."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, FilterKey, bool]] = []
        self.gate: asyncio.Event | None = None

    async def fetch_recommendations(
        self, user_id: str, filter_key: FilterKey, *, force_refresh: bool = False
    ) -> list[ContentItem]:
        self.calls.append((user_id, filter_key, force_refresh))
        if self.gate is not None:
            await self.gate.wait()
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return list(response)


class EchoMetadata:
    """Metadata provider that marks every item as fetched."""

    async def fetch_metadata(self, external_id: int, media_type: str) -> ContentItem:
        return ContentItem(
            external_id=external_id,
            media_type=media_type,  # type: ignore[arg-type]
            title=f"Hydrated {external_id}",
            is_fully_hydrated=True,
        )


def build_manager(provider, store, clock, ttl_minutes: int = 60) -> SnapshotManager:
    cache = MetadataCache(timedelta(minutes=30), clock=clock)
    pipeline = EnrichmentPipeline(EchoMetadata(), cache, window_delay=0)
    return SnapshotManager(
        "user-1",
        provider,
        pipeline,
        store,
        ttl=timedelta(minutes=ttl_minutes),
        clock=clock,
    )


def persist_snapshot(store, clock, items, *, age_minutes: int, media_type="all", genre="All") -> None:
    snapshot = RecommendationSnapshot(
        media_type=media_type,
        genre=genre,
        items=items,
        fetched_at=clock() - timedelta(minutes=age_minutes),
    )
    key = FilterKey(media_type, genre).storage_key("user-1")
    store.data[key] = snapshot.model_dump_json().encode("utf-8")


@pytest.mark.anyio("asyncio")
async def test_persisted_snapshot_is_served_and_revalidated_once(
    blob_store, clock, make_item
) -> None:
    persist_snapshot(blob_store, clock, [make_item(1), make_item(2)], age_minutes=10)
    provider = StubRecommendations([make_item(3)])
    provider.gate = asyncio.Event()
    manager = build_manager(provider, blob_store, clock)

    result = await manager.get_filtered("all", "All")

    assert [item.external_id for item in result.items] == [1, 2]
    assert result.state is SnapshotState.REFRESHING
    assert result.using_cached is True
    assert manager.is_refreshing(FilterKey("all", "All"))

    again = await manager.get_filtered("all", "All")
    assert [item.external_id for item in again.items] == [1, 2]

    provider.gate.set()
    await manager.wait_for_refreshes()

    assert len(provider.calls) == 1
    fresh = await manager.get_filtered("all", "All")
    assert [item.external_id for item in fresh.items] == [3]
    assert fresh.state is SnapshotState.FRESH
    assert fresh.items[0].is_fully_hydrated is True


@pytest.mark.anyio("asyncio")
async def test_first_request_without_snapshot_waits_for_fetch(
    blob_store, clock, make_item
) -> None:
    provider = StubRecommendations([make_item(1), make_item(1), make_item(2)])
    manager = build_manager(provider, blob_store, clock)

    result = await manager.get_filtered("movie", "All")

    assert [item.external_id for item in result.items] == [1, 2]
    assert result.state is SnapshotState.FRESH
    assert result.error is None
    assert "recs:user-1:movie:all" in blob_store.data


@pytest.mark.anyio("asyncio")
async def test_non_waiting_request_returns_loading_marker(
    blob_store, clock, make_item
) -> None:
    provider = StubRecommendations([make_item(1)])
    manager = build_manager(provider, blob_store, clock)

    result = await manager.get_filtered(wait=False)

    assert result.loading is True
    assert result.items == []
    assert result.pending is not None
    await result.pending
    completed = await manager.get_filtered()
    assert [item.external_id for item in completed.items] == [1]


@pytest.mark.anyio("asyncio")
async def test_concurrent_requests_share_one_refresh(blob_store, clock, make_item) -> None:
    provider = StubRecommendations([make_item(1)])
    provider.gate = asyncio.Event()
    manager = build_manager(provider, blob_store, clock)

    first = asyncio.create_task(manager.get_filtered())
    second = asyncio.create_task(manager.get_filtered())
    await asyncio.sleep(0)
    await manager.request_refresh()
    provider.gate.set()
    results = await asyncio.gather(first, second)

    assert len(provider.calls) == 1
    assert all([item.external_id for item in result.items] == [1] for result in results)


@pytest.mark.anyio("asyncio")
async def test_stale_snapshot_triggers_background_refresh(
    blob_store, clock, make_item
) -> None:
    provider = StubRecommendations([make_item(1)], [make_item(2)])
    manager = build_manager(provider, blob_store, clock)
    await manager.get_filtered()

    clock.advance(minutes=61)
    stale = await manager.get_filtered()

    assert [item.external_id for item in stale.items] == [1]
    assert stale.state is SnapshotState.REFRESHING
    await manager.wait_for_refreshes()
    fresh = await manager.get_filtered()
    assert [item.external_id for item in fresh.items] == [2]


@pytest.mark.anyio("asyncio")
async def test_failed_refresh_keeps_last_good_snapshot(blob_store, clock, make_item) -> None:
    provider = StubRecommendations([make_item(1)], RuntimeError("provider down"))
    manager = build_manager(provider, blob_store, clock)
    await manager.get_filtered()

    result = await manager.refresh()

    assert [item.external_id for item in result.items] == [1]
    assert result.error == "refresh_failure"
    assert result.using_cached is True


@pytest.mark.anyio("asyncio")
async def test_first_fetch_failure_reports_no_snapshot(blob_store, clock) -> None:
    provider = StubRecommendations(RuntimeError("provider down"))
    manager = build_manager(provider, blob_store, clock)

    result = await manager.get_filtered()

    assert result.items == []
    assert result.error == "no_snapshot_available"
    assert result.state is SnapshotState.EMPTY


@pytest.mark.anyio("asyncio")
async def test_explicit_refresh_bypasses_freshness(blob_store, clock, make_item) -> None:
    provider = StubRecommendations([make_item(1)], [make_item(5)])
    manager = build_manager(provider, blob_store, clock)
    await manager.get_filtered()

    result = await manager.refresh()

    assert [item.external_id for item in result.items] == [5]
    assert provider.calls[-1][2] is True


@pytest.mark.anyio("asyncio")
async def test_items_are_filtered_by_media_type_and_genre(
    blob_store, clock, make_item
) -> None:
    provider = StubRecommendations(
        [
            make_item(1, "movie", genres=[878], is_fully_hydrated=True),
            make_item(2, "tv", genres=[10765], is_fully_hydrated=True),
            make_item(3, "tv", genres=[35], is_fully_hydrated=True),
        ]
    )
    manager = build_manager(provider, blob_store, clock)

    result = await manager.get_filtered("series", "science fiction")

    assert [item.external_id for item in result.items] == [2]
    assert provider.calls[0][1] == FilterKey("tv", "Sci-Fi")


@pytest.mark.anyio("asyncio")
async def test_persistence_failures_are_tolerated(blob_store, clock, make_item) -> None:
    blob_store.fail_reads = True
    blob_store.fail_writes = True
    provider = StubRecommendations([make_item(1)])
    manager = build_manager(provider, blob_store, clock)

    result = await manager.get_filtered()

    assert [item.external_id for item in result.items] == [1]
    assert result.error is None


@pytest.mark.anyio("asyncio")
async def test_corrupt_persisted_snapshot_is_ignored(blob_store, clock, make_item) -> None:
    blob_store.data["recs:user-1:all:all"] = b"not json"
    provider = StubRecommendations([make_item(4)])
    manager = build_manager(provider, blob_store, clock)

    result = await manager.get_filtered()

    assert [item.external_id for item in result.items] == [4]


def test_unknown_media_type_is_rejected(blob_store, clock) -> None:
    manager = build_manager(StubRecommendations([]), blob_store, clock)

    with pytest.raises(ValueError):
        manager.filter_key("podcast", "All")


@pytest.mark.anyio("asyncio")
async def test_forced_refresh_falls_back_to_persisted_snapshot(
    blob_store, clock, make_item
) -> None:
    persist_snapshot(blob_store, clock, [make_item(1), make_item(2)], age_minutes=10)
    provider = StubRecommendations(RuntimeError("provider down"))
    manager = build_manager(provider, blob_store, clock)

    refreshed = await manager.refresh()
    later = await manager.get_filtered()

    assert [item.external_id for item in refreshed.items] == [1, 2]
    assert refreshed.error == "refresh_failure"
    assert [item.external_id for item in later.items] == [1, 2]
    assert provider.calls[0][2] is True


@pytest.mark.anyio("asyncio")
async def test_scheduled_refresh_loads_persisted_snapshot_first(
    blob_store, clock, make_item
) -> None:
    persist_snapshot(blob_store, clock, [make_item(4)], age_minutes=5)
    provider = StubRecommendations(RuntimeError("provider down"))
    manager = build_manager(provider, blob_store, clock)

    await (await manager.request_refresh())
    result = await manager.get_filtered()

    assert [item.external_id for item in result.items] == [4]
    assert result.error == "refresh_failure"


def test_unknown_genres_share_one_filter_key(blob_store, clock) -> None:
    manager = build_manager(StubRecommendations([]), blob_store, clock)

    upper = manager.filter_key("all", "Telenovela")
    lower = manager.filter_key("all", "telenovela")

    assert upper == lower == FilterKey("all", "Telenovela")
    assert manager.filter_key("all", "sci-fi & FANTASY") == FilterKey("all", "Sci-Fi & Fantasy")

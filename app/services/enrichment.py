"""Windowed metadata enrichment for partially known items."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from ..cache import MetadataCache
from ..errors import TransientFetchFailure
from ..models import ContentItem, ItemKey, reconcile
from .ports import MetadataProvider

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EnrichmentReport:
    """Counters describing how one enrichment pass resolved its items."""

    total: int = 0
    hydrated: int = 0
    cache_hits: int = 0
    fetched: int = 0
    failed: int = 0


class EnrichmentPipeline:
    """Fills in missing metadata with a bounded number of concurrent fetches.

    Fetches run in windows of ``concurrency``: a window is launched at once,
    awaited until every fetch settled, and the next window starts after
    ``window_delay`` seconds. Output order always equals input order.
    """

    def __init__(
        self,
        provider: MetadataProvider,
        cache: MetadataCache,
        *,
        concurrency: int = 12,
        window_delay: float = 0.05,
        timeout: float | None = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError("Enrichment concurrency must be at least 1")
        self._provider = provider
        self._cache = cache
        self._concurrency = concurrency
        self._window_delay = window_delay
        self._timeout = timeout
        self._sleep = sleep

    async def enrich(self, items: Sequence[ContentItem]) -> list[ContentItem]:
        """Return ``items`` with missing metadata completed where possible."""

        enriched, _ = await self.enrich_with_report(items)
        return enriched

    async def enrich_with_report(
        self, items: Sequence[ContentItem]
    ) -> tuple[list[ContentItem], EnrichmentReport]:
        report = EnrichmentReport(total=len(items))
        resolved: dict[int, ContentItem] = {}
        pending: dict[ItemKey, list[int]] = {}

        for index, item in enumerate(items):
            if item.is_fully_hydrated:
                resolved[index] = item
                report.hydrated += 1
                continue
            cached = self._cache.get(item.key)
            if cached is not None:
                resolved[index] = reconcile(item, cached)
                report.cache_hits += 1
                continue
            pending.setdefault(item.key, []).append(index)

        keys = list(pending)
        launched_previous = False
        for start in range(0, len(keys), self._concurrency):
            window: list[ItemKey] = []
            for key in keys[start : start + self._concurrency]:
                # Another caller may have fetched this key while earlier windows ran.
                cached = self._cache.get(key)
                if cached is None:
                    window.append(key)
                    continue
                for index in pending[key]:
                    resolved[index] = reconcile(items[index], cached)
                    report.cache_hits += 1
            if not window:
                continue

            if launched_previous and self._window_delay > 0:
                await self._sleep(self._window_delay)
            launched_previous = True

            results = await asyncio.gather(
                *(self._fetch(key) for key in window), return_exceptions=True
            )
            for key, result in zip(window, results):
                indices = pending[key]
                if isinstance(result, BaseException):
                    logger.warning("Leaving %s unenriched: %s", key, result)
                    report.failed += len(indices)
                    for index in indices:
                        resolved[index] = items[index]
                    continue
                report.fetched += len(indices)
                for index in indices:
                    resolved[index] = reconcile(items[index], result)

        if report.fetched or report.failed:
            logger.info(
                "Enriched %d items (%d hydrated, %d cached, %d fetched, %d failed)",
                report.total,
                report.hydrated,
                report.cache_hits,
                report.fetched,
                report.failed,
            )
        return [resolved[index] for index in sorted(resolved)], report

    async def _fetch(self, key: ItemKey) -> ContentItem:
        try:
            item = await asyncio.wait_for(
                self._provider.fetch_metadata(key.external_id, key.media_type),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TransientFetchFailure(f"metadata fetch for {key} timed out") from exc
        except Exception as exc:
            raise TransientFetchFailure(f"metadata fetch for {key} failed: {exc}") from exc

        if item.key != key:
            raise TransientFetchFailure(f"metadata fetch for {key} returned {item.key}")
        if not item.is_fully_hydrated:
            item = item.model_copy(update={"is_fully_hydrated": True})
        self._cache.put(key, item)
        return item

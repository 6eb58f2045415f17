"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from app.models import ContentItem  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class MemoryBlobStore:
    """Dictionary-backed blob store that can be told to fail."""

    def __init__(self) -> None:
        self.data: dict[str, bytes] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.writes: list[str] = []

    async def get(self, key: str) -> bytes | None:
        if self.fail_reads:
            raise OSError("store unavailable")
        return self.data.get(key)

    async def put(self, key: str, value: bytes) -> None:
        if self.fail_writes:
            raise OSError("store unavailable")
        self.writes.append(key)
        self.data[key] = value


def build_item(external_id: int, media_type: str = "movie", **overrides: Any) -> ContentItem:
    """Return a placeholder item with sensible defaults."""

    payload: dict[str, Any] = {
        "external_id": external_id,
        "media_type": media_type,
        "title": f"Title {external_id}",
    }
    payload.update(overrides)
    return ContentItem.model_validate(payload)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def blob_store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def make_item():
    return build_item

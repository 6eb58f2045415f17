"""Durable key/value blob storage backed by the database."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db_models import BlobRecord
from .errors import PersistenceFailure

logger = logging.getLogger(__name__)


class SqlBlobStore:
    """Stores opaque byte payloads keyed by namespaced strings."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, key: str) -> bytes | None:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(BlobRecord.payload).where(BlobRecord.key == key)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Failed to read {key}: {exc}") from exc

    async def put(self, key: str, value: bytes) -> None:
        try:
            async with self._session_factory() as session:
                record = await session.get(BlobRecord, key)
                if record is None:
                    session.add(BlobRecord(key=key, payload=value))
                else:
                    record.payload = value
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Failed to write {key}: {exc}") from exc
        logger.debug("Stored %d bytes under %s", len(value), key)

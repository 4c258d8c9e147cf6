"""Sync state key/value store"""

import logging
from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.dialects.sqlite import insert

from db.database import Database
from db.migrations import SCHEMA_VERSION_KEY
from db.models import SyncMeta

logger = logging.getLogger(__name__)

LAST_TAKEOUT_IMPORT_KEY = "last_takeout_import"
LAST_PLAYWRIGHT_SYNC_KEY = "last_playwright_sync"


class SyncMetaStore:
    """Watermarks for each ingestion source; last write wins per key"""

    def __init__(self, db: Database):
        self.db = db

    async def get(self, key: str) -> Optional[str]:
        async with self.db.session() as session:
            result = await session.execute(select(SyncMeta.value).where(SyncMeta.key == key))
            return result.scalar_one_or_none()

    async def set(self, key: str, value: str) -> None:
        stmt = insert(SyncMeta).values(key=key, value=value)
        stmt = stmt.on_conflict_do_update(index_elements=["key"], set_={"value": value})
        async with self.db.session() as session:
            async with session.begin():
                await session.execute(stmt)
        logger.debug(f"sync_meta[{key}] = {value}")

    async def delete(self, key: str) -> bool:
        async with self.db.session() as session:
            async with session.begin():
                result = await session.execute(delete(SyncMeta).where(SyncMeta.key == key))
        return result.rowcount > 0

    async def get_last_takeout_import(self) -> Optional[str]:
        return await self.get(LAST_TAKEOUT_IMPORT_KEY)

    async def set_last_takeout_import(self, timestamp: str) -> None:
        await self.set(LAST_TAKEOUT_IMPORT_KEY, timestamp)

    async def get_last_playwright_sync(self) -> Optional[str]:
        return await self.get(LAST_PLAYWRIGHT_SYNC_KEY)

    async def set_last_playwright_sync(self, timestamp: str) -> None:
        await self.set(LAST_PLAYWRIGHT_SYNC_KEY, timestamp)

    async def get_schema_version(self) -> int:
        """Stored schema version, 0 if the store has never been migrated"""
        value = await self.get(SCHEMA_VERSION_KEY)
        try:
            return int(value) if value is not None else 0
        except ValueError:
            return 0

"""Watch history repository: deduplicating inserts and the filter/sort/paginate query engine"""

import logging
from typing import Optional, List, Dict, Any, Iterable

from sqlalchemy import select, delete, func, and_, or_, asc, desc, distinct
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import StatementError
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import Database
from db.exceptions import RecordValidationError
from db.models import WatchHistory, VideoTag, utc_now_iso
from history.types import WatchHistoryEntry, EntrySource, QueryOptions, BulkInsertResult

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("video_id", "title", "url", "watched_at", "source")
OPTIONAL_TEXT_FIELDS = ("channel_name", "channel_url", "thumbnail_url")

_ORDER_COLUMNS = {
    "watched_at": WatchHistory.watched_at,
    "title": WatchHistory.title,
    "channel_name": WatchHistory.channel_name,
}


def validate_entry(entry: WatchHistoryEntry, index: Optional[int] = None) -> None:
    """Raise RecordValidationError if a required field is missing or a field has the wrong type"""
    missing = [name for name in REQUIRED_FIELDS if getattr(entry, name, None) in (None, "")]
    if missing:
        raise RecordValidationError(f"Missing required field(s): {', '.join(missing)}", index)

    for name in REQUIRED_FIELDS[:-1]:
        if not isinstance(getattr(entry, name), str):
            raise RecordValidationError(f"Field {name} must be a string", index)
    for name in OPTIONAL_TEXT_FIELDS:
        value = getattr(entry, name, None)
        if value is not None and not isinstance(value, str):
            raise RecordValidationError(f"Field {name} must be a string or null", index)
    if not isinstance(entry.is_ad, bool):
        raise RecordValidationError(f"Field is_ad must be a boolean, got {entry.is_ad!r}", index)

    try:
        EntrySource(entry.source)
    except ValueError:
        raise RecordValidationError(f"Invalid source: {entry.source!r}", index)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class WatchHistoryRepository:
    """CRUD and query operations over watch history entries"""

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _insert_statement(entry: WatchHistoryEntry):
        """INSERT ... ON CONFLICT (video_id, watched_at) DO NOTHING"""
        now = utc_now_iso()
        stmt = insert(WatchHistory).values(
            video_id=entry.video_id,
            title=entry.title,
            channel_name=entry.channel_name,
            channel_url=entry.channel_url,
            watched_at=entry.watched_at,
            thumbnail_url=entry.thumbnail_url,
            video_url=entry.url,
            is_ad=entry.is_ad,
            source=EntrySource(entry.source).value,
            created_at=now,
            updated_at=now,
        )
        # The unique constraint is the arbiter; no pre-check
        return stmt.on_conflict_do_nothing(index_elements=["video_id", "watched_at"])

    async def _insert_in_session(self, session: AsyncSession, entry: WatchHistoryEntry) -> bool:
        result = await session.execute(self._insert_statement(entry))
        return result.rowcount > 0

    async def insert(self, entry: WatchHistoryEntry) -> bool:
        """
        Insert a single entry

        Returns:
            True if a row was created, False if (video_id, watched_at) already existed
        """
        validate_entry(entry)
        async with self.db.session() as session:
            async with session.begin():
                inserted = await self._insert_in_session(session, entry)
        if not inserted:
            logger.debug(f"Duplicate entry skipped: {entry.video_id} @ {entry.watched_at}")
        return inserted

    async def bulk_insert(self, entries: Iterable[WatchHistoryEntry]) -> BulkInsertResult:
        """
        Insert a batch inside one transaction

        Each record runs in its own SAVEPOINT so a failing record is rolled back
        and reported without aborting the rest of the batch.
        """
        result = BulkInsertResult()

        async with self.db.session() as session:
            async with session.begin():
                for index, entry in enumerate(entries):
                    try:
                        validate_entry(entry, index)
                        async with session.begin_nested():
                            if await self._insert_in_session(session, entry):
                                result.inserted += 1
                            else:
                                result.duplicates += 1
                    except RecordValidationError as e:
                        result.errors.append(e.to_dict())
                    except StatementError as e:
                        # the savepoint is already rolled back; the batch goes on
                        message = str(e.orig) if e.orig is not None else str(e)
                        result.errors.append({"index": index, "message": message})

        if result.errors:
            logger.warning(f"Bulk insert: {len(result.errors)} record(s) rejected")
        logger.info(
            f"Bulk insert complete: {result.inserted} inserted, "
            f"{result.duplicates} duplicates, {len(result.errors)} errors"
        )
        return result

    async def get_by_id(self, entry_id: int) -> Optional[WatchHistory]:
        async with self.db.session() as session:
            return await session.get(WatchHistory, entry_id)

    async def get_by_video_id(self, video_id: str) -> List[WatchHistory]:
        """All watches of one video, newest first"""
        async with self.db.session() as session:
            result = await session.execute(
                select(WatchHistory)
                .where(WatchHistory.video_id == video_id)
                .order_by(desc(WatchHistory.watched_at))
            )
            return list(result.scalars().all())

    async def get_by_natural_key(self, video_id: str, watched_at: str) -> Optional[WatchHistory]:
        async with self.db.session() as session:
            result = await session.execute(
                select(WatchHistory).where(
                    WatchHistory.video_id == video_id,
                    WatchHistory.watched_at == watched_at,
                )
            )
            return result.scalar_one_or_none()

    @staticmethod
    def _tag_subquery(options: QueryOptions):
        """Ids of entries matching the tag filter, or None when no tag filter is set"""
        if not options.tag_ids:
            return None

        tag_ids = sorted(set(options.tag_ids))
        subquery = select(VideoTag.watch_history_id).where(VideoTag.tag_id.in_(tag_ids))

        if options.tag_logic == "AND":
            # every requested tag present; extra tags allowed
            subquery = subquery.group_by(VideoTag.watch_history_id).having(
                func.count(distinct(VideoTag.tag_id)) == len(tag_ids)
            )
        else:
            subquery = subquery.distinct()

        return subquery

    @staticmethod
    def _build_conditions(options: QueryOptions) -> list:
        """WHERE clauses shared by query() and count()"""
        conditions = []

        if not options.include_ads:
            conditions.append(WatchHistory.is_ad.is_(False))

        if options.search:
            pattern = f"%{_escape_like(options.search)}%"
            conditions.append(or_(
                WatchHistory.title.ilike(pattern, escape="\\"),
                WatchHistory.channel_name.ilike(pattern, escape="\\"),
            ))

        if options.date_from:
            conditions.append(WatchHistory.watched_at >= options.date_from)

        if options.date_to:
            conditions.append(WatchHistory.watched_at <= options.date_to)

        return conditions

    async def _filtered(self, session: AsyncSession, options: QueryOptions):
        """
        Conditions for a filtered read, or None if the tag filter matches nothing
        """
        conditions = self._build_conditions(options)

        tag_subquery = self._tag_subquery(options)
        if tag_subquery is not None:
            has_match = await session.scalar(select(tag_subquery.exists()))
            if not has_match:
                return None
            conditions.append(WatchHistory.id.in_(tag_subquery))

        return conditions

    async def query(self, options: Optional[QueryOptions] = None) -> List[WatchHistory]:
        """Query watch history with filters, sort and pagination (default: newest first)"""
        options = options or QueryOptions()

        async with self.db.session() as session:
            conditions = await self._filtered(session, options)
            if conditions is None:
                return []

            direction = asc if options.order_dir == "asc" else desc
            stmt = select(WatchHistory).order_by(
                direction(_ORDER_COLUMNS[options.order_by]),
                direction(WatchHistory.id),
            )
            if conditions:
                stmt = stmt.where(and_(*conditions))

            if options.limit is not None:
                stmt = stmt.limit(options.limit)
            if options.offset:
                stmt = stmt.offset(options.offset)

            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count(self, options: Optional[QueryOptions] = None) -> int:
        """Count entries matching the same filters query() applies"""
        options = options or QueryOptions()

        async with self.db.session() as session:
            conditions = await self._filtered(session, options)
            if conditions is None:
                return 0

            stmt = select(func.count()).select_from(WatchHistory)
            if conditions:
                stmt = stmt.where(and_(*conditions))
            return (await session.scalar(stmt)) or 0

    async def get_latest_watched_at(self) -> Optional[str]:
        """Most recent watched_at in the store, or None when empty"""
        async with self.db.session() as session:
            return await session.scalar(select(func.max(WatchHistory.watched_at)))

    async def delete(self, entry_id: int) -> bool:
        """Delete an entry; notes and tag assignments go with it"""
        async with self.db.session() as session:
            async with session.begin():
                result = await session.execute(
                    delete(WatchHistory).where(WatchHistory.id == entry_id)
                )
        deleted = result.rowcount > 0
        if deleted:
            logger.info(f"Deleted watch history entry {entry_id}")
        return deleted

    @staticmethod
    def to_dict(entry: WatchHistory) -> Dict[str, Any]:
        """camelCase representation used by the API"""
        return {
            "id": entry.id,
            "videoId": entry.video_id,
            "title": entry.title,
            "url": entry.video_url,
            "channelName": entry.channel_name,
            "channelUrl": entry.channel_url,
            "thumbnailUrl": entry.thumbnail_url,
            "watchedAt": entry.watched_at,
            "isAd": bool(entry.is_ad),
            "source": entry.source,
            "createdAt": entry.created_at,
            "updatedAt": entry.updated_at,
        }

"""Video-tag assignment repository"""

import logging
from typing import List, Iterable, Dict

from sqlalchemy import select, delete, func
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import IntegrityError

from db.database import Database
from db.models import Tag, VideoTag, utc_now_iso

logger = logging.getLogger(__name__)


def _assign_statement(watch_history_id: int, tag_id: int):
    return (
        insert(VideoTag)
        .values(watch_history_id=watch_history_id, tag_id=tag_id, created_at=utc_now_iso())
        .on_conflict_do_nothing(index_elements=["watch_history_id", "tag_id"])
    )


class VideoTagsRepository:
    """Many-to-many assignments between watch history entries and tags"""

    def __init__(self, db: Database):
        self.db = db

    async def assign(self, watch_history_id: int, tag_id: int) -> bool:
        """
        Assign a tag to an entry. Re-assigning an existing pair is a no-op success.

        Returns:
            False if the entry or the tag does not exist
        """
        async with self.db.session() as session:
            try:
                async with session.begin():
                    await session.execute(_assign_statement(watch_history_id, tag_id))
            except IntegrityError:
                logger.warning(
                    f"Cannot assign tag {tag_id} to entry {watch_history_id}: entry or tag not found"
                )
                return False
        return True

    async def remove(self, watch_history_id: int, tag_id: int) -> bool:
        async with self.db.session() as session:
            async with session.begin():
                result = await session.execute(
                    delete(VideoTag).where(
                        VideoTag.watch_history_id == watch_history_id,
                        VideoTag.tag_id == tag_id,
                    )
                )
        return result.rowcount > 0

    async def has_tag(self, watch_history_id: int, tag_id: int) -> bool:
        async with self.db.session() as session:
            found = await session.scalar(
                select(VideoTag.tag_id).where(
                    VideoTag.watch_history_id == watch_history_id,
                    VideoTag.tag_id == tag_id,
                )
            )
        return found is not None

    async def get_tags_for_video(self, watch_history_id: int) -> List[Tag]:
        """Tags assigned to an entry, alphabetical"""
        async with self.db.session() as session:
            result = await session.execute(
                select(Tag)
                .join(VideoTag, VideoTag.tag_id == Tag.id)
                .where(VideoTag.watch_history_id == watch_history_id)
                .order_by(Tag.name)
            )
            return list(result.scalars().all())

    async def get_video_ids_for_tag(self, tag_id: int) -> List[int]:
        """Watch history ids carrying a tag"""
        async with self.db.session() as session:
            result = await session.execute(
                select(VideoTag.watch_history_id)
                .where(VideoTag.tag_id == tag_id)
                .order_by(VideoTag.watch_history_id)
            )
            return list(result.scalars().all())

    async def set_video_tags(self, watch_history_id: int, tag_ids: Iterable[int]) -> None:
        """
        Replace an entry's tags with exactly ``tag_ids``

        An unknown entry or tag id raises IntegrityError and leaves the old set in place.
        """
        unique_ids = list(dict.fromkeys(tag_ids))
        async with self.db.session() as session:
            async with session.begin():
                await session.execute(
                    delete(VideoTag).where(VideoTag.watch_history_id == watch_history_id)
                )
                for tag_id in unique_ids:
                    await session.execute(_assign_statement(watch_history_id, tag_id))

    async def bulk_assign(self, watch_history_ids: Iterable[int], tag_id: int) -> int:
        """Assign one tag to many entries, returning how many succeeded"""
        assigned = 0
        for watch_history_id in watch_history_ids:
            if await self.assign(watch_history_id, tag_id):
                assigned += 1
        return assigned

    async def bulk_remove(self, watch_history_ids: Iterable[int], tag_id: int) -> int:
        """Remove one tag from many entries, returning how many assignments existed"""
        removed = 0
        for watch_history_id in watch_history_ids:
            if await self.remove(watch_history_id, tag_id):
                removed += 1
        return removed

    async def count_by_tag(self, tag_id: int) -> int:
        async with self.db.session() as session:
            return await session.scalar(
                select(func.count()).select_from(VideoTag).where(VideoTag.tag_id == tag_id)
            ) or 0

    async def get_tag_names_for_videos(self, watch_history_ids: List[int]) -> Dict[int, List[str]]:
        """Tag names for many entries in one query, keyed by entry id, each list alphabetical"""
        names_by_video: Dict[int, List[str]] = {entry_id: [] for entry_id in watch_history_ids}
        if not watch_history_ids:
            return names_by_video
        async with self.db.session() as session:
            result = await session.execute(
                select(VideoTag.watch_history_id, Tag.name)
                .join(Tag, VideoTag.tag_id == Tag.id)
                .where(VideoTag.watch_history_id.in_(watch_history_ids))
                .order_by(VideoTag.watch_history_id, Tag.name)
            )
            for watch_history_id, name in result.all():
                names_by_video[watch_history_id].append(name)
        return names_by_video

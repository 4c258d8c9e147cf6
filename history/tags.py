"""Tags repository"""

import logging
from typing import Optional, List

from sqlalchemy import select, delete, func, outerjoin
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import IntegrityError

from db.database import Database
from db.exceptions import DuplicateTagError
from db.models import Tag, VideoTag, utc_now_iso
from history.types import TagWithCount

logger = logging.getLogger(__name__)


def _clean_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValueError("Tag name must not be empty")
    return cleaned


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class TagsRepository:
    """Global user-defined labels; names are unique and case-sensitive"""

    def __init__(self, db: Database):
        self.db = db

    async def create(self, name: str, color: Optional[str] = None) -> Tag:
        """
        Create a tag

        Raises:
            DuplicateTagError: A tag with this name already exists
        """
        name = _clean_name(name)
        async with self.db.session() as session:
            try:
                async with session.begin():
                    tag = Tag(name=name, color=color)
                    session.add(tag)
            except IntegrityError:
                raise DuplicateTagError(name)
        logger.info(f"Created tag {name!r}")
        return tag

    async def get_or_create(self, name: str, color: Optional[str] = None) -> Tag:
        """Return the tag with this name, creating it if needed"""
        name = _clean_name(name)
        async with self.db.session() as session:
            async with session.begin():
                await session.execute(
                    insert(Tag)
                    .values(name=name, color=color, created_at=utc_now_iso())
                    .on_conflict_do_nothing(index_elements=["name"])
                )
                result = await session.execute(select(Tag).where(Tag.name == name))
                return result.scalar_one()

    async def get_by_id(self, tag_id: int) -> Optional[Tag]:
        async with self.db.session() as session:
            return await session.get(Tag, tag_id)

    async def get_by_name(self, name: str) -> Optional[Tag]:
        async with self.db.session() as session:
            result = await session.execute(select(Tag).where(Tag.name == (name or "").strip()))
            return result.scalar_one_or_none()

    async def exists(self, name: str) -> bool:
        return await self.get_by_name(name) is not None

    async def list(self) -> List[Tag]:
        """All tags, alphabetical"""
        async with self.db.session() as session:
            result = await session.execute(select(Tag).order_by(Tag.name))
            return list(result.scalars().all())

    async def search(self, query: str) -> List[Tag]:
        """Tags whose name contains ``query``, ignoring case"""
        pattern = f"%{_escape_like(query or '')}%"
        async with self.db.session() as session:
            result = await session.execute(
                select(Tag).where(Tag.name.ilike(pattern, escape="\\")).order_by(Tag.name)
            )
            return list(result.scalars().all())

    async def list_with_counts(self) -> List[TagWithCount]:
        """All tags with the number of entries each is assigned to, alphabetical"""
        async with self.db.session() as session:
            result = await session.execute(
                select(Tag, func.count(VideoTag.watch_history_id))
                .select_from(outerjoin(Tag, VideoTag, Tag.id == VideoTag.tag_id))
                .group_by(Tag.id)
                .order_by(Tag.name)
            )
            return [TagWithCount(tag=tag, video_count=count) for tag, count in result.all()]

    async def rename(self, tag_id: int, new_name: str) -> Optional[Tag]:
        """
        Rename a tag

        Raises:
            DuplicateTagError: Another tag already has ``new_name``
        """
        new_name = _clean_name(new_name)
        async with self.db.session() as session:
            try:
                async with session.begin():
                    tag = await session.get(Tag, tag_id)
                    if tag is None:
                        return None
                    tag.name = new_name
            except IntegrityError:
                raise DuplicateTagError(new_name)
        return tag

    async def update_color(self, tag_id: int, color: Optional[str]) -> Optional[Tag]:
        async with self.db.session() as session:
            async with session.begin():
                tag = await session.get(Tag, tag_id)
                if tag is None:
                    return None
                tag.color = color
        return tag

    async def delete(self, tag_id: int) -> bool:
        """Delete a tag and, through the foreign key, all of its assignments"""
        async with self.db.session() as session:
            async with session.begin():
                result = await session.execute(delete(Tag).where(Tag.id == tag_id))
        return result.rowcount > 0

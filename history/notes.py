"""Notes repository"""

import logging
from typing import Optional, List, Dict

from sqlalchemy import select, delete, func, desc
from sqlalchemy.exc import IntegrityError

from db.database import Database
from db.models import Note, utc_now_iso

logger = logging.getLogger(__name__)


class NotesRepository:
    """CRUD for free-text notes attached to watch history entries"""

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _check_content(content: str) -> str:
        if content is None or not content.strip():
            raise ValueError("Note content must not be empty")
        return content

    async def add(self, watch_history_id: int, content: str) -> Optional[Note]:
        """
        Add a note to an entry

        Returns:
            The new note, or None if the entry does not exist
        """
        self._check_content(content)
        async with self.db.session() as session:
            try:
                async with session.begin():
                    note = Note(watch_history_id=watch_history_id, content=content)
                    session.add(note)
            except IntegrityError:
                logger.warning(f"Cannot add note: watch history entry {watch_history_id} not found")
                return None
        return note

    async def get_by_id(self, note_id: int) -> Optional[Note]:
        async with self.db.session() as session:
            return await session.get(Note, note_id)

    async def get_by_event(self, watch_history_id: int) -> List[Note]:
        """Notes for an entry, newest first"""
        async with self.db.session() as session:
            result = await session.execute(
                select(Note)
                .where(Note.watch_history_id == watch_history_id)
                .order_by(desc(Note.created_at), desc(Note.id))
            )
            return list(result.scalars().all())

    async def update(self, note_id: int, content: str) -> Optional[Note]:
        self._check_content(content)
        async with self.db.session() as session:
            async with session.begin():
                note = await session.get(Note, note_id)
                if note is None:
                    return None
                note.content = content
                note.updated_at = utc_now_iso()
        return note

    async def delete(self, note_id: int) -> bool:
        async with self.db.session() as session:
            async with session.begin():
                result = await session.execute(delete(Note).where(Note.id == note_id))
        return result.rowcount > 0

    async def delete_all_for_event(self, watch_history_id: int) -> int:
        """Delete every note on an entry, returning how many were removed"""
        async with self.db.session() as session:
            async with session.begin():
                result = await session.execute(
                    delete(Note).where(Note.watch_history_id == watch_history_id)
                )
        return result.rowcount

    async def count_for_event(self, watch_history_id: int) -> int:
        async with self.db.session() as session:
            return await session.scalar(
                select(func.count()).select_from(Note).where(Note.watch_history_id == watch_history_id)
            ) or 0

    async def get_by_events(self, watch_history_ids: List[int]) -> Dict[int, List[Note]]:
        """Notes for many entries in one query, keyed by entry id, each list newest first"""
        notes_by_event: Dict[int, List[Note]] = {entry_id: [] for entry_id in watch_history_ids}
        if not watch_history_ids:
            return notes_by_event
        async with self.db.session() as session:
            result = await session.execute(
                select(Note)
                .where(Note.watch_history_id.in_(watch_history_ids))
                .order_by(Note.watch_history_id, desc(Note.created_at), desc(Note.id))
            )
            for note in result.scalars().all():
                notes_by_event[note.watch_history_id].append(note)
        return notes_by_event

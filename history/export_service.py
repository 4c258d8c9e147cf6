"""Export and import of watch history with notes and tags

The portable format is JSON Lines: one self-contained object per line, no
wrapper array, so files can be streamed and appended to.
"""

import json
import logging
from pathlib import Path
from typing import AsyncIterator, Dict, Any, List, Union

from sqlalchemy.exc import StatementError

from db.database import Database
from db.models import WatchHistory, Note
from history.repository import WatchHistoryRepository
from history.notes import NotesRepository
from history.tags import TagsRepository
from history.video_tags import VideoTagsRepository
from history.types import (
    WatchHistoryEntry,
    QueryOptions,
    ExportResult,
    ExportStats,
    ImportResult,
)

logger = logging.getLogger(__name__)

EXPORT_BATCH_SIZE = 1000


class ExportService:
    """Service for exporting and importing watch history with annotations"""

    def __init__(self, db: Database, batch_size: int = EXPORT_BATCH_SIZE):
        self.db = db
        self.batch_size = batch_size
        self.repo = WatchHistoryRepository(db)
        self.notes_repo = NotesRepository(db)
        self.tags_repo = TagsRepository(db)
        self.video_tags_repo = VideoTagsRepository(db)

    @staticmethod
    def _build_export_entry(entry: WatchHistory, notes: List[Note], tag_names: List[str]) -> Dict[str, Any]:
        return {
            "videoId": entry.video_id,
            "title": entry.title,
            "url": entry.video_url,
            "channelName": entry.channel_name,
            "channelUrl": entry.channel_url,
            "thumbnailUrl": entry.thumbnail_url,
            "watchedAt": entry.watched_at,
            "isAd": bool(entry.is_ad),
            "source": entry.source,
            "notes": [note.content for note in notes],
            "tags": list(tag_names),
        }

    async def iter_entries(self) -> AsyncIterator[Dict[str, Any]]:
        """
        Yield every entry with its annotations, reading the store in fixed-size batches

        Notes and tags are loaded once per batch, so each batch costs three queries.
        """
        offset = 0
        while True:
            batch = await self.repo.query(QueryOptions(limit=self.batch_size, offset=offset))
            if not batch:
                break
            ids = [entry.id for entry in batch]
            notes_by_entry = await self.notes_repo.get_by_events(ids)
            tags_by_entry = await self.video_tags_repo.get_tag_names_for_videos(ids)
            for entry in batch:
                yield self._build_export_entry(entry, notes_by_entry[entry.id], tags_by_entry[entry.id])
            if len(batch) < self.batch_size:
                break
            offset += self.batch_size

    async def _finish_stats(self, stats: ExportStats) -> ExportStats:
        stats.total_tags = len(await self.tags_repo.list())
        return stats

    @staticmethod
    def _count(stats: ExportStats, export_entry: Dict[str, Any]) -> None:
        stats.total_entries += 1
        if export_entry["notes"]:
            stats.entries_with_notes += 1
            stats.total_notes += len(export_entry["notes"])
        if export_entry["tags"]:
            stats.entries_with_tags += 1

    async def export_all(self) -> ExportResult:
        """All entries with annotations plus aggregate stats"""
        entries = []
        stats = ExportStats()
        async for export_entry in self.iter_entries():
            entries.append(export_entry)
            self._count(stats, export_entry)
        return ExportResult(entries=entries, stats=await self._finish_stats(stats))

    @staticmethod
    def to_jsonl_line(export_entry: Dict[str, Any]) -> str:
        return json.dumps(export_entry, ensure_ascii=False)

    async def export_to_jsonl(self) -> str:
        """Whole archive as JSON Lines, newline-terminated"""
        lines = [self.to_jsonl_line(e) + "\n" async for e in self.iter_entries()]
        return "".join(lines)

    async def export_to_file(self, path: Union[str, Path]) -> ExportStats:
        """Stream the archive to a UTF-8 JSON Lines file"""
        path = Path(path)
        stats = ExportStats()
        with open(path, "w", encoding="utf-8") as f:
            async for export_entry in self.iter_entries():
                f.write(self.to_jsonl_line(export_entry) + "\n")
                self._count(stats, export_entry)
        stats = await self._finish_stats(stats)
        logger.info(f"Exported {stats.total_entries} entries to {path}")
        return stats

    async def import_from_jsonl(self, text: str, skip_existing_notes: bool = False) -> ImportResult:
        """
        Import JSON Lines produced by export_to_jsonl

        A line that fails to parse or validate is recorded in ``errors`` with its
        0-based line index and the rest of the file is still imported.

        Args:
            text: JSON Lines content
            skip_existing_notes: Don't re-create a note whose exact content already
                exists on the entry. Off by default, so re-importing a file twice
                duplicates its notes while tag assignments stay idempotent.
        """
        result = ImportResult()

        for index, line in enumerate(text.splitlines()):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
                if not isinstance(record, dict):
                    raise ValueError("Expected a JSON object")
                await self._import_entry(record, result, skip_existing_notes)
            except (ValueError, TypeError) as e:
                # json.JSONDecodeError and RecordValidationError are ValueErrors
                result.errors.append({"index": index, "message": str(e)})
            except StatementError as e:
                message = str(e.orig) if e.orig is not None else str(e)
                result.errors.append({"index": index, "message": message})

        if result.errors:
            logger.warning(f"Import skipped {len(result.errors)} line(s)")
        logger.info(
            f"Import complete: {result.imported} imported, {result.duplicates} duplicates, "
            f"{result.notes_created} notes, {result.tag_assignments} tag assignments"
        )
        return result

    async def import_from_file(self, path: Union[str, Path], skip_existing_notes: bool = False) -> ImportResult:
        content = Path(path).read_text(encoding="utf-8")
        return await self.import_from_jsonl(content, skip_existing_notes=skip_existing_notes)

    async def _import_entry(
        self,
        record: Dict[str, Any],
        result: ImportResult,
        skip_existing_notes: bool,
    ) -> None:
        """Insert one record, then re-attach its notes and tags to the persisted row"""
        notes = record.get("notes") or []
        tags = record.get("tags") or []
        if not isinstance(notes, list) or not isinstance(tags, list):
            raise ValueError("notes and tags must be arrays")

        entry = WatchHistoryEntry.from_dict(
            {key: value for key, value in record.items() if key not in ("notes", "tags")}
        )

        if await self.repo.insert(entry):
            result.imported += 1
        else:
            result.duplicates += 1

        # resolve the id whether the row is new or already existed
        stored = await self.repo.get_by_natural_key(entry.video_id, entry.watched_at)
        if stored is None:
            raise ValueError(f"Entry {entry.video_id} @ {entry.watched_at} missing after insert")

        existing_notes = set()
        if skip_existing_notes:
            existing_notes = {n.content for n in await self.notes_repo.get_by_event(stored.id)}

        # exported newest-first; add oldest first so the order survives
        for content in reversed(notes):
            if not isinstance(content, str) or not content.strip():
                continue
            if content in existing_notes:
                continue
            if await self.notes_repo.add(stored.id, content) is not None:
                result.notes_created += 1

        for tag_name in tags:
            if not isinstance(tag_name, str) or not tag_name.strip():
                continue
            existed = await self.tags_repo.exists(tag_name)
            tag = await self.tags_repo.get_or_create(tag_name)
            if not existed:
                result.tags_created += 1
            if not await self.video_tags_repo.has_tag(stored.id, tag.id):
                await self.video_tags_repo.assign(stored.id, tag.id)
                result.tag_assignments += 1

"""Watch history repositories and services"""

from history.types import (
    EntrySource,
    WatchHistoryEntry,
    QueryOptions,
    BulkInsertResult,
    TagWithCount,
    ExportStats,
    ExportResult,
    ImportResult,
)
from history.repository import WatchHistoryRepository
from history.notes import NotesRepository
from history.tags import TagsRepository
from history.video_tags import VideoTagsRepository
from history.sync_meta import SyncMetaStore
from history.export_service import ExportService

__all__ = [
    "EntrySource",
    "WatchHistoryEntry",
    "QueryOptions",
    "BulkInsertResult",
    "TagWithCount",
    "ExportStats",
    "ExportResult",
    "ImportResult",
    "WatchHistoryRepository",
    "NotesRepository",
    "TagsRepository",
    "VideoTagsRepository",
    "SyncMetaStore",
    "ExportService",
]

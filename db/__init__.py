"""Database models and utilities"""

from db.models import WatchHistory, Note, Tag, VideoTag, SyncMeta, Base
from db.database import Database, get_database_url
from db.migrations import MIGRATIONS, TARGET_SCHEMA_VERSION, run_migrations
from db.exceptions import (
    StoreError,
    DatabaseNotInitializedError,
    RecordValidationError,
    DuplicateTagError,
)

__all__ = [
    "WatchHistory",
    "Note",
    "Tag",
    "VideoTag",
    "SyncMeta",
    "Base",
    "Database",
    "get_database_url",
    "MIGRATIONS",
    "TARGET_SCHEMA_VERSION",
    "run_migrations",
    "StoreError",
    "DatabaseNotInitializedError",
    "RecordValidationError",
    "DuplicateTagError",
]

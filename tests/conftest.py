import pytest

from db.database import Database
from history import (
    EntrySource,
    WatchHistoryEntry,
    WatchHistoryRepository,
    NotesRepository,
    TagsRepository,
    VideoTagsRepository,
    SyncMetaStore,
    ExportService,
)


def make_entry(
    video_id: str = "dQw4w9WgXcQ",
    watched_at: str = "2024-01-15T10:30:00.000Z",
    title: str = "Test Video",
    channel_name: str = "Test Channel",
    is_ad: bool = False,
    source: EntrySource = EntrySource.TAKEOUT,
) -> WatchHistoryEntry:
    return WatchHistoryEntry(
        video_id=video_id,
        title=title,
        url=f"https://www.youtube.com/watch?v={video_id}",
        watched_at=watched_at,
        source=source,
        channel_name=channel_name,
        channel_url="https://www.youtube.com/channel/UC123" if channel_name else None,
        thumbnail_url=f"https://i.ytimg.com/vi/{video_id}/hqdefault.jpg",
        is_ad=is_ad,
    )


def db_url(path) -> str:
    return f"sqlite+aiosqlite:///{path}"


@pytest.fixture
async def db(tmp_path):
    database = Database(db_url(tmp_path / "watch-history.db"))
    await database.init()
    yield database
    await database.close()


@pytest.fixture
def repo(db):
    return WatchHistoryRepository(db)


@pytest.fixture
def notes(db):
    return NotesRepository(db)


@pytest.fixture
def tags(db):
    return TagsRepository(db)


@pytest.fixture
def video_tags(db):
    return VideoTagsRepository(db)


@pytest.fixture
def sync_meta(db):
    return SyncMetaStore(db)


@pytest.fixture
def export_service(db):
    return ExportService(db)

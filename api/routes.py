"""HTTP routes for browsing and annotating watch history"""

import logging
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Body
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from db.database import Database
from db.exceptions import DuplicateTagError
from db.models import Note, Tag, utc_now_iso
from history import (
    EntrySource,
    WatchHistoryEntry,
    QueryOptions,
    WatchHistoryRepository,
    NotesRepository,
    TagsRepository,
    VideoTagsRepository,
    SyncMetaStore,
    ExportService,
)
from history.normalize import normalize_takeout_entries

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_database(request: Request) -> Database:
    """Store handle opened by the application lifespan"""
    return request.app.state.db


class NoteRequest(BaseModel):
    content: str


class TagCreateRequest(BaseModel):
    name: str
    color: Optional[str] = None


class TagUpdateRequest(BaseModel):
    name: Optional[str] = None
    color: Optional[str] = None


class SetTagsRequest(BaseModel):
    tagIds: List[int]


class BulkTagRequest(BaseModel):
    watchHistoryIds: List[int]


class ScrapedEntry(BaseModel):
    """Normalized record from the incremental scrape feed"""
    videoId: str
    title: str
    url: str
    watchedAt: str
    channelName: Optional[str] = None
    channelUrl: Optional[str] = None
    thumbnailUrl: Optional[str] = None
    isAd: bool = False


def _note_dict(note: Note) -> Dict[str, Any]:
    return {
        "id": note.id,
        "watchHistoryId": note.watch_history_id,
        "content": note.content,
        "createdAt": note.created_at,
        "updatedAt": note.updated_at,
    }


def _tag_dict(tag: Tag, video_count: Optional[int] = None) -> Dict[str, Any]:
    data = {"id": tag.id, "name": tag.name, "color": tag.color, "createdAt": tag.created_at}
    if video_count is not None:
        data["videoCount"] = video_count
    return data


async def _require_entry(db: Database, entry_id: int):
    entry = await WatchHistoryRepository(db).get_by_id(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Watch history entry {entry_id} not found")
    return entry


# Watch history

@router.get("/history")
async def get_history(
    limit: int = Query(50, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    orderBy: str = Query("watchedAt", pattern="^(watchedAt|title|channelName)$"),
    orderDir: str = Query("desc", pattern="^(asc|desc)$"),
    search: Optional[str] = Query(None, description="Substring of title or channel name"),
    dateFrom: Optional[str] = Query(None, description="Inclusive ISO-8601 lower bound"),
    dateTo: Optional[str] = Query(None, description="Inclusive ISO-8601 upper bound"),
    includeAds: bool = Query(True),
    tagIds: Optional[List[int]] = Query(None),
    tagLogic: str = Query("OR", pattern="^(AND|OR)$"),
    db: Database = Depends(get_database),
):
    """Query watch history with filtering, sort and pagination"""
    order_by = {"watchedAt": "watched_at", "title": "title", "channelName": "channel_name"}[orderBy]
    options = QueryOptions(
        limit=limit,
        offset=offset,
        order_by=order_by,
        order_dir=orderDir,
        search=search,
        date_from=dateFrom,
        date_to=dateTo,
        include_ads=includeAds,
        tag_ids=tagIds,
        tag_logic=tagLogic,
    )
    repo = WatchHistoryRepository(db)
    entries = await repo.query(options)
    total = await repo.count(options.filters_only())
    return {
        "entries": [repo.to_dict(e) for e in entries],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.get("/history/{entry_id}")
async def get_entry(entry_id: int, db: Database = Depends(get_database)):
    entry = await _require_entry(db, entry_id)
    return WatchHistoryRepository.to_dict(entry)


@router.delete("/history/{entry_id}")
async def delete_entry(entry_id: int, db: Database = Depends(get_database)):
    """Delete an entry with its notes and tag assignments"""
    if not await WatchHistoryRepository(db).delete(entry_id):
        raise HTTPException(status_code=404, detail=f"Watch history entry {entry_id} not found")
    return {"deleted": True}


@router.post("/history/takeout")
async def import_takeout(
    records: List[Dict[str, Any]] = Body(...),
    db: Database = Depends(get_database),
):
    """Normalize raw Takeout records and insert them"""
    entries, errors, stats = normalize_takeout_entries(records)
    if errors and not entries:
        return {"success": False, "error": errors[0]["message"], "errors": errors}

    try:
        result = await WatchHistoryRepository(db).bulk_insert(entries)
        await SyncMetaStore(db).set_last_takeout_import(utc_now_iso())
    except Exception as e:
        logger.error(f"Error importing Takeout records: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to import Takeout records: {str(e)}")
    return {
        "success": True,
        "stats": {
            **stats,
            "inserted": result.inserted,
            "duplicatesInDb": result.duplicates,
        },
        "errors": errors + result.errors,
    }


@router.post("/history/scrape")
async def ingest_scrape(records: List[ScrapedEntry], db: Database = Depends(get_database)):
    """Insert a batch from the incremental scrape feed"""
    entries = [
        WatchHistoryEntry(
            video_id=r.videoId,
            title=r.title,
            url=r.url,
            watched_at=r.watchedAt,
            source=EntrySource.PLAYWRIGHT,
            channel_name=r.channelName,
            channel_url=r.channelUrl,
            thumbnail_url=r.thumbnailUrl,
            is_ad=r.isAd,
        )
        for r in records
    ]
    try:
        result = await WatchHistoryRepository(db).bulk_insert(entries)
        await SyncMetaStore(db).set_last_playwright_sync(utc_now_iso())
    except Exception as e:
        logger.error(f"Error ingesting scraped records: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to ingest scraped records: {str(e)}")
    return result.to_dict()


@router.get("/stats")
async def get_stats(db: Database = Depends(get_database)):
    repo = WatchHistoryRepository(db)
    sync_meta = SyncMetaStore(db)
    total = await repo.count()
    non_ads = await repo.count(QueryOptions(include_ads=False))
    return {
        "total": total,
        "nonAds": non_ads,
        "ads": total - non_ads,
        "lastTakeoutImport": await sync_meta.get_last_takeout_import(),
        "lastPlaywrightSync": await sync_meta.get_last_playwright_sync(),
        "latestWatched": await repo.get_latest_watched_at(),
        "schemaVersion": await sync_meta.get_schema_version(),
    }


# Notes

@router.get("/history/{entry_id}/notes")
async def get_notes(entry_id: int, db: Database = Depends(get_database)):
    notes = await NotesRepository(db).get_by_event(entry_id)
    return [_note_dict(n) for n in notes]


@router.post("/history/{entry_id}/notes", status_code=201)
async def add_note(entry_id: int, body: NoteRequest, db: Database = Depends(get_database)):
    try:
        note = await NotesRepository(db).add(entry_id, body.content)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if note is None:
        raise HTTPException(status_code=404, detail=f"Watch history entry {entry_id} not found")
    return _note_dict(note)


@router.put("/notes/{note_id}")
async def update_note(note_id: int, body: NoteRequest, db: Database = Depends(get_database)):
    try:
        note = await NotesRepository(db).update(note_id, body.content)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if note is None:
        raise HTTPException(status_code=404, detail=f"Note {note_id} not found")
    return _note_dict(note)


@router.delete("/notes/{note_id}")
async def delete_note(note_id: int, db: Database = Depends(get_database)):
    if not await NotesRepository(db).delete(note_id):
        raise HTTPException(status_code=404, detail=f"Note {note_id} not found")
    return {"deleted": True}


# Tags

@router.get("/tags")
async def list_tags(db: Database = Depends(get_database)):
    """All tags with their usage counts"""
    return [_tag_dict(t.tag, t.video_count) for t in await TagsRepository(db).list_with_counts()]


@router.get("/tags/search")
async def search_tags(q: str = Query(..., min_length=1), db: Database = Depends(get_database)):
    return [_tag_dict(t) for t in await TagsRepository(db).search(q)]


@router.post("/tags", status_code=201)
async def create_tag(body: TagCreateRequest, db: Database = Depends(get_database)):
    try:
        tag = await TagsRepository(db).create(body.name, body.color)
    except DuplicateTagError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _tag_dict(tag)


@router.patch("/tags/{tag_id}")
async def update_tag(tag_id: int, body: TagUpdateRequest, db: Database = Depends(get_database)):
    tags_repo = TagsRepository(db)
    tag = await tags_repo.get_by_id(tag_id)
    if tag is None:
        raise HTTPException(status_code=404, detail=f"Tag {tag_id} not found")

    try:
        if body.name is not None:
            tag = await tags_repo.rename(tag_id, body.name)
        if "color" in body.model_fields_set:
            tag = await tags_repo.update_color(tag_id, body.color)
    except DuplicateTagError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _tag_dict(tag)


@router.delete("/tags/{tag_id}")
async def delete_tag(tag_id: int, db: Database = Depends(get_database)):
    if not await TagsRepository(db).delete(tag_id):
        raise HTTPException(status_code=404, detail=f"Tag {tag_id} not found")
    return {"deleted": True}


@router.get("/tags/{tag_id}/videos")
async def get_tag_videos(tag_id: int, db: Database = Depends(get_database)):
    return {"watchHistoryIds": await VideoTagsRepository(db).get_video_ids_for_tag(tag_id)}


@router.post("/tags/{tag_id}/bulk-assign")
async def bulk_assign_tag(tag_id: int, body: BulkTagRequest, db: Database = Depends(get_database)):
    assigned = await VideoTagsRepository(db).bulk_assign(body.watchHistoryIds, tag_id)
    return {"assigned": assigned}


@router.post("/tags/{tag_id}/bulk-remove")
async def bulk_remove_tag(tag_id: int, body: BulkTagRequest, db: Database = Depends(get_database)):
    removed = await VideoTagsRepository(db).bulk_remove(body.watchHistoryIds, tag_id)
    return {"removed": removed}


# Video tags

@router.get("/history/{entry_id}/tags")
async def get_entry_tags(entry_id: int, db: Database = Depends(get_database)):
    return [_tag_dict(t) for t in await VideoTagsRepository(db).get_tags_for_video(entry_id)]


@router.put("/history/{entry_id}/tags")
async def set_entry_tags(entry_id: int, body: SetTagsRequest, db: Database = Depends(get_database)):
    """Replace the entry's tags with exactly the given set"""
    await _require_entry(db, entry_id)
    tags_repo = TagsRepository(db)
    for tag_id in body.tagIds:
        if await tags_repo.get_by_id(tag_id) is None:
            raise HTTPException(status_code=404, detail=f"Tag {tag_id} not found")

    video_tags = VideoTagsRepository(db)
    await video_tags.set_video_tags(entry_id, body.tagIds)
    return [_tag_dict(t) for t in await video_tags.get_tags_for_video(entry_id)]


@router.post("/history/{entry_id}/tags/{tag_id}")
async def assign_tag(entry_id: int, tag_id: int, db: Database = Depends(get_database)):
    if not await VideoTagsRepository(db).assign(entry_id, tag_id):
        raise HTTPException(status_code=404, detail="Watch history entry or tag not found")
    return {"assigned": True}


@router.delete("/history/{entry_id}/tags/{tag_id}")
async def remove_tag(entry_id: int, tag_id: int, db: Database = Depends(get_database)):
    if not await VideoTagsRepository(db).remove(entry_id, tag_id):
        raise HTTPException(status_code=404, detail="Tag is not assigned to this entry")
    return {"removed": True}


# Export / import

@router.get("/export", response_class=PlainTextResponse)
async def export_jsonl(db: Database = Depends(get_database)):
    """Whole archive in the portable JSON Lines format"""
    try:
        content = await ExportService(db).export_to_jsonl()
    except Exception as e:
        logger.error(f"Error exporting watch history: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to export: {str(e)}")
    return PlainTextResponse(content, media_type="application/x-ndjson")


@router.get("/export/stats")
async def export_stats(db: Database = Depends(get_database)):
    result = await ExportService(db).export_all()
    return result.stats.to_dict()


@router.post("/import")
async def import_jsonl(
    request: Request,
    skipExistingNotes: bool = Query(False),
    db: Database = Depends(get_database),
):
    """Import a JSON Lines body produced by /api/export"""
    body = await request.body()
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="Import body must be UTF-8 text")
    try:
        result = await ExportService(db).import_from_jsonl(text, skip_existing_notes=skipExistingNotes)
    except Exception as e:
        logger.error(f"Error importing watch history: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to import: {str(e)}")
    return result.to_dict()
